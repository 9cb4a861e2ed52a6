import asyncio
import enum
import json
import logging
import re
from typing import Generic, TypeVar
from urllib.parse import quote_plus

import markdownify
from pydantic import BaseModel

from browser_pilot.agent.views import ActionModel, ActionResult
from browser_pilot.browser import BrowserSession
from browser_pilot.browser.events import (
	ClickElementEvent,
	CloseTabEvent,
	GetDropdownOptionsEvent,
	GoBackEvent,
	NavigateToUrlEvent,
	ScrollEvent,
	ScrollToTextEvent,
	SelectDropdownOptionEvent,
	SendKeysEvent,
	SwitchTabEvent,
	TypeTextEvent,
	WaitEvent,
)
from browser_pilot.browser.views import BrowserError
from browser_pilot.controller.registry.service import Registry
from browser_pilot.controller.views import (
	ClickElementAction,
	CloseTabAction,
	DoneAction,
	ExtractStructuredDataAction,
	GetDropdownOptionsAction,
	GoToUrlAction,
	InputTextAction,
	NoParamsAction,
	ScrollAction,
	SearchGoogleAction,
	SelectDropdownOptionAction,
	SendKeysAction,
	StructuredOutputAction,
	SwitchTabAction,
)
from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.messages import UserMessage
from browser_pilot.utils import _log_pretty_url, time_execution_async

logger = logging.getLogger(__name__)

Context = TypeVar('Context')

T = TypeVar('T', bound=BaseModel)

# page content handed to the extraction model is cut after this many characters
MAX_EXTRACTION_CHARS = 30000


def extract_llm_error_message(error: Exception) -> str:
	"""
	Extract the clean error message from an exception that may contain <llm_error_msg> tags.

	If the tags are found, returns the content between them.
	Otherwise, returns the original error string.
	"""
	error_str = str(error)

	match = re.search(r'<llm_error_msg>(.*?)</llm_error_msg>', error_str, re.DOTALL)
	if match:
		return match.group(1).strip()

	return error_str


def html_to_markdown(page_html: str, extract_links: bool = False) -> str:
	"""Convert page HTML to markdown for the extraction model, dropping links unless asked for."""
	if extract_links:
		content = markdownify.markdownify(page_html, heading_style='ATX', bullets='-')
	else:
		content = markdownify.markdownify(page_html, heading_style='ATX', bullets='-', strip=['a'])
		content = re.sub(r'!\[.*?\]\([^)]*\)', '', content, flags=re.MULTILINE | re.DOTALL)  # images
		content = re.sub(r'\[([^\]]*)\]\([^)]*\)', r'\1', content, flags=re.MULTILINE | re.DOTALL)  # [text](url) -> text

	# collapse the blank lines markdownify leaves behind for layout elements
	content = re.sub(r'\n{3,}', '\n\n', content)
	return content.strip()


class Controller(Generic[Context]):
	def __init__(
		self,
		exclude_actions: list[str] | None = None,
		output_model: type[T] | None = None,
	):
		self.registry = Registry[Context](exclude_actions)

		"""Register all default browser actions"""

		self._register_done_action(output_model)

		# Basic Navigation Actions
		@self.registry.action(
			'Search the query in Google, the query should be a search query like humans search in Google, concrete and not vague or super long.',
			param_model=SearchGoogleAction,
		)
		async def search_google(params: SearchGoogleAction, browser_session: BrowserSession):
			search_url = f'https://www.google.com/search?q={quote_plus(params.query)}&udm=14'

			# reuse an open google tab or a blank tab instead of opening yet another one
			use_new_tab = True
			try:
				for tab in await browser_session.get_tabs():
					if tab.url.strip('/').lower() in ('https://www.google.com', 'https://google.com') or tab.url == 'about:blank':
						if browser_session.agent_focus and tab.target_id != browser_session.agent_focus.target_id:
							switch_event = browser_session.event_bus.dispatch(SwitchTabEvent(target_id=tab.target_id))
							await switch_event
							await switch_event.event_result(raise_if_any=True, raise_if_none=False)
						use_new_tab = False
						break
			except Exception as e:
				logger.debug(f'Could not check for existing tabs: {e}, using new tab')

			try:
				event = browser_session.event_bus.dispatch(NavigateToUrlEvent(url=search_url, new_tab=use_new_tab))
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)
				memory = f"Searched Google for '{params.query}'"
				logger.info(f'🔍  {memory}')
				return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)
			except Exception as e:
				logger.error(f'Failed to search Google: {e}')
				clean_msg = extract_llm_error_message(e)
				return ActionResult(error=f'Failed to search Google for "{params.query}": {clean_msg}')

		@self.registry.action(
			'Navigate to URL, set new_tab=True to open in new tab, False to navigate in current tab', param_model=GoToUrlAction
		)
		async def go_to_url(params: GoToUrlAction, browser_session: BrowserSession):
			try:
				event = browser_session.event_bus.dispatch(NavigateToUrlEvent(url=params.url, new_tab=params.new_tab))
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)

				if params.new_tab:
					memory = f'Opened new tab with URL {params.url}'
					msg = f'🔗  Opened new tab with url {params.url}'
				else:
					memory = f'Navigated to {params.url}'
					msg = f'🔗 {memory}'

				logger.info(msg)
				return ActionResult(extracted_content=msg, include_in_memory=True, long_term_memory=memory)
			except BrowserError as e:
				browser_session.logger.error(f'❌ Navigation failed: {e.message}')
				return ActionResult(
					error=e.short_term_memory or f'Navigation failed: {e.message}',
					long_term_memory=e.long_term_memory,
				)
			except Exception as e:
				error_msg = str(e)
				browser_session.logger.error(f'❌ Navigation failed: {error_msg}')
				clean_msg = extract_llm_error_message(e)

				if any(
					err in error_msg
					for err in [
						'ERR_NAME_NOT_RESOLVED',
						'ERR_INTERNET_DISCONNECTED',
						'ERR_CONNECTION_REFUSED',
						'ERR_TIMED_OUT',
						'net::',
					]
				):
					site_unavailable_msg = f'Site unavailable: {params.url} - {error_msg}'
					browser_session.logger.warning(f'⚠️ {site_unavailable_msg}')
					return ActionResult(error=site_unavailable_msg)
				return ActionResult(error=f'Navigation failed: {clean_msg}')

		@self.registry.action('Go back', param_model=NoParamsAction)
		async def go_back(_: NoParamsAction, browser_session: BrowserSession):
			try:
				event = browser_session.event_bus.dispatch(GoBackEvent())
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)
				memory = 'Navigated back'
				logger.info(f'🔙  {memory}')
				return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)
			except Exception as e:
				logger.error(f'Failed to dispatch GoBackEvent: {type(e).__name__}: {e}')
				clean_msg = extract_llm_error_message(e)
				return ActionResult(error=f'Failed to go back: {clean_msg}')

		@self.registry.action(
			'Wait for x seconds default 3 (max 10 seconds). This can be used to wait until the page is fully loaded.'
		)
		async def wait(seconds: int = 3, browser_session: BrowserSession | None = None):
			actual_seconds = min(max(seconds, 0), 10)
			memory = f'Waited for {actual_seconds} seconds'
			if browser_session is not None:
				event = browser_session.event_bus.dispatch(WaitEvent(seconds=actual_seconds))
				await event
			else:
				logger.info(f'🕒 {memory}')
				await asyncio.sleep(actual_seconds)
			return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)

		# Element Interaction Actions

		@self.registry.action(
			'Click element by index, set while_holding_ctrl=True to open any resulting navigation in a new tab. Only click on indices that are inside your current browser_state. Never click or assume not existing indices.',
			param_model=ClickElementAction,
		)
		async def click_element_by_index(params: ClickElementAction, browser_session: BrowserSession):
			node = await browser_session.get_element_by_index(params.index)
			if node is None:
				return ActionResult(
					error=f'Element index {params.index} not found in browser_state, use an index from the current page'
				)

			try:
				event = browser_session.event_bus.dispatch(
					ClickElementEvent(node=node, while_holding_ctrl=params.while_holding_ctrl)
				)
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)
				memory = f'Clicked element with index {params.index}'
				logger.info(f'🖱️ {memory}')
				return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)
			except Exception as e:
				logger.error(f'Failed to execute ClickElementEvent: {type(e).__name__}: {e}')
				clean_msg = extract_llm_error_message(e)

				# clicking a <select> does nothing useful, show its options instead
				if node.tag_name == 'select':
					try:
						return await get_dropdown_options(
							params=GetDropdownOptionsAction(index=params.index), browser_session=browser_session
						)
					except Exception as dropdown_error:
						logger.error(
							f'Failed to get dropdown options after failed click: {type(dropdown_error).__name__}: {dropdown_error}'
						)

				return ActionResult(error=f'Failed to click element {params.index}: {clean_msg}')

		@self.registry.action(
			'Click and input text into a input interactive element. Only input text into indices that are inside your current browser_state. Never input text into indices that are not inside your current browser_state.',
			param_model=InputTextAction,
		)
		async def input_text(params: InputTextAction, browser_session: BrowserSession, has_sensitive_data: bool = False):
			node = await browser_session.get_element_by_index(params.index)
			if node is None:
				return ActionResult(
					error=f'Element index {params.index} not found in browser_state, use an index from the current page'
				)

			try:
				event = browser_session.event_bus.dispatch(
					TypeTextEvent(node=node, text=params.text, clear_existing=params.clear_existing)
				)
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)
			except Exception as e:
				logger.error(f'Failed to dispatch TypeTextEvent: {type(e).__name__}: {e}')
				return ActionResult(error=f'Failed to input text into element {params.index}: {extract_llm_error_message(e)}')

			if has_sensitive_data:
				msg = f'Input sensitive data into element {params.index}.'
			else:
				msg = f"Input '{params.text}' into element {params.index}."
			logger.info(f'⌨️  {msg}')
			return ActionResult(extracted_content=msg, include_in_memory=True, long_term_memory=msg)

		# Tab Management Actions

		@self.registry.action('Switch tab', param_model=SwitchTabAction)
		async def switch_tab(params: SwitchTabAction, browser_session: BrowserSession):
			try:
				target_id = await browser_session.get_target_id_from_tab_id(params.tab_id)
				event = browser_session.event_bus.dispatch(SwitchTabEvent(target_id=target_id))
				await event
				new_target_id = await event.event_result(raise_if_any=True, raise_if_none=False)
				assert new_target_id, 'SwitchTabEvent did not return a TargetID for the new tab that was switched to'
				memory = f'Switched to Tab with ID {new_target_id[-4:]}'
				logger.info(f'🔄  {memory}')
				return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)
			except Exception as e:
				logger.error(f'Failed to switch tab: {type(e).__name__}: {e}')
				clean_msg = extract_llm_error_message(e)
				return ActionResult(error=f'Failed to switch to tab {params.tab_id}: {clean_msg}')

		@self.registry.action('Close an existing tab', param_model=CloseTabAction)
		async def close_tab(params: CloseTabAction, browser_session: BrowserSession):
			try:
				target_id = await browser_session.get_target_id_from_tab_id(params.tab_id)
				tab_url = next((tab.url for tab in await browser_session.get_tabs() if tab.target_id == target_id), '')
				event = browser_session.event_bus.dispatch(CloseTabEvent(target_id=target_id))
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)
				memory = f'Closed tab # {params.tab_id} ({_log_pretty_url(tab_url)})'
				logger.info(f'🗑️  {memory}')
				return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)
			except Exception as e:
				logger.error(f'Failed to close tab: {e}')
				clean_msg = extract_llm_error_message(e)
				return ActionResult(error=f'Failed to close tab {params.tab_id}: {clean_msg}')

		# Content Actions

		@self.registry.action(
			"""Extract structured, semantic data (e.g. product description, price, all information about XYZ) from the current webpage based on a textual query.
		This tool takes the entire markdown of the page and extracts the query from it.
		Set extract_links=True ONLY if your query requires extracting links/URLs from the page.
		Only use this for specific queries for information retrieval from the page. Don't use this to get interactive elements - the tool does not see HTML elements, only the markdown.
		If you want to scrape a listing of many elements always first scroll a lot until the page end to load everything and then call this tool in the end.""",
			param_model=ExtractStructuredDataAction,
		)
		async def extract_structured_data(
			params: ExtractStructuredDataAction,
			browser_session: BrowserSession,
			page_extraction_llm: BaseChatModel,
		):
			cdp_session = await browser_session.get_or_create_cdp_session()
			try:
				page_html_result = await cdp_session.cdp_client.send.Runtime.evaluate(
					params={'expression': 'document.documentElement.outerHTML', 'returnByValue': True},
					session_id=cdp_session.session_id,
				)
			except Exception as e:
				raise RuntimeError(f"Couldn't extract page content: {e}")

			page_html = page_html_result.get('result', {}).get('value') or ''
			content = html_to_markdown(page_html, extract_links=params.extract_links)

			if len(content) > MAX_EXTRACTION_CHARS:
				content = content[:MAX_EXTRACTION_CHARS] + '\n\n... [Content truncated at 30k characters] ...'

			prompt = f"""Extract the requested information from this webpage content.

Query: {params.query}

Webpage Content:
{content}

Provide the extracted information in a clear, structured format."""

			response = await asyncio.wait_for(page_extraction_llm.ainvoke([UserMessage(content=prompt)]), timeout=120.0)
			extracted_content = f'Query: {params.query}\n Result:\n{response.completion}'

			# short extractions stay in memory, long ones are shown to the model once
			if len(extracted_content) < 1000:
				memory = extracted_content
				include_extracted_content_only_once = False
			else:
				current_url = await browser_session.get_current_page_url()
				memory = f'Extracted content from {current_url} for query: {params.query}'
				include_extracted_content_only_once = True

			logger.info(f'📄 {memory}')
			return ActionResult(
				extracted_content=extracted_content,
				include_in_memory=True,
				include_extracted_content_only_once=include_extracted_content_only_once,
				long_term_memory=memory,
			)

		@self.registry.action(
			'Scroll the page by specified number of pages (set down=True to scroll down, down=False to scroll up, num_pages=number of pages to scroll like 0.5 for half page, 1.0 for one page, etc.). Optional frame_element_index parameter to scroll within a specific element or its scroll container (works well for dropdowns and custom UI components).',
			param_model=ScrollAction,
		)
		async def scroll(params: ScrollAction, browser_session: BrowserSession):
			try:
				node = None
				if params.frame_element_index:
					node = await browser_session.get_element_by_index(params.frame_element_index)
					if node is None:
						raise ValueError(f'Element index {params.frame_element_index} not found in DOM')

				# one page is one viewport height
				viewport_height = browser_session.browser_profile.viewport.height if browser_session.browser_profile.viewport else 800
				pixels = int(params.num_pages * viewport_height)
				direction = 'down' if params.down else 'up'
				event = browser_session.event_bus.dispatch(ScrollEvent(direction=direction, amount=pixels, node=node))
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)

				target = 'the page' if node is None else f'element {params.frame_element_index}'
				if params.num_pages == 1.0:
					long_term_memory = f'Scrolled {direction} {target} by one page'
				else:
					long_term_memory = f'Scrolled {direction} {target} by {params.num_pages} pages'

				msg = f'🔍 {long_term_memory}'
				logger.info(msg)
				return ActionResult(extracted_content=msg, include_in_memory=True, long_term_memory=long_term_memory)
			except Exception as e:
				logger.error(f'Failed to dispatch ScrollEvent: {type(e).__name__}: {e}')
				clean_msg = extract_llm_error_message(e)
				return ActionResult(error=f'Failed to scroll: {clean_msg}')

		@self.registry.action(
			'Send strings of special keys like Escape, Backspace, Insert, PageDown, Delete, Enter, or shortcuts such as `Control+o`, `Control+Shift+T`',
			param_model=SendKeysAction,
		)
		async def send_keys(params: SendKeysAction, browser_session: BrowserSession):
			try:
				event = browser_session.event_bus.dispatch(SendKeysEvent(keys=params.keys))
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)
				memory = f'Sent keys: {params.keys}'
				logger.info(f'⌨️  {memory}')
				return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)
			except Exception as e:
				logger.error(f'Failed to dispatch SendKeysEvent: {type(e).__name__}: {e}')
				clean_msg = extract_llm_error_message(e)
				return ActionResult(error=f'Failed to send keys: {clean_msg}')

		@self.registry.action(
			description='Scroll to a text in the current page',
		)
		async def scroll_to_text(text: str, browser_session: BrowserSession):  # type: ignore
			event = browser_session.event_bus.dispatch(ScrollToTextEvent(text=text))
			try:
				await event
				await event.event_result(raise_if_any=True, raise_if_none=False)
				memory = f'Scrolled to text: {text}'
				logger.info(f'🔍  {memory}')
				return ActionResult(extracted_content=memory, include_in_memory=True, long_term_memory=memory)
			except Exception:
				msg = f"Text '{text}' not found or not visible on page"
				logger.info(msg)
				return ActionResult(
					extracted_content=msg,
					include_in_memory=True,
					long_term_memory=f"Tried scrolling to text '{text}' but it was not found",
				)

		# Dropdown Actions

		@self.registry.action(
			'Get list of option values exposed by a specific dropdown input field. Only works on dropdown-style form elements (<select>, aria-labeled menus, etc.).',
			param_model=GetDropdownOptionsAction,
		)
		async def get_dropdown_options(params: GetDropdownOptionsAction, browser_session: BrowserSession):
			"""Get all options from a native dropdown or ARIA menu"""
			node = await browser_session.get_element_by_index(params.index)
			if node is None:
				raise ValueError(f'Element index {params.index} not found in DOM')

			event = browser_session.event_bus.dispatch(GetDropdownOptionsEvent(node=node))
			await event
			dropdown_data = await event.event_result(raise_if_any=True, raise_if_none=True)
			if not dropdown_data:
				raise ValueError('Failed to get dropdown options - no data returned')

			options = dropdown_data.get('options', [])
			lines = [f'{opt["index"]}: text={json.dumps(opt["text"])}' for opt in options]
			msg = f'Options for {dropdown_data.get("type", "dropdown")} at index {params.index}:\n' + '\n'.join(lines)
			msg += '\nUse the exact text string in select_dropdown_option'
			logger.info(f'📋 Found {len(options)} dropdown options for index {params.index}')

			return ActionResult(
				extracted_content=msg,
				include_in_memory=True,
				long_term_memory=f'Found {len(options)} dropdown options for index {params.index}',
				include_extracted_content_only_once=True,
			)

		@self.registry.action(
			'Select dropdown option by exact text from any dropdown type (native <select>, ARIA menus, or custom dropdowns).',
			param_model=SelectDropdownOptionAction,
		)
		async def select_dropdown_option(params: SelectDropdownOptionAction, browser_session: BrowserSession):
			"""Select dropdown option by the text of the option you want to select"""
			node = await browser_session.get_element_by_index(params.index)
			if node is None:
				raise ValueError(f'Element index {params.index} not found in DOM')

			event = browser_session.event_bus.dispatch(SelectDropdownOptionEvent(node=node, text=params.text))
			await event
			selection_data = await event.event_result(raise_if_any=True, raise_if_none=True)
			if not selection_data:
				raise ValueError('Failed to select dropdown option - no data returned')

			msg = selection_data.get('message') or f'Selected option: {params.text}'
			logger.info(f'✅ {msg}')
			return ActionResult(
				extracted_content=msg,
				include_in_memory=True,
				long_term_memory=f"Selected dropdown option '{params.text}' at index {params.index}",
			)

	# Custom done action for structured output
	def _register_done_action(self, output_model: type[T] | None):
		if output_model is not None:

			@self.registry.action(
				'Complete task - with return text and if the task is finished (success=True) or not yet completely finished (success=False), because last step is reached',
				param_model=StructuredOutputAction[output_model],
			)
			async def done(params: StructuredOutputAction):
				output_dict = params.data.model_dump()

				# Enums are not serializable, convert to string
				for key, value in output_dict.items():
					if isinstance(value, enum.Enum):
						output_dict[key] = value.value

				return ActionResult(
					is_done=True,
					success=params.success,
					extracted_content=json.dumps(output_dict),
					long_term_memory=f'Task completed. Success Status: {params.success}',
				)

		else:

			@self.registry.action(
				'Complete task - provide a summary of results for the user. Set success=True if task completed successfully, false otherwise. Text should be your response to the user summarizing results.',
				param_model=DoneAction,
			)
			async def done(params: DoneAction):
				len_max_memory = 100
				memory = f'Task completed: {params.success} - {params.text[:len_max_memory]}'
				if len(params.text) > len_max_memory:
					memory += f' - {len(params.text) - len_max_memory} more characters'

				return ActionResult(
					is_done=True,
					success=params.success,
					extracted_content=params.text,
					long_term_memory=memory,
				)

	def use_structured_output_action(self, output_model: type[T]):
		self._register_done_action(output_model)

	# Register ---------------------------------------------------------------

	def action(self, description: str, **kwargs):
		"""Decorator for registering custom actions

		@param description: Describe the LLM what the function does (better description == better function calling)
		"""
		return self.registry.action(description, **kwargs)

	# Act --------------------------------------------------------------------
	@time_execution_async('--act')
	async def act(
		self,
		action: ActionModel,
		browser_session: BrowserSession,
		#
		page_extraction_llm: BaseChatModel | None = None,
		sensitive_data: dict[str, str | dict[str, str]] | None = None,
		available_file_paths: list[str] | None = None,
		#
		context: Context | None = None,
	) -> ActionResult:
		"""Execute an action"""

		for action_name, params in action.model_dump(exclude_unset=True).items():
			if params is None:
				continue

			try:
				result = await self.registry.execute_action(
					action_name=action_name,
					params=params,
					browser_session=browser_session,
					page_extraction_llm=page_extraction_llm,
					sensitive_data=sensitive_data,
					available_file_paths=available_file_paths,
					context=context,
				)
			except Exception as e:
				logger.error(f"Action '{action_name}' failed: {type(e).__name__}: {e}")
				cause = e.__cause__
				if isinstance(cause, BrowserError):
					result = ActionResult(
						error=cause.short_term_memory or extract_llm_error_message(cause),
						long_term_memory=cause.long_term_memory,
					)
				else:
					result = ActionResult(error=extract_llm_error_message(e))

			if isinstance(result, str):
				return ActionResult(extracted_content=result)
			elif isinstance(result, ActionResult):
				return result
			elif result is None:
				return ActionResult()
			else:
				raise ValueError(f'Invalid action result type: {type(result)} of {result}')
		return ActionResult()
