import importlib.resources
from datetime import datetime
from typing import TYPE_CHECKING, Literal, Optional

from browser_pilot.llm.messages import ContentPartImageParam, ContentPartTextParam, ImageURL, SystemMessage, UserMessage
from browser_pilot.utils import is_new_tab_page

if TYPE_CHECKING:
	from browser_pilot.agent.views import AgentStepInfo
	from browser_pilot.browser.views import BrowserStateSummary


class SystemPrompt:
	def __init__(
		self,
		action_description: str,
		max_actions_per_step: int = 10,
		override_system_message: str | None = None,
		extend_system_message: str | None = None,
		use_thinking: bool = True,
	):
		self.default_action_description = action_description
		self.max_actions_per_step = max_actions_per_step
		self.use_thinking = use_thinking
		prompt = ''
		if override_system_message:
			prompt = override_system_message
		else:
			self._load_prompt_template()
			prompt = self.prompt_template.format(max_actions=self.max_actions_per_step)
			prompt += f'\n<available_actions>\n{self.default_action_description}\n</available_actions>'

		if extend_system_message:
			prompt += f'\n{extend_system_message}'

		self.system_message = SystemMessage(content=prompt)

	def _load_prompt_template(self) -> None:
		"""Load the prompt template from the markdown file."""
		template_filename = 'system_prompt.md' if self.use_thinking else 'system_prompt_no_thinking.md'
		try:
			# This works both in development and when installed as a package
			with importlib.resources.files('browser_pilot.agent').joinpath(template_filename).open('r', encoding='utf-8') as f:
				self.prompt_template = f.read()
		except Exception as e:
			raise RuntimeError(f'Failed to load system prompt template: {e}') from e

	def get_system_message(self) -> SystemMessage:
		"""
		Get the system prompt for the agent.

		Returns:
		    SystemMessage: Formatted system prompt
		"""
		return self.system_message


class AgentMessagePrompt:
	vision_detail_level: Literal['auto', 'low', 'high']

	def __init__(
		self,
		browser_state_summary: 'BrowserStateSummary',
		agent_history_description: str | None = None,
		read_state_description: str | None = None,
		task: str | None = None,
		include_attributes: list[str] | None = None,
		step_info: Optional['AgentStepInfo'] = None,
		page_filtered_actions: str | None = None,
		max_clickable_elements_length: int = 40000,
		sensitive_data: str | None = None,
		available_file_paths: list[str] | None = None,
		screenshots: list[str] | None = None,
		vision_detail_level: Literal['auto', 'low', 'high'] = 'auto',
	):
		self.browser_state: 'BrowserStateSummary' = browser_state_summary
		self.agent_history_description: str | None = agent_history_description
		self.read_state_description: str | None = read_state_description
		self.task: str | None = task
		self.include_attributes = include_attributes
		self.step_info = step_info
		self.page_filtered_actions: str | None = page_filtered_actions
		self.max_clickable_elements_length: int = max_clickable_elements_length
		self.sensitive_data: str | None = sensitive_data
		self.available_file_paths: list[str] | None = available_file_paths
		self.screenshots = screenshots or []
		self.vision_detail_level = vision_detail_level
		assert self.browser_state

	def _get_browser_state_description(self) -> str:
		elements_text = self.browser_state.dom_state.llm_representation(include_attributes=self.include_attributes)
		if not self.browser_state.dom_state.selector_map:
			elements_text = ''

		if len(elements_text) > self.max_clickable_elements_length:
			elements_text = elements_text[: self.max_clickable_elements_length]
			truncated_text = f' (truncated to {self.max_clickable_elements_length} characters)'
		else:
			truncated_text = ''

		has_content_above = (self.browser_state.pixels_above or 0) > 0
		has_content_below = (self.browser_state.pixels_below or 0) > 0

		page_info_text = ''
		viewport_height = 0
		if self.browser_state.page_info:
			pi = self.browser_state.page_info
			viewport_height = pi.viewport_height
			pages_above = pi.pixels_above / viewport_height if viewport_height > 0 else 0
			pages_below = pi.pixels_below / viewport_height if viewport_height > 0 else 0
			total_pages = pi.page_height / viewport_height if viewport_height > 0 else 0
			page_info_text = (
				f'Page info: {pi.viewport_width}x{pi.viewport_height}px viewport, '
				f'{pi.page_width}x{pi.page_height}px total page size, '
				f'{pages_above:.1f} pages above, {pages_below:.1f} pages below, {total_pages:.1f} total pages'
			)

		if elements_text != '':
			if has_content_above:
				pages = f' ({self.browser_state.pixels_above / viewport_height:.1f} pages)' if viewport_height else ''
				elements_text = f'... {self.browser_state.pixels_above} pixels above{pages} - scroll to see more or extract structured data if you are looking for specific information ...\n{elements_text}'
			else:
				elements_text = f'[Start of page]\n{elements_text}'
			if has_content_below:
				pages = f' ({self.browser_state.pixels_below / viewport_height:.1f} pages)' if viewport_height else ''
				elements_text = f'{elements_text}\n... {self.browser_state.pixels_below} pixels below{pages} - scroll to see more or extract structured data if you are looking for specific information ...'
			else:
				elements_text = f'{elements_text}\n[End of page]'
		else:
			elements_text = 'empty page'

		tabs_text = ''
		current_tab_candidates = []

		# Find tabs that match both URL and title to identify current tab more reliably
		for tab in self.browser_state.tabs:
			if tab.url == self.browser_state.url and tab.title == self.browser_state.title:
				current_tab_candidates.append(tab.target_id[-4:])

		# only mark a tab as current when the match is unambiguous
		current_tab_id = current_tab_candidates[0] if len(current_tab_candidates) == 1 else None

		for tab in self.browser_state.tabs:
			tabs_text += f'Tab {tab.target_id[-4:]}: {tab.url} - {tab.title[:30]}\n'

		current_tab_text = f'Current tab: {current_tab_id}' if current_tab_id is not None else ''

		errors_text = ''
		if self.browser_state.browser_errors:
			errors_text = 'Browser errors:\n' + '\n'.join(self.browser_state.browser_errors) + '\n\n'

		browser_state = f"""{current_tab_text}
Available tabs:
{tabs_text}
{page_info_text}
{errors_text}Interactive elements from top layer of the current page inside the viewport{truncated_text}:
{elements_text}
"""
		return browser_state

	def _get_agent_state_description(self) -> str:
		if self.step_info:
			step_info_description = f'Step {self.step_info.step_number + 1} of {self.step_info.max_steps} max possible steps\n'
		else:
			step_info_description = ''
		time_str = datetime.now().strftime('%Y-%m-%d %H:%M')
		step_info_description += f'Current date and time: {time_str}'

		agent_state = f"""
<user_request>
{self.task}
</user_request>
"""
		if self.sensitive_data:
			agent_state += f'<sensitive_data>\n{self.sensitive_data}\n</sensitive_data>\n'

		agent_state += f'<step_info>\n{step_info_description}\n</step_info>\n'
		if self.available_file_paths:
			agent_state += '<available_file_paths>\n' + '\n'.join(self.available_file_paths) + '\n</available_file_paths>\n'
		return agent_state

	def get_user_message(self, use_vision: bool = True) -> UserMessage:
		"""Get complete state as a single message"""
		# Don't pass screenshot to model if page is a new tab page, step is 0, and there's only one tab
		if (
			is_new_tab_page(self.browser_state.url)
			and self.step_info is not None
			and self.step_info.step_number == 0
			and len(self.browser_state.tabs) == 1
		):
			use_vision = False

		state_description = (
			'<agent_history>\n'
			+ (self.agent_history_description.strip('\n') if self.agent_history_description else '')
			+ '\n</agent_history>\n'
		)
		state_description += '<agent_state>\n' + self._get_agent_state_description().strip('\n') + '\n</agent_state>\n'
		state_description += '<browser_state>\n' + self._get_browser_state_description().strip('\n') + '\n</browser_state>\n'
		read_state_description = self.read_state_description.strip('\n').strip() if self.read_state_description else ''
		if read_state_description:
			state_description += '<read_state>\n' + read_state_description + '\n</read_state>\n'

		if self.page_filtered_actions:
			state_description += '<page_specific_actions>\n'
			state_description += self.page_filtered_actions + '\n'
			state_description += '</page_specific_actions>\n'

		if use_vision is True and self.screenshots:
			content_parts: list[ContentPartTextParam | ContentPartImageParam] = [ContentPartTextParam(text=state_description)]

			for i, screenshot in enumerate(self.screenshots):
				label = 'Current screenshot:' if i == len(self.screenshots) - 1 else 'Previous screenshot:'
				content_parts.append(ContentPartTextParam(text=label))
				content_parts.append(
					ContentPartImageParam(
						image_url=ImageURL(
							url=f'data:image/png;base64,{screenshot}',
							media_type='image/png',
							detail=self.vision_detail_level,
						),
					)
				)

			return UserMessage(content=content_parts)

		return UserMessage(content=state_description)


class PlannerPrompt(SystemPrompt):
	def __init__(self, available_actions: str, extend_planner_system_message: str | None = None):
		self.available_actions = available_actions
		self.extend_planner_system_message = extend_planner_system_message

	def get_system_message(
		self, is_planner_reasoning: bool = False, extended_planner_system_prompt: str | None = None
	) -> SystemMessage | UserMessage:
		"""Get the system message for the planner.

		Args:
		    is_planner_reasoning: reasoning models do not accept system messages, so a UserMessage is returned instead
		    extended_planner_system_prompt: text appended to the default planner prompt
		"""
		planner_prompt_text = f"""You are a planning agent that helps break down tasks into smaller steps and reason about the current state.
Your role is to:
1. Analyze the current state and history
2. Evaluate progress towards the ultimate goal
3. Identify potential challenges or roadblocks
4. Suggest the next high-level steps to take

Inside your messages, there will be AI messages from different agents with different formats.

Your output format should be always a JSON object with the following fields:
{{
    "state_analysis": "Brief analysis of the current state and what has been done so far",
    "progress_evaluation": "Evaluation of progress towards the ultimate goal (as percentage and description)",
    "challenges": "List any potential challenges or roadblocks",
    "next_steps": "List 2-3 concrete next steps to take",
    "reasoning": "Explain your reasoning for the suggested next steps"
}}

Ignore the other AI messages output structures.

Keep your responses concise and focused on actionable insights.

The executing agent can use these actions:
{self.available_actions}"""

		extension = extended_planner_system_prompt or self.extend_planner_system_message
		if extension:
			planner_prompt_text += f'\n{extension}'

		if is_planner_reasoning:
			return UserMessage(content=planner_prompt_text)
		return SystemMessage(content=planner_prompt_text)
