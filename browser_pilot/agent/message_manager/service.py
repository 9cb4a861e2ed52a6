from __future__ import annotations

import json
import logging

from browser_pilot.agent.message_manager.views import HistoryItem, MessageManagerState, MessageType
from browser_pilot.agent.prompts import AgentMessagePrompt
from browser_pilot.agent.views import ActionResult, AgentOutput, AgentStepInfo
from browser_pilot.browser.views import BrowserStateSummary
from browser_pilot.llm.messages import (
	AssistantMessage,
	BaseMessage,
	ContentPartTextParam,
	SystemMessage,
	UserMessage,
)
from browser_pilot.utils import match_url_with_domain_pattern, time_execution_sync

logger = logging.getLogger(__name__)


class MessageManager:
	def __init__(
		self,
		task: str,
		system_message: SystemMessage,
		state: MessageManagerState | None = None,
		use_thinking: bool = True,
		include_attributes: list[str] | None = None,
		sensitive_data: dict[str, str | dict[str, str]] | None = None,
		max_history_items: int | None = None,
		vision_detail_level: str = 'auto',
		include_tool_call_examples: bool = False,
	):
		self.task = task
		self.state = state if state is not None else MessageManagerState()
		self.system_prompt = system_message
		self.sensitive_data_description = ''
		self.use_thinking = use_thinking
		self.max_history_items = max_history_items
		self.vision_detail_level = vision_detail_level
		self.include_tool_call_examples = include_tool_call_examples

		assert max_history_items is None or max_history_items > 5, 'max_history_items must be None or greater than 5'

		self.include_attributes = include_attributes or []
		self.sensitive_data = sensitive_data
		self.last_input_messages: list[BaseMessage] = []

		# Only initialize messages if state is empty
		if len(self.state.history.messages) == 0:
			self._init_messages()

	def _init_messages(self) -> None:
		"""Initialize the message history with the system message, the task and an optional example exchange"""
		self._add_message_with_type(self.system_prompt, 'init')

		task_message = UserMessage(content=f'<user_request>\n{self.task}\n</user_request>')
		self._add_message_with_type(task_message, 'init')

		if self.include_tool_call_examples:
			example_thinking = (
				'The task asks for information on a page I have not opened yet. '
				'The browser shows a blank tab, so I start by navigating.'
			)
			example_output: dict = {
				'evaluation_previous_goal': 'Nothing has been done yet, this is the first step.',
				'memory': 'Starting the task on a blank page.',
				'next_goal': 'Open the page named in the request.',
				'action': [{'go_to_url': {'url': 'https://www.google.com', 'new_tab': False}}],
			}
			if self.use_thinking:
				example_output = {'thinking': example_thinking, **example_output}

			self._add_message_with_type(UserMessage(content='Example output:'), 'init')
			self._add_message_with_type(AssistantMessage(content=json.dumps(example_output)), 'init')
			self._add_message_with_type(UserMessage(content='[Your task history memory starts here]'), 'init')

	@property
	def agent_history_description(self) -> str:
		"""Build agent history description from list of items, respecting max_history_items limit"""
		if self.max_history_items is None:
			return '\n'.join(item.to_string() for item in self.state.agent_history_items)

		total_items = len(self.state.agent_history_items)

		if total_items <= self.max_history_items:
			return '\n'.join(item.to_string() for item in self.state.agent_history_items)

		omitted_count = total_items - self.max_history_items

		# first item, then the omission marker, then the most recent items
		recent_items_count = self.max_history_items - 1

		items_to_include = [
			self.state.agent_history_items[0].to_string(),
			f'<sys>[... {omitted_count} previous steps omitted...]</sys>',
		]
		items_to_include.extend([item.to_string() for item in self.state.agent_history_items[-recent_items_count:]])

		return '\n'.join(items_to_include)

	def add_new_task(self, new_task: str) -> None:
		content = f'<follow_up_user_request>\n{new_task.strip()}\n</follow_up_user_request>'
		self.task = new_task
		self._add_message_with_type(UserMessage(content=content), 'init')
		task_update_item = HistoryItem(system_message=f'User updated <user_request> to: {new_task}')
		self.state.agent_history_items.append(task_update_item)

	def _update_agent_history_description(
		self,
		model_output: AgentOutput | None = None,
		result: list[ActionResult] | None = None,
		step_info: AgentStepInfo | None = None,
	) -> None:
		"""Update the agent history description"""

		if result is None:
			result = []
		step_number = step_info.step_number if step_info else None

		self.state.read_state_description = ''

		action_results = ''
		result_len = len(result)
		for idx, action_result in enumerate(result):
			if action_result.include_extracted_content_only_once and action_result.extracted_content:
				self.state.read_state_description += action_result.extracted_content + '\n'
				logger.debug(f'Added extracted_content to read_state_description: {action_result.extracted_content}')

			if action_result.long_term_memory:
				action_results += f'Action {idx + 1}/{result_len}: {action_result.long_term_memory}\n'
				logger.debug(f'Added long_term_memory to action_results: {action_result.long_term_memory}')
			elif (
				action_result.include_in_memory
				and action_result.extracted_content
				and not action_result.include_extracted_content_only_once
			):
				action_results += f'Action {idx + 1}/{result_len}: {action_result.extracted_content}\n'
				logger.debug(f'Added extracted_content to action_results: {action_result.extracted_content}')

			if action_result.error:
				if len(action_result.error) > 200:
					error_text = action_result.error[:100] + '......' + action_result.error[-100:]
				else:
					error_text = action_result.error
				action_results += f'Action {idx + 1}/{result_len}: {error_text}\n'
				logger.debug(f'Added error to action_results: {error_text}')

		if action_results:
			action_results = f'Action Results:\n{action_results}'
		action_results = action_results.strip('\n') if action_results else None

		if model_output is None:
			# no model output on a later step: the step failed before any action ran
			if step_number is not None and step_number > 0:
				recorded_error = next((r.error for r in result if r.error), None)
				history_item = HistoryItem(
					step_number=step_number, error=recorded_error or 'Agent failed to output in the right format.'
				)
				self.state.agent_history_items.append(history_item)
			elif action_results:
				# results of actions run before the first step, e.g. initial actions
				self.state.agent_history_items.append(HistoryItem(step_number=step_number, action_results=action_results))
		else:
			history_item = HistoryItem(
				step_number=step_number,
				evaluation_previous_goal=model_output.current_state.evaluation_previous_goal,
				memory=model_output.current_state.memory,
				next_goal=model_output.current_state.next_goal,
				action_results=action_results,
			)
			self.state.agent_history_items.append(history_item)

	def _get_sensitive_data_description(self, current_page_url: str) -> str:
		sensitive_data = self.sensitive_data
		if not sensitive_data:
			return ''

		placeholders: set[str] = set()

		for key, value in sensitive_data.items():
			if isinstance(value, dict):
				# {domain: {key: value}}, only offered on matching pages
				if match_url_with_domain_pattern(current_page_url, key, True):
					placeholders.update(value.keys())
			else:
				placeholders.add(key)

		if placeholders:
			placeholder_list = sorted(list(placeholders))
			info = f'Here are placeholders for sensitive data:\n{placeholder_list}\n'
			info += 'To use them, write <secret>the placeholder name</secret>'
			return info

		return ''

	@time_execution_sync('--create_state_messages')
	def create_state_messages(
		self,
		browser_state_summary: BrowserStateSummary,
		model_output: AgentOutput | None = None,
		result: list[ActionResult] | None = None,
		step_info: AgentStepInfo | None = None,
		use_vision: bool = True,
		page_filtered_actions: str | None = None,
		sensitive_data=None,
		available_file_paths: list[str] | None = None,
	) -> None:
		"""Replace last step's state and context messages with one state message for this step"""

		self.state.history.remove_messages_of_type('context')
		self.state.history.remove_messages_of_type('state')

		self._update_agent_history_description(model_output, result, step_info)
		if sensitive_data:
			self.sensitive_data_description = self._get_sensitive_data_description(browser_state_summary.url)

		# Use only the current screenshot
		screenshots = []
		if browser_state_summary.screenshot:
			screenshots.append(browser_state_summary.screenshot)

		state_message = AgentMessagePrompt(
			browser_state_summary=browser_state_summary,
			agent_history_description=self.agent_history_description,
			read_state_description=self.state.read_state_description,
			task=self.task,
			include_attributes=self.include_attributes,
			step_info=step_info,
			page_filtered_actions=page_filtered_actions,
			sensitive_data=self.sensitive_data_description,
			available_file_paths=available_file_paths,
			screenshots=screenshots,
			vision_detail_level=self.vision_detail_level,  # type: ignore[arg-type]
		).get_user_message(use_vision)

		self._add_message_with_type(state_message, 'state')

	def add_model_output(self, model_output: AgentOutput) -> None:
		"""Record the model's answer, the state message it answered is dropped since the history description carries it forward"""
		self.state.history.remove_last_state_message()
		content = model_output.model_dump_json(exclude_unset=True)
		self._add_message_with_type(AssistantMessage(content=content), 'model_output')
		self.state.tool_id += 1

	def add_plan(self, plan: str | None, position: int | None = -1) -> None:
		"""Insert the planner's output, by default right before the current state message"""
		if not plan:
			return
		self._add_message_with_type(AssistantMessage(content=plan), 'plan', position)

	def replace_messages_with_memory(self, memory_message: BaseMessage, keep_last: int) -> int:
		"""Swap every summarizable message except the last ``keep_last`` for one memory message.

		Returns the number of messages that were replaced.
		"""
		history = self.state.history
		candidates = [i for i, m in enumerate(history.messages) if m.metadata.message_type not in ('init', 'memory')]
		if keep_last > 0:
			candidates = candidates[:-keep_last]
		if not candidates:
			return 0

		insert_at = candidates[0]
		to_remove = set(candidates)
		history.messages = [m for i, m in enumerate(history.messages) if i not in to_remove]
		history.add_message(self._filter_sensitive_data(memory_message), 'memory', insert_at)
		return len(to_remove)

	def get_summarizable_messages(self, keep_last: int) -> list[BaseMessage]:
		"""Messages procedural memory would replace: not part of the initial prompt, not already memory"""
		messages = [
			m.message for m in self.state.history.messages if m.metadata.message_type not in ('init', 'memory')
		]
		if keep_last > 0:
			messages = messages[:-keep_last]
		return messages

	def _log_history_lines(self) -> str:
		"""Generate a formatted log string of message history for debugging / printing to terminal"""
		lines = []
		for m in self.state.history.messages:
			text = m.message.text.replace('\n', ' ')
			lines.append(f'  [{m.metadata.message_type:>12}] {m.message.role}: {text[:100]}')
		return f'📜 LLM Message history ({len(self.state.history.messages)} messages):\n' + '\n'.join(lines)

	@time_execution_sync('--get_messages')
	def get_messages(self) -> list[BaseMessage]:
		"""Get current message list"""
		if logger.isEnabledFor(logging.DEBUG):
			logger.debug(self._log_history_lines())
		self.last_input_messages = self.state.history.get_messages()
		return self.last_input_messages

	def _add_message_with_type(self, message: BaseMessage, message_type: MessageType, position: int | None = None) -> None:
		"""Add message to history, masking sensitive data first"""
		if self.sensitive_data:
			message = self._filter_sensitive_data(message)
		self.state.history.add_message(message, message_type, position)

	def _add_context_message(self, message: BaseMessage) -> None:
		"""Add a contextual message specific to this step (e.g., validation errors, retry instructions, timeout warnings)"""
		self._add_message_with_type(message, 'context')

	@time_execution_sync('--filter_sensitive_data')
	def _filter_sensitive_data(self, message: BaseMessage) -> BaseMessage:
		"""Filter out sensitive data from the message"""

		def replace_sensitive(value: str) -> str:
			if not self.sensitive_data:
				return value

			sensitive_values: dict[str, str] = {}

			for key_or_domain, content in self.sensitive_data.items():
				if isinstance(content, dict):
					for key, val in content.items():
						if val:  # Skip empty values
							sensitive_values[key] = val
				elif content:
					sensitive_values[key_or_domain] = content

			if not sensitive_values:
				logger.warning('No valid entries found in sensitive_data dictionary')
				return value

			for key, val in sensitive_values.items():
				value = value.replace(val, f'<secret>{key}</secret>')

			return value

		if isinstance(message.content, str):
			message.content = replace_sensitive(message.content)
		elif isinstance(message.content, list):
			for i, item in enumerate(message.content):
				if isinstance(item, ContentPartTextParam):
					item.text = replace_sensitive(item.text)
					message.content[i] = item
		return message
