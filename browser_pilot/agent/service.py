import asyncio
import gc
import inspect
import logging
import re
import tempfile
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Generic, Literal, TypeVar

from dotenv import load_dotenv

from browser_pilot.agent.message_manager.utils import save_conversation
from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.messages import BaseMessage, ContentPartTextParam, UserMessage
from browser_pilot.tokens.service import TokenCost

load_dotenv()

from bubus import EventBus
from pydantic import ValidationError
from uuid_extensions import uuid7str

from browser_pilot.agent.memory.service import Memory
from browser_pilot.agent.memory.views import MemoryConfig
from browser_pilot.agent.message_manager.service import MessageManager
from browser_pilot.agent.prompts import PlannerPrompt, SystemPrompt
from browser_pilot.agent.views import (
	ActionResult,
	AgentError,
	AgentHistory,
	AgentHistoryList,
	AgentOutput,
	AgentSettings,
	AgentState,
	AgentStepInfo,
	AgentStructuredOutput,
	StepMetadata,
)
from browser_pilot.browser.profile import BrowserProfile
from browser_pilot.browser.session import Browser, BrowserSession
from browser_pilot.browser.views import BrowserStateHistory, BrowserStateSummary
from browser_pilot.config import CONFIG
from browser_pilot.controller.registry.views import ActionModel
from browser_pilot.controller.service import Controller
from browser_pilot.dom.views import DEFAULT_INCLUDE_ATTRIBUTES, DOMInteractedElement
from browser_pilot.llm.exceptions import ModelRateLimitError
from browser_pilot.screenshots.service import ScreenshotService
from browser_pilot.utils import (
	SignalHandler,
	_log_pretty_path,
	get_browser_pilot_version,
	time_execution_async,
	time_execution_sync,
)

logger = logging.getLogger(__name__)


def log_response(response: AgentOutput, registry=None, logger=None) -> None:
	"""Utility function to log the model's response."""

	if logger is None:
		logger = logging.getLogger(__name__)

	if response.current_state.thinking:
		logger.debug(f'💡 Thinking:\n{response.current_state.thinking}')

	eval_goal = response.current_state.evaluation_previous_goal
	if eval_goal:
		if 'success' in eval_goal.lower():
			logger.info(f'  \033[32m👍 Eval: {eval_goal}\033[0m')
		elif 'failure' in eval_goal.lower():
			logger.info(f'  \033[31m⚠️ Eval: {eval_goal}\033[0m')
		else:
			logger.info(f'  ❔ Eval: {eval_goal}')

	if response.current_state.memory:
		logger.debug(f'🧠 Memory: {response.current_state.memory}')

	next_goal = response.current_state.next_goal
	if next_goal:
		logger.info(f'  \033[34m🎯 Next goal: {next_goal}\033[0m')
	else:
		logger.info('')


Context = TypeVar('Context')


AgentHookFunc = Callable[['Agent'], Awaitable[None]]


class Agent(Generic[Context, AgentStructuredOutput]):
	browser_session: BrowserSession | None = None
	_logger: logging.Logger | None = None

	@time_execution_sync('--init')
	def __init__(
		self,
		task: str,
		llm: BaseChatModel | None = None,
		# Optional parameters
		browser_profile: BrowserProfile | None = None,
		browser_session: BrowserSession | None = None,
		browser: Browser | None = None,  # Alias for browser_session
		controller: Controller[Context] | None = None,
		# Initial agent run parameters
		sensitive_data: dict[str, str | dict[str, str]] | None = None,
		initial_actions: list[dict[str, dict[str, Any]]] | None = None,
		# Callbacks
		register_new_step_callback: (
			Callable[['BrowserStateSummary', 'AgentOutput', int], None]  # Sync callback
			| Callable[['BrowserStateSummary', 'AgentOutput', int], Awaitable[None]]  # Async callback
			| None
		) = None,
		register_done_callback: (
			Callable[['AgentHistoryList'], Awaitable[None]]  # Async Callback
			| Callable[['AgentHistoryList'], None]  # Sync Callback
			| None
		) = None,
		register_external_agent_status_raise_error_callback: Callable[[], Awaitable[bool]] | None = None,
		# Agent settings
		output_model_schema: type[AgentStructuredOutput] | None = None,
		use_vision: bool = True,
		save_conversation_path: str | Path | None = None,
		save_conversation_path_encoding: str | None = 'utf-8',
		max_failures: int = 3,
		retry_delay: int = 10,
		override_system_message: str | None = None,
		extend_system_message: str | None = None,
		generate_gif: bool | str = False,
		available_file_paths: list[str] | None = None,
		include_attributes: list[str] | None = None,
		max_actions_per_step: int = 10,
		use_thinking: bool = True,
		max_history_items: int | None = None,
		page_extraction_llm: BaseChatModel | None = None,
		# Planner
		planner_llm: BaseChatModel | None = None,
		planner_interval: int = 1,
		use_vision_for_planner: bool = True,
		is_planner_reasoning: bool = False,
		extend_planner_system_message: str | None = None,
		# Procedural memory
		enable_memory: bool = True,
		memory_config: MemoryConfig | None = None,
		memory_interval: int | None = None,
		injected_agent_state: AgentState | None = None,
		context: Context | None = None,
		include_tool_call_examples: bool = False,
		vision_detail_level: Literal['auto', 'low', 'high'] = 'auto',
		llm_timeout: int = 90,
		step_timeout: int = 120,
		preload: bool = True,
	):
		if llm is None:
			from browser_pilot.llm.openai.chat import ChatOpenAI

			llm = ChatOpenAI(model='gpt-4.1-mini')
		if not isinstance(llm, BaseChatModel):
			raise ValueError('invalid llm, must be from browser_pilot.llm')

		if page_extraction_llm is None:
			page_extraction_llm = llm
		if available_file_paths is None:
			available_file_paths = []

		self.id = uuid7str()
		self.task_id: str = self.id
		self.session_id: str = uuid7str()

		self.available_file_paths = available_file_paths

		# Core components
		self.task = task
		self.llm = llm
		self.preload = preload
		self.controller = controller if controller is not None else Controller()

		# Structured output
		self.output_model_schema = output_model_schema
		if self.output_model_schema is not None:
			self.controller.use_structured_output_action(self.output_model_schema)

		self.sensitive_data = sensitive_data

		self.settings = AgentSettings(
			use_vision=use_vision,
			vision_detail_level=vision_detail_level,
			save_conversation_path=save_conversation_path,
			save_conversation_path_encoding=save_conversation_path_encoding,
			max_failures=max_failures,
			retry_delay=retry_delay,
			override_system_message=override_system_message,
			extend_system_message=extend_system_message,
			generate_gif=generate_gif,
			include_attributes=include_attributes or DEFAULT_INCLUDE_ATTRIBUTES,
			max_actions_per_step=max_actions_per_step,
			use_thinking=use_thinking,
			max_history_items=max_history_items,
			page_extraction_llm=page_extraction_llm,
			planner_llm=planner_llm,
			planner_interval=planner_interval,
			use_vision_for_planner=use_vision_for_planner,
			is_planner_reasoning=is_planner_reasoning,
			extend_planner_system_message=extend_planner_system_message,
			include_tool_call_examples=include_tool_call_examples,
			llm_timeout=llm_timeout,
			step_timeout=step_timeout,
		)

		self.token_cost_service = TokenCost()

		# Initialize state
		self.state = injected_agent_state or AgentState()

		# Initialize history
		self.history = AgentHistoryList(history=[], usage=None)

		timestamp = int(time.time())
		base_tmp = Path(tempfile.gettempdir())
		self.agent_directory = base_tmp / f'browser_pilot_agent_{self.id}_{timestamp}'
		self._set_screenshot_service()

		# Action setup
		self._setup_action_models()
		self.version = get_browser_pilot_version()
		self.initial_actions = self._convert_initial_actions(initial_actions) if initial_actions else None

		self._verify_and_setup_llm()

		# DeepSeek models cannot read images
		if 'deepseek' in self.llm.model.lower():
			logger.warning('⚠️ DeepSeek models do not support use_vision=True yet. Setting use_vision=False for now...')
			self.settings.use_vision = False
		if self.settings.planner_llm and 'deepseek' in self.settings.planner_llm.model.lower():
			logger.warning(
				'⚠️ DeepSeek models do not support use_vision=True yet. Setting use_vision_for_planner=False for now...'
			)
			self.settings.use_vision_for_planner = False

		logger.info(
			f'🧠 Starting a browser-pilot agent {self.version} with base_model={self.llm.model}'
			f'{" +vision" if self.settings.use_vision else ""}'
			f'{" +memory" if enable_memory else ""}'
			f' extraction_model={self.settings.page_extraction_llm.model if self.settings.page_extraction_llm else "Unknown"}'
			f'{f" planner_model={self.settings.planner_llm.model}" if self.settings.planner_llm else ""}'
		)

		# The system prompt lists every action without a domain filter, page-specific ones come with each state
		self.unfiltered_actions = self.controller.registry.get_prompt_description()

		self._message_manager = MessageManager(
			task=task,
			system_message=SystemPrompt(
				action_description=self.unfiltered_actions,
				max_actions_per_step=self.settings.max_actions_per_step,
				override_system_message=override_system_message,
				extend_system_message=extend_system_message,
				use_thinking=self.settings.use_thinking,
			).get_system_message(),
			state=self.state.message_manager_state,
			use_thinking=self.settings.use_thinking,
			include_attributes=self.settings.include_attributes,
			sensitive_data=sensitive_data,
			max_history_items=self.settings.max_history_items,
			vision_detail_level=self.settings.vision_detail_level,
			include_tool_call_examples=self.settings.include_tool_call_examples,
		)

		# Procedural memory
		self.enable_memory = enable_memory
		self.memory_config = memory_config
		self.memory: Memory | None = None
		if self.enable_memory:
			if self.memory_config is None:
				self.memory_config = MemoryConfig(llm_instance=self.llm, agent_id=f'agent_{self.id[-4:]}')
			if memory_interval is not None:
				self.memory_config.memory_interval = memory_interval
			self.memory = Memory(
				message_manager=self._message_manager,
				llm=self.llm,
				config=self.memory_config,
				token_cost=self.token_cost_service,
			)

		if browser and browser_session:
			raise ValueError('Cannot specify both "browser" and "browser_session" parameters. Use "browser" for the cleaner API.')
		browser_session = browser or browser_session

		self.browser_session = browser_session or BrowserSession(
			browser_profile=browser_profile or BrowserProfile(),
			id=uuid7str()[:-4] + self.id[-4:],  # same 4-char suffix so they show up together in logs
		)

		if self.sensitive_data:
			self._check_sensitive_data_domains()

		# Callbacks
		self.register_new_step_callback = register_new_step_callback
		self.register_done_callback = register_done_callback
		self.register_external_agent_status_raise_error_callback = register_external_agent_status_raise_error_callback

		# Context
		self.context: Context | None = context

		self.eventbus = EventBus(name=f'Agent_{str(self.id)[-4:]}')

		if self.settings.save_conversation_path:
			self.settings.save_conversation_path = Path(self.settings.save_conversation_path).expanduser().resolve()
			logger.info(f'💬 Saving conversation to {_log_pretty_path(self.settings.save_conversation_path)}')

		self._external_pause_event = asyncio.Event()
		self._external_pause_event.set()

	@property
	def logger(self) -> logging.Logger:
		"""Get instance-specific logger with task ID in the name"""

		_browser_session_id = self.browser_session.id if self.browser_session else '----'
		_current_target_id = (
			self.browser_session.agent_focus.target_id[-2:]
			if self.browser_session and self.browser_session.agent_focus and self.browser_session.agent_focus.target_id
			else '--'
		)
		return logging.getLogger(f'browser_pilot.Agent🅰 {self.task_id[-4:]} ⇢ 🅑 {_browser_session_id[-4:]} 🅣 {_current_target_id}')

	@property
	def browser_profile(self) -> BrowserProfile:
		assert self.browser_session is not None, 'BrowserSession is not set up'
		return self.browser_session.browser_profile

	@property
	def message_manager(self) -> MessageManager:
		return self._message_manager

	def _check_sensitive_data_domains(self) -> None:
		"""Warn when credentials could be sent to domains the browser is allowed to leave for"""
		assert self.sensitive_data is not None
		allowed_domains = self.browser_profile.allowed_domains

		if not allowed_domains:
			self.logger.error(
				'⚠️⚠️⚠️ Agent(sensitive_data=••••••••) was provided but BrowserSession(allowed_domains=[...]) is not locked down! ⚠️⚠️⚠️\n'
				'          ☠️ If the agent visits a malicious website and encounters a prompt-injection attack, your sensitive_data may be exposed!'
			)
			return

		domain_patterns = [k for k, v in self.sensitive_data.items() if isinstance(v, dict)]
		for domain_pattern in domain_patterns:
			pattern_domain = domain_pattern.split('://')[-1]
			is_allowed = False
			for allowed_domain in allowed_domains:
				if domain_pattern == allowed_domain or allowed_domain == '*':
					is_allowed = True
					break

				# "google.com" is covered by "*.google.com"
				allowed_domain_part = allowed_domain.split('://')[-1]
				if pattern_domain == allowed_domain_part or (
					allowed_domain_part.startswith('*.')
					and (pattern_domain == allowed_domain_part[2:] or pattern_domain.endswith('.' + allowed_domain_part[2:]))
				):
					is_allowed = True
					break

			if not is_allowed:
				self.logger.warning(
					f'⚠️ Domain pattern "{domain_pattern}" in sensitive_data is not covered by any pattern in allowed_domains={allowed_domains}\n'
					f'   This may be a security risk as credentials could be used on unintended domains.'
				)

	def _set_screenshot_service(self) -> None:
		"""Initialize screenshot service using agent directory"""
		try:
			self.screenshot_service = ScreenshotService(self.agent_directory)
			logger.debug(f'📸 Screenshot service initialized in: {self.agent_directory}/screenshots')
		except OSError as e:
			logger.error(f'📸 Failed to initialize screenshot service: {e}.')
			raise e

	def _build_output_models(self, action_model: type[ActionModel]) -> type[AgentOutput]:
		if self.settings.use_thinking:
			return AgentOutput.type_with_custom_actions(action_model)
		return AgentOutput.type_with_custom_actions_no_thinking(action_model)

	def _setup_action_models(self) -> None:
		"""Setup dynamic action models from controller's registry"""
		# Initially only include actions with no filters
		self.ActionModel = self.controller.registry.create_action_model()
		self.AgentOutput = self._build_output_models(self.ActionModel)

		# used to force the done action when max_steps is reached
		self.DoneActionModel = self.controller.registry.create_action_model(include_actions=['done'])
		self.DoneAgentOutput = self._build_output_models(self.DoneActionModel)

	async def _update_action_models_for_page(self, page_url: str) -> None:
		"""Update action models with page-specific actions"""
		self.ActionModel = self.controller.registry.create_action_model(page_url=page_url)
		self.AgentOutput = self._build_output_models(self.ActionModel)

		self.DoneActionModel = self.controller.registry.create_action_model(include_actions=['done'], page_url=page_url)
		self.DoneAgentOutput = self._build_output_models(self.DoneActionModel)

	def add_new_task(self, new_task: str) -> None:
		"""Add a new task to the agent, keeping the same task_id as tasks are continuous"""
		self.task = new_task
		self._message_manager.add_new_task(new_task)
		# the event bus is shut down at the end of every run
		self.state.follow_up_task = True
		self.state.stopped = False
		self.eventbus = EventBus(name=f'Agent_{str(self.id)[-4:]}_{self.state.n_steps}')

	async def _raise_if_stopped_or_paused(self) -> None:
		"""Utility function that raises an InterruptedError if the agent is stopped or paused."""

		if self.register_external_agent_status_raise_error_callback:
			if await self.register_external_agent_status_raise_error_callback():
				raise InterruptedError

		if self.state.stopped or self.state.paused:
			raise InterruptedError

	@time_execution_async('--step')
	async def step(self, step_info: AgentStepInfo | None = None) -> None:
		"""Execute one step of the task"""
		self.step_start_time = time.time()

		browser_state_summary = None

		try:
			browser_state_summary = await self._prepare_context(step_info)

			if self.settings.planner_llm and self.state.n_steps % self.settings.planner_interval == 0:
				await self._run_planner()

			await self._get_next_action(browser_state_summary)
			await self._execute_actions()

			await self._post_process()

		except Exception as e:
			await self._handle_step_error(e)

		# a cancelled step (step_timeout) is recorded by run()
		await self._finalize(browser_state_summary)

	async def _prepare_context(self, step_info: AgentStepInfo | None = None) -> BrowserStateSummary:
		"""Prepare the context for the step: browser state, action models, page actions"""
		assert self.browser_session is not None, 'BrowserSession is not set up'

		self.logger.debug(f'🌐 Step {self.state.n_steps}: Getting browser state...')
		# the preloaded state of the first step can be reused
		use_cache = self.state.n_steps in (0, 1) and self.preload
		browser_state_summary = await self.browser_session.get_browser_state_summary(
			cache_clickable_elements_hashes=True,
			include_screenshot=True,
			cached=use_cache,
		)
		if browser_state_summary.screenshot:
			self.logger.debug(f'📸 Got browser state WITH screenshot, length: {len(browser_state_summary.screenshot)}')
		else:
			self.logger.debug('📸 Got browser state WITHOUT screenshot')

		self._log_step_context(browser_state_summary)
		await self._raise_if_stopped_or_paused()

		await self._update_action_models_for_page(browser_state_summary.url)
		page_filtered_actions = self.controller.registry.get_prompt_description(browser_state_summary.url)

		self._message_manager.create_state_messages(
			browser_state_summary=browser_state_summary,
			model_output=self.state.last_model_output,
			result=self.state.last_result,
			step_info=step_info,
			use_vision=self.settings.use_vision,
			page_filtered_actions=page_filtered_actions if page_filtered_actions else None,
			sensitive_data=self.sensitive_data,
			available_file_paths=self.available_file_paths,
		)
		# consumed by the history description above, a failing model call must not record it twice
		self.state.last_model_output = None

		await self._handle_final_step(step_info)
		return browser_state_summary

	async def _handle_final_step(self, step_info: AgentStepInfo | None = None) -> None:
		"""Handle special processing for the last step"""
		if step_info and step_info.is_last_step():
			msg = 'Now comes your last step. Use only the "done" action now. No other actions - so here your action sequence must have length 1.'
			msg += '\nIf the task is not yet fully finished as requested by the user, set success in "done" to false! E.g. if not all steps are fully completed.'
			msg += '\nIf the task is fully finished, set success in "done" to true.'
			msg += '\nInclude everything you found out for the ultimate task in the done text.'
			self.logger.info('Last step finishing up')
			self._message_manager._add_context_message(UserMessage(content=msg))
			self.AgentOutput = self.DoneAgentOutput

	@time_execution_async('--plan')
	async def _run_planner(self) -> str | None:
		"""Ask the planner model for a high level plan and insert it before the current state"""
		if not self.settings.planner_llm:
			return None

		page_actions = self.controller.registry.get_prompt_description()
		planner_messages: list[BaseMessage] = [
			PlannerPrompt(page_actions, self.settings.extend_planner_system_message).get_system_message(
				is_planner_reasoning=self.settings.is_planner_reasoning,
			),
			*self._message_manager.get_messages()[1:],  # the agent's own system prompt is replaced
		]

		if not self.settings.use_vision_for_planner and self.settings.use_vision:
			planner_messages = [self._strip_images(message) for message in planner_messages]

		try:
			response = await self.settings.planner_llm.ainvoke(planner_messages)
		except Exception as e:
			self.logger.error(f'❌ Failed to generate plan: {type(e).__name__}: {e}')
			return None

		self.token_cost_service.add_usage(self.settings.planner_llm.model, response.usage)

		plan = str(response.completion)
		if self.settings.is_planner_reasoning:
			plan = self._remove_think_tags(plan)

		self.state.last_plan = plan
		self._message_manager.add_plan(plan, position=-1)
		self.logger.info(f'🗺️ Planning Analysis:\n{plan}\n')
		return plan

	@staticmethod
	def _strip_images(message: BaseMessage) -> BaseMessage:
		if isinstance(message, UserMessage) and isinstance(message.content, list):
			text = ''.join(part.text for part in message.content if isinstance(part, ContentPartTextParam))
			return UserMessage(content=text)
		return message

	async def _get_next_action(self, browser_state_summary: BrowserStateSummary) -> None:
		"""Execute LLM interaction with retry logic and handle callbacks"""
		input_messages = self._message_manager.get_messages()
		self.logger.debug(
			f'🤖 Step {self.state.n_steps}: Calling LLM with {len(input_messages)} messages (model: {self.llm.model})...'
		)

		try:
			model_output = await asyncio.wait_for(
				self._get_model_output_with_retry(input_messages), timeout=self.settings.llm_timeout
			)
		except TimeoutError:
			raise TimeoutError(
				f'LLM call timed out after {self.settings.llm_timeout} seconds. Keep your thinking and output short.'
			)

		self.state.last_model_output = model_output

		# Check again for paused/stopped state after getting model output
		await self._raise_if_stopped_or_paused()

		self._message_manager.add_model_output(model_output)

		await self._handle_post_llm_processing(browser_state_summary, input_messages)

		# check again if Ctrl+C was pressed before we commit the output to history
		await self._raise_if_stopped_or_paused()

	async def _execute_actions(self) -> None:
		"""Execute the actions from model output"""
		if self.state.last_model_output is None:
			raise ValueError('No model output to execute actions from')

		self.logger.debug(f'⚡ Step {self.state.n_steps}: Executing {len(self.state.last_model_output.action)} actions...')
		result = await self.multi_act(self.state.last_model_output.action)
		self.state.last_result = result

	async def _post_process(self) -> None:
		"""Update the failure counter and log the final result"""
		if self.state.last_result and len(self.state.last_result) == 1 and self.state.last_result[-1].error:
			self.state.consecutive_failures += 1
			self.logger.debug(f'🔄 Step {self.state.n_steps}: Consecutive failures: {self.state.consecutive_failures}')
			return

		self.state.consecutive_failures = 0

		if self.state.last_result and self.state.last_result[-1].is_done:
			last = self.state.last_result[-1]
			if last.success:
				self.logger.info(f'📄 \033[32m Result:\033[0m \n{last.extracted_content}\n\n')
			else:
				self.logger.info(f'📄 \033[31m Result:\033[0m \n{last.extracted_content}\n\n')
			if last.attachments:
				total_attachments = len(last.attachments)
				for i, file_path in enumerate(last.attachments):
					self.logger.info(f'👉 Attachment {i + 1 if total_attachments > 1 else ""}: {file_path}')

	async def _handle_step_error(self, error: Exception) -> None:
		"""Handle all types of errors that can occur during a step"""
		include_trace = self.logger.isEnabledFor(logging.DEBUG)
		error_msg = AgentError.format_error(error, include_trace=include_trace)
		prefix = f'❌ Result failed {self.state.consecutive_failures + 1}/{self.settings.max_failures} times:\n '
		self.state.consecutive_failures += 1

		if isinstance(error, (ValidationError, ValueError)):
			self.logger.error(f'{prefix}{error_msg}')
			if 'Max token limit reached' in error_msg:
				error_msg += '\n\nYour response was too long. Keep your thinking and output concise.'
		elif isinstance(error, InterruptedError):
			error_msg = 'The agent was interrupted mid-step' + (f' - {error}' if str(error) else '')
			self.logger.error(f'{prefix}{error_msg}')
		elif 'Could not parse response' in error_msg or 'tool_use_failed' in error_msg:
			self.logger.debug(f'Model: {self.llm.model} failed')
			error_msg += '\n\nReturn a valid JSON object with the required fields.'
			self.logger.error(f'{prefix}{error_msg}')
		else:
			from openai import RateLimitError

			if isinstance(error, (ModelRateLimitError, RateLimitError)) or 'on tokens per minute (TPM): Limit' in error_msg:
				self.logger.warning(f'{prefix}{error_msg}')
				await asyncio.sleep(self.settings.retry_delay)
			else:
				self.logger.error(f'{prefix}{error_msg}')

		self.state.last_result = [ActionResult(error=error_msg)]

	async def _finalize(self, browser_state_summary: BrowserStateSummary | None) -> None:
		"""Record the step in history and run procedural memory when it is due"""
		step_end_time = time.time()
		if not self.state.last_result:
			return

		if browser_state_summary:
			metadata = StepMetadata(
				step_number=self.state.n_steps,
				step_start_time=self.step_start_time,
				step_end_time=step_end_time,
			)
			await self._make_history_item(self.state.last_model_output, browser_state_summary, self.state.last_result, metadata)

		self._log_step_completion_summary(self.step_start_time, self.state.last_result)

		self.state.n_steps += 1

		if self.memory and self.memory_config and self.state.n_steps % self.memory_config.memory_interval == 0:
			await self.memory.create_procedural_memory(self.state.n_steps)

	async def _get_model_output_with_retry(self, input_messages: list[BaseMessage]) -> AgentOutput:
		"""Get model output with retry logic for empty actions"""
		model_output = await self.get_model_output(input_messages)
		self.logger.debug(
			f'✅ Step {self.state.n_steps}: Got LLM response with {len(model_output.action) if model_output.action else 0} actions'
		)

		if (
			not model_output.action
			or not isinstance(model_output.action, list)
			or all(action.model_dump() == {} for action in model_output.action)
		):
			self.logger.warning('Model returned empty action. Retrying...')

			clarification_message = UserMessage(
				content='You forgot to return an action. Please respond with a valid JSON action according to the expected schema with your assessment and next actions.'
			)

			retry_messages = input_messages + [clarification_message]
			model_output = await self.get_model_output(retry_messages)

			if not model_output.action or all(action.model_dump() == {} for action in model_output.action):
				self.logger.warning('Model still returned empty after retry. Inserting safe noop action.')
				action_instance = self.ActionModel.model_validate(
					{
						'done': {
							'success': False,
							'text': 'No next action returned by LLM!',
						}
					}
				)
				model_output.action = [action_instance]

		return model_output

	async def _handle_post_llm_processing(
		self,
		browser_state_summary: BrowserStateSummary,
		input_messages: list[BaseMessage],
	) -> None:
		"""Handle callbacks and conversation saving after LLM interaction"""
		if self.register_new_step_callback and self.state.last_model_output:
			if inspect.iscoroutinefunction(self.register_new_step_callback):
				await self.register_new_step_callback(
					browser_state_summary,
					self.state.last_model_output,
					self.state.n_steps,
				)
			else:
				self.register_new_step_callback(
					browser_state_summary,
					self.state.last_model_output,
					self.state.n_steps,
				)

		if self.settings.save_conversation_path and self.state.last_model_output:
			# save_conversation_path is a directory, one file per step
			conversation_dir = Path(self.settings.save_conversation_path)
			target = conversation_dir / f'conversation_{self.id}_{self.state.n_steps}.txt'
			await save_conversation(
				input_messages,
				self.state.last_model_output,
				target,
				self.settings.save_conversation_path_encoding,
			)

	async def _make_history_item(
		self,
		model_output: AgentOutput | None,
		browser_state_summary: BrowserStateSummary,
		result: list[ActionResult],
		metadata: StepMetadata | None = None,
	) -> None:
		"""Create and store history item"""

		if model_output:
			interacted_elements = AgentHistory.get_interacted_element(model_output, browser_state_summary.dom_state.selector_map)
		else:
			interacted_elements = [None]

		screenshot_path = None
		if browser_state_summary.screenshot:
			screenshot_path = await self.screenshot_service.store_screenshot(browser_state_summary.screenshot, self.state.n_steps)

		state_history = BrowserStateHistory(
			url=browser_state_summary.url,
			title=browser_state_summary.title,
			tabs=browser_state_summary.tabs,
			interacted_element=interacted_elements,
			screenshot_path=screenshot_path,
		)

		self.history.add_item(
			AgentHistory(
				model_output=model_output,
				result=result,
				state=state_history,
				metadata=metadata,
			)
		)

	def _remove_think_tags(self, text: str) -> str:
		THINK_TAGS = re.compile(r'<think>.*?</think>', re.DOTALL)
		STRAY_CLOSE_TAG = re.compile(r'.*?</think>', re.DOTALL)
		# Step 1: Remove well-formed <think>...</think>
		text = re.sub(THINK_TAGS, '', text)
		# Step 2: If there's an unmatched closing tag </think>,
		#         remove everything up to and including that.
		text = re.sub(STRAY_CLOSE_TAG, '', text)
		return text.strip()

	@time_execution_async('--get_next_action')
	async def get_model_output(self, input_messages: list[BaseMessage]) -> AgentOutput:
		"""Get next action from LLM based on current state"""
		response = await self.llm.ainvoke(input_messages, output_format=self.AgentOutput)
		self.token_cost_service.add_usage(self.llm.model, response.usage)
		parsed = response.completion

		# cut the number of actions to max_actions_per_step if needed
		if len(parsed.action) > self.settings.max_actions_per_step:
			parsed.action = parsed.action[: self.settings.max_actions_per_step]

		if not (self.state.paused or self.state.stopped):
			log_response(parsed, self.controller.registry.registry, self.logger)

		self._log_next_action_summary(parsed)
		return parsed

	def _log_agent_run(self) -> None:
		"""Log the agent run"""
		self.logger.info(f'\033[34m🚀 Task: {self.task}\033[0m')
		self.logger.debug(f'🤖 browser-pilot version {self.version}')

	def _log_step_context(self, browser_state_summary: BrowserStateSummary) -> None:
		"""Log step context information"""
		url = browser_state_summary.url if browser_state_summary else ''
		url_short = url[:50] + '...' if len(url) > 50 else url
		interactive_count = len(browser_state_summary.dom_state.selector_map) if browser_state_summary else 0
		self.logger.info(f'📍 Step {self.state.n_steps}:')
		self.logger.debug(f'Evaluating page with {interactive_count} interactive elements on: {url_short}')

	def _log_next_action_summary(self, parsed: 'AgentOutput') -> None:
		"""Log a one-line summary per decided action"""
		if not (self.logger.isEnabledFor(logging.DEBUG) and parsed.action):
			return

		action_details = []
		for action in parsed.action:
			action_data = action.model_dump(exclude_unset=True)
			action_name = next(iter(action_data.keys())) if action_data else 'unknown'
			action_params = action_data.get(action_name, {}) if action_data else {}

			param_summary = []
			if isinstance(action_params, dict):
				for key, value in action_params.items():
					if key == 'index':
						param_summary.append(f'#{value}')
					elif key == 'text' and isinstance(value, str):
						text_preview = value[:30] + '...' if len(value) > 30 else value
						param_summary.append(f'text="{text_preview}"')
					elif key == 'url':
						param_summary.append(f'url="{value}"')
					elif isinstance(value, (str, int, bool)):
						val_str = str(value)[:30] + '...' if len(str(value)) > 30 else str(value)
						param_summary.append(f'{key}={val_str}')

			param_str = f'({", ".join(param_summary)})' if param_summary else ''
			action_details.append(f'{action_name}{param_str}')

		if len(action_details) == 1:
			self.logger.info(f'☝️ Decided next action: {action_details[0]}')
		else:
			summary_lines = [f'✌️ Decided next {len(action_details)} multi-actions:']
			for i, detail in enumerate(action_details):
				summary_lines.append(f'          {i + 1}. {detail}')
			self.logger.info('\n'.join(summary_lines))

	def _log_step_completion_summary(self, step_start_time: float, result: list[ActionResult]) -> None:
		"""Log step completion summary with action count, timing, and success/failure stats"""
		if not result:
			return

		step_duration = time.time() - step_start_time
		action_count = len(result)
		success_count = sum(1 for r in result if not r.error)
		failure_count = action_count - success_count

		success_indicator = f'✅ {success_count}' if success_count > 0 else ''
		failure_indicator = f'❌ {failure_count}' if failure_count > 0 else ''
		status_parts = [part for part in [success_indicator, failure_indicator] if part]
		status_str = ' | '.join(status_parts) if status_parts else '✅ 0'

		self.logger.debug(
			f'📍 Step {self.state.n_steps}: Ran {action_count} action{"" if action_count == 1 else "s"} in {step_duration:.2f}s: {status_str}'
		)

	async def take_step(self, step_info: AgentStepInfo | None = None) -> tuple[bool, bool]:
		"""Take a step

		Returns:
		        Tuple[bool, bool]: (is_done, is_valid)
		"""
		await self.step(step_info)

		if self.history.is_done():
			await self.log_completion()
			await self._fire_done_callback()
			return True, True

		return False, False

	async def _fire_done_callback(self) -> None:
		if self.register_done_callback:
			if inspect.iscoroutinefunction(self.register_done_callback):
				await self.register_done_callback(self.history)
			else:
				self.register_done_callback(self.history)

	def _extract_url_from_task(self, task: str) -> str | None:
		"""Extract URL from task string using naive pattern matching."""
		full_url_pattern = r'https?://[^\s<>"\']+'
		bare_domain_pattern = r'(?:www\.)?[a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}(?:/[^\s<>"\']*)?'
		email_pattern = r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'

		# spans already claimed by a full URL or an email address
		taken = [m.span() for m in re.finditer(email_pattern, task)]
		found_urls = []
		for match in re.finditer(full_url_pattern, task):
			found_urls.append(match.group(0))
			taken.append(match.span())

		for match in re.finditer(bare_domain_pattern, task):
			start, end = match.span()
			if any(start < taken_end and end > taken_start for taken_start, taken_end in taken):
				continue
			found_urls.append('https://' + match.group(0))

		# trailing punctuation belongs to the sentence, not the URL
		unique_urls = {re.sub(r'[.,;:!?()\[\]]+$', '', url) for url in found_urls}
		if len(unique_urls) > 1:
			self.logger.debug(f'📍 Multiple URLs found ({len(unique_urls)}), skipping preload to avoid ambiguity')
			return None

		if len(unique_urls) == 1:
			return unique_urls.pop()

		return None

	@time_execution_async('--run')
	async def run(
		self,
		max_steps: int = 100,
		on_step_start: AgentHookFunc | None = None,
		on_step_end: AgentHookFunc | None = None,
	) -> AgentHistoryList[AgentStructuredOutput]:
		"""Execute the task with maximum number of steps"""

		loop = asyncio.get_event_loop()

		signal_handler = SignalHandler(
			loop=loop,
			pause_callback=self.pause,
			resume_callback=self.resume,
			custom_exit_callback=None,
			exit_on_second_int=True,
		)
		signal_handler.register()

		try:
			self._log_agent_run()

			self._session_start_time = time.time()
			self._task_start_time = self._session_start_time

			assert self.browser_session is not None, 'Browser session must be initialized before starting'
			self.logger.debug('🌐 Starting browser session...')
			await self.browser_session.start()

			if self.preload and not self.state.follow_up_task:
				initial_url = self._extract_url_from_task(self.task)
				if initial_url:
					self.logger.info(f'🔗 Found URL in task: {initial_url}, adding as initial action...')
					go_to_url_action = {'go_to_url': {'url': initial_url, 'new_tab': False}}
					existing = [action.model_dump(exclude_unset=True) for action in self.initial_actions or []]
					self.initial_actions = self._convert_initial_actions([go_to_url_action] + existing)

			if self.initial_actions and not self.state.follow_up_task:
				self.logger.debug(f'⚡ Executing {len(self.initial_actions)} initial actions...')
				result = await self.multi_act(self.initial_actions, check_for_new_elements=False)
				self.state.last_result = result

			for step in range(max_steps):
				if self.state.paused:
					self.logger.debug(f'⏸️ Step {step}: Agent paused, waiting to resume...')
					await self.wait_until_resumed()
					signal_handler.reset()

				if self.state.consecutive_failures >= self.settings.max_failures:
					self.logger.error(f'❌ Stopping due to {self.settings.max_failures} consecutive failures')
					break

				if self.state.stopped:
					self.logger.info('🛑 Agent stopped')
					break

				if on_step_start is not None:
					await on_step_start(self)

				step_info = AgentStepInfo(step_number=step, max_steps=max_steps)

				try:
					await asyncio.wait_for(
						self.step(step_info),
						timeout=self.settings.step_timeout,
					)
				except TimeoutError:
					error_msg = f'Step {step + 1} timed out after {self.settings.step_timeout} seconds'
					self.logger.error(f'⏰ {error_msg}')
					self.state.consecutive_failures += 1
					self.state.last_model_output = None
					self.state.last_result = [ActionResult(error=error_msg)]
					self.history.add_item(
						AgentHistory(
							model_output=None,
							result=self.state.last_result,
							state=BrowserStateHistory(
								url='',
								title='',
								tabs=[],
								interacted_element=[],
								screenshot_path=None,
							),
							metadata=StepMetadata(
								step_number=self.state.n_steps,
								step_start_time=self.step_start_time,
								step_end_time=time.time(),
							),
						)
					)
					self.state.n_steps += 1

				if on_step_end is not None:
					await on_step_end(self)

				if self.history.is_done():
					self.logger.debug(f'🎯 Task completed after {step + 1} steps!')
					await self.log_completion()
					await self._fire_done_callback()
					break
			else:
				agent_run_error = 'Failed to complete task in maximum steps'

				self.history.add_item(
					AgentHistory(
						model_output=None,
						result=[ActionResult(error=agent_run_error, include_in_memory=True)],
						state=BrowserStateHistory(
							url='',
							title='',
							tabs=[],
							interacted_element=[],
							screenshot_path=None,
						),
						metadata=None,
					)
				)

				self.logger.info(f'❌ {agent_run_error}')

			self.history.usage = self.token_cost_service.get_usage_summary()

			if self.history._output_model_schema is None and self.output_model_schema is not None:
				self.history._output_model_schema = self.output_model_schema

			return self.history

		except KeyboardInterrupt:
			self.logger.debug('Got KeyboardInterrupt during execution, returning current history')
			self.history.usage = self.token_cost_service.get_usage_summary()
			return self.history

		except Exception as e:
			self.logger.error(f'Agent run failed with exception: {e}', exc_info=True)
			raise e

		finally:
			self.token_cost_service.log_usage_summary()

			signal_handler.unregister()

			if self.settings.generate_gif:
				output_path: str = 'agent_history.gif'
				if isinstance(self.settings.generate_gif, str):
					output_path = self.settings.generate_gif

				# Pillow is only needed here
				from browser_pilot.agent.gif import create_history_gif

				create_history_gif(task=self.task, history=self.history, output_path=output_path)

			await self.eventbus.stop(timeout=3.0)

			await self.close()

	@time_execution_async('--multi_act')
	async def multi_act(
		self,
		actions: list[ActionModel],
		check_for_new_elements: bool = True,
	) -> list[ActionResult]:
		"""Execute multiple actions"""
		results: list[ActionResult] = []
		time_elapsed = 0
		total_actions = len(actions)

		assert self.browser_session is not None, 'BrowserSession is not set up'
		cached_state = self.browser_session._cached_browser_state_summary
		if cached_state is not None and cached_state.dom_state is not None:
			cached_selector_map = dict(cached_state.dom_state.selector_map)
			cached_element_hashes = {e.parent_branch_hash() for e in cached_selector_map.values()}
		else:
			cached_selector_map = {}
			cached_element_hashes = set()

		for i, action in enumerate(actions):
			# done is only allowed as a single action
			if i > 0 and action.model_dump(exclude_unset=True).get('done') is not None:
				msg = f'Done action is allowed only as a single action - stopped after action {i} / {total_actions}.'
				self.logger.info(msg)
				break

			# after the first action, verify the targeted element is still the one the model saw
			if action.get_index() is not None and i != 0:
				new_browser_state_summary = await self.browser_session.get_browser_state_summary(
					cache_clickable_elements_hashes=False,
					include_screenshot=False,
				)
				new_selector_map = new_browser_state_summary.dom_state.selector_map

				orig_target = cached_selector_map.get(action.get_index())  # type: ignore
				orig_target_hash = orig_target.parent_branch_hash() if orig_target else None

				new_target = new_selector_map.get(action.get_index())  # type: ignore
				new_target_hash = new_target.parent_branch_hash() if new_target else None

				if orig_target_hash != new_target_hash:
					msg = f'Page changed after action {i} / {total_actions}: actions {self._remaining_action_names(actions, i)} were not executed'
					self.logger.info(msg)
					results.append(ActionResult(extracted_content=msg, include_in_memory=True, long_term_memory=msg))
					break

				new_element_hashes = {e.parent_branch_hash() for e in new_selector_map.values()}
				if check_for_new_elements and not new_element_hashes.issubset(cached_element_hashes):
					msg = f'Something new appeared after action {i} / {total_actions}: actions {self._remaining_action_names(actions, i)} were not executed'
					self.logger.info(msg)
					results.append(ActionResult(extracted_content=msg, include_in_memory=True, long_term_memory=msg))
					break

			if i > 0:
				await asyncio.sleep(self.browser_profile.wait_between_actions)

			red = '\033[91m'
			green = '\033[92m'
			blue = '\033[34m'
			reset = '\033[0m'

			action_params = ''
			try:
				await self._raise_if_stopped_or_paused()
				action_data = action.model_dump(exclude_unset=True)
				action_name = next(iter(action_data.keys())) if action_data else 'unknown'
				action_params = str(action_data.get(action_name, ''))
				action_params = f'{action_params[:122]}...' if len(action_params) > 128 else action_params
				time_start = time.time()
				self.logger.info(f'  🦾 {blue}[ACTION {i + 1}/{total_actions}]{reset} {action_name}: {action_params}')

				result = await self.controller.act(
					action=action,
					browser_session=self.browser_session,
					page_extraction_llm=self.settings.page_extraction_llm,
					sensitive_data=self.sensitive_data,
					available_file_paths=self.available_file_paths,
					context=self.context,
				)

				time_elapsed = time.time() - time_start
				results.append(result)

				self.logger.debug(
					f'☑️ Executed action {i + 1}/{total_actions}: {green}{action_params}{reset} in {time_elapsed:.2f}s'
				)

				if results[-1].is_done or results[-1].error or i == total_actions - 1:
					break

			except Exception as e:
				self.logger.error(
					f'❌ Executing action {i + 1} failed in {time_elapsed:.2f}s {red}({action_params}) -> {type(e).__name__}: {e}{reset}'
				)
				raise e

		return results

	@staticmethod
	def _remaining_action_names(actions: list[ActionModel], index: int) -> str:
		names = []
		for remaining_action in actions[index:]:
			action_data = remaining_action.model_dump(exclude_unset=True)
			names.append(next(iter(action_data.keys())) if action_data else 'unknown')
		return ', '.join(names)

	async def log_completion(self) -> None:
		"""Log the completion of the task"""
		task_duration = time.time() - getattr(self, '_task_start_time', self.step_start_time)
		if self.history.is_successful():
			self.logger.info(f'✅ Task completed successfully in {task_duration:.2f}s')
		else:
			self.logger.info(f'❌ Task completed without success in {task_duration:.2f}s')

	async def rerun_history(
		self,
		history: AgentHistoryList,
		max_retries: int = 3,
		skip_failures: bool = True,
		delay_between_actions: float = 2.0,
	) -> list[ActionResult]:
		"""
		Rerun a saved history of actions with error handling and retry logic.

		Args:
		                history: The history to replay
		                max_retries: Maximum number of retries per action
		                skip_failures: Whether to skip failed actions or stop execution
		                delay_between_actions: Delay between actions in seconds

		Returns:
		                List of action results
		"""
		if self.initial_actions:
			result = await self.multi_act(self.initial_actions)
			self.state.last_result = result

		results = []

		for i, history_item in enumerate(history.history):
			goal = history_item.model_output.current_state.next_goal if history_item.model_output else ''
			self.logger.info(f'Replaying step {i + 1}/{len(history.history)}: goal: {goal}')

			if (
				not history_item.model_output
				or not history_item.model_output.action
				or history_item.model_output.action == [None]
			):
				self.logger.warning(f'Step {i + 1}: No action to replay, skipping')
				results.append(ActionResult(error='No action to replay'))
				continue

			retry_count = 0
			while retry_count < max_retries:
				try:
					result = await self._execute_history_step(history_item, delay_between_actions)
					results.extend(result)
					break

				except Exception as e:
					retry_count += 1
					if retry_count == max_retries:
						error_msg = f'Step {i + 1} failed after {max_retries} attempts: {str(e)}'
						self.logger.error(error_msg)
						results.append(ActionResult(error=error_msg))
						if not skip_failures:
							raise RuntimeError(error_msg)
					else:
						self.logger.warning(f'Step {i + 1} failed (attempt {retry_count}/{max_retries}), retrying...')
						await asyncio.sleep(delay_between_actions)

		return results

	async def _execute_history_step(self, history_item: AgentHistory, delay: float) -> list[ActionResult]:
		"""Execute a single step from history with element validation"""
		assert self.browser_session is not None, 'BrowserSession is not set up'
		state = await self.browser_session.get_browser_state_summary(
			cache_clickable_elements_hashes=False, include_screenshot=False
		)
		if not state or not history_item.model_output:
			raise ValueError('Invalid state or model output')
		updated_actions = []
		for i, action in enumerate(history_item.model_output.action):
			historical_element = (
				history_item.state.interacted_element[i] if i < len(history_item.state.interacted_element) else None
			)
			updated_action = await self._update_action_indices(historical_element, action, state)
			if updated_action is None:
				raise ValueError(f'Could not find matching element {i} in current page')
			updated_actions.append(updated_action)

		result = await self.multi_act(updated_actions)

		await asyncio.sleep(delay)
		return result

	async def _update_action_indices(
		self,
		historical_element: DOMInteractedElement | None,
		action: ActionModel,
		browser_state_summary: BrowserStateSummary,
	) -> ActionModel | None:
		"""
		Update action indices based on current page state.
		Returns updated action or None if element cannot be found.
		"""
		if not historical_element or not browser_state_summary.dom_state.selector_map:
			return action

		highlight_index, current_element = next(
			(
				(highlight_index, element)
				for highlight_index, element in browser_state_summary.dom_state.selector_map.items()
				if element.element_hash == historical_element.element_hash
			),
			(None, None),
		)

		if not current_element or highlight_index is None:
			return None

		old_index = action.get_index()
		if old_index != highlight_index:
			action.set_index(highlight_index)
			self.logger.info(f'Element moved in DOM, updated index from {old_index} to {highlight_index}')

		return action

	async def load_and_rerun(self, history_file: str | Path | None = None, **kwargs) -> list[ActionResult]:
		"""
		Load history from file and rerun it.

		Args:
		                history_file: Path to the history file
		                **kwargs: Additional arguments passed to rerun_history
		"""
		if not history_file:
			history_file = 'AgentHistory.json'
		history = AgentHistoryList.load_from_file(history_file, self.AgentOutput)
		return await self.rerun_history(history, **kwargs)

	def save_history(self, file_path: str | Path | None = None) -> None:
		"""Save the history to a file, sensitive values are masked"""
		if not file_path:
			file_path = 'AgentHistory.json'
		self.history.save_to_file(file_path, sensitive_data=self.sensitive_data)

	async def wait_until_resumed(self):
		await self._external_pause_event.wait()

	def pause(self) -> None:
		"""Pause the agent before the next step"""
		print(
			'\n\n⏸️  Got [Ctrl+C], paused the agent and left the browser open.\n\tPress [Enter] to resume or [Ctrl+C] again to quit.'
		)
		self.state.paused = True
		self._external_pause_event.clear()

	def resume(self) -> None:
		"""Resume the agent"""
		print('----------------------------------------------------------------------')
		print('▶️  Got Enter, resuming agent execution where it left off...\n')
		self.state.paused = False
		self._external_pause_event.set()

	def stop(self) -> None:
		"""Stop the agent"""
		self.logger.info('⏹️ Agent stopping')
		self.state.stopped = True
		# a paused run has to wake up to notice the stop
		self._external_pause_event.set()

	def _convert_initial_actions(self, actions: list[dict[str, dict[str, Any]]]) -> list[ActionModel]:
		"""Convert dictionary-based actions to ActionModel instances"""
		converted_actions = []
		for action_dict in actions:
			# Each action_dict should have a single key-value pair
			action_name = next(iter(action_dict))
			params = action_dict[action_name]

			param_model = self.controller.registry.registry.actions[action_name].param_model
			validated_params = param_model(**params)

			converted_actions.append(self.ActionModel(**{action_name: validated_params}))

		return converted_actions

	def _verify_and_setup_llm(self) -> bool:
		"""
		Mark the LLM as verified. Keys are only checked by the provider on the first call,
		SKIP_LLM_API_KEY_VERIFICATION skips the warning for models without a key.
		"""
		if getattr(self.llm, '_verified_api_keys', None) is True or CONFIG.SKIP_LLM_API_KEY_VERIFICATION:
			setattr(self.llm, '_verified_api_keys', True)
			return True

		api_key = getattr(self.llm, 'api_key', None)
		if api_key is None and self.llm.provider in ('openai', 'deepseek'):
			env_key = CONFIG.OPENAI_API_KEY if self.llm.provider == 'openai' else CONFIG.DEEPSEEK_API_KEY
			if not env_key:
				self.logger.warning(f'⚠️ No API key found for {self.llm.provider}, the first model call will likely fail')
				return False

		setattr(self.llm, '_verified_api_keys', True)
		return True

	async def close(self):
		"""Close all resources"""
		try:
			# Only close browser if keep_alive is False (or not set)
			if self.browser_session is not None:
				if not self.browser_session.browser_profile.keep_alive:
					await self.browser_session.kill()

			gc.collect()

			tasks = asyncio.all_tasks(asyncio.get_event_loop())
			other_tasks = [t for t in tasks if t != asyncio.current_task()]
			if other_tasks:
				self.logger.debug(f'⚡ Remaining asyncio tasks ({len(other_tasks)}):')
				for task in other_tasks[:10]:
					self.logger.debug(f'  - {task.get_name()}: {task}')

		except Exception as e:
			self.logger.error(f'Error during cleanup: {e}')

	def run_sync(
		self,
		max_steps: int = 100,
		on_step_start: AgentHookFunc | None = None,
		on_step_end: AgentHookFunc | None = None,
	) -> AgentHistoryList[AgentStructuredOutput]:
		"""Synchronous wrapper around the async run method for easier usage without asyncio."""
		return asyncio.run(self.run(max_steps=max_steps, on_step_start=on_step_start, on_step_end=on_step_end))
