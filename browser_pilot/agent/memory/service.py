from __future__ import annotations

import logging

from browser_pilot.agent.memory.views import MemoryConfig
from browser_pilot.agent.message_manager.service import MessageManager
from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.messages import BaseMessage, SystemMessage, UserMessage
from browser_pilot.tokens.service import TokenCost
from browser_pilot.utils import time_execution_async

logger = logging.getLogger(__name__)

PROCEDURAL_MEMORY_PROMPT = """You are summarizing the execution history of a browser automation agent.
Write a procedural memory that lets the agent continue the task without the original messages.

Include:
- Progress: which steps of the task are done, with the concrete results (URLs, values, names) they produced
- Facts: information found so far that the task still needs
- State: where the browser currently is and anything that failed and should not be retried the same way
- Next steps: what remains to be done

Write in short numbered lines. Keep every concrete value, drop everything else.
Do not invent anything that is not in the history."""


class Memory:
	"""
	Procedural memory for agents: periodically condenses older conversation messages
	into one summary message so long runs stay within the model's context.
	"""

	def __init__(
		self,
		message_manager: MessageManager,
		llm: BaseChatModel,
		config: MemoryConfig | None = None,
		token_cost: TokenCost | None = None,
	):
		self.message_manager = message_manager
		self.config = config or MemoryConfig()
		self.llm = self.config.llm_instance or llm
		self.token_cost = token_cost

	@time_execution_async('--create_procedural_memory')
	async def create_procedural_memory(self, current_step: int) -> None:
		"""
		Create a procedural memory if needed based on the current step.

		Args:
			current_step: The current step number of the agent
		"""
		logger.debug(f'🧠 Creating procedural memory at step {current_step}')

		messages_to_summarize = self.message_manager.get_summarizable_messages(self.config.keep_last_messages)
		if len(messages_to_summarize) < 2:
			logger.debug('🧠 Not enough non-memory messages to summarize')
			return

		memory_content = await self._create(messages_to_summarize, current_step)
		if not memory_content:
			logger.warning('🧠 Failed to create procedural memory')
			return

		memory_message = UserMessage(content=f'<procedural_memory>\n{memory_content}\n</procedural_memory>')
		replaced = self.message_manager.replace_messages_with_memory(memory_message, self.config.keep_last_messages)
		self.message_manager.state.memory_summaries += 1

		logger.info(f'🧠 Procedural memory created at step {current_step}, replaced {replaced} messages')

	async def _create(self, messages: list[BaseMessage], current_step: int) -> str | None:
		conversation = '\n'.join(f'{message.role}: {message.text}' for message in messages)
		summary_messages: list[BaseMessage] = [
			SystemMessage(content=PROCEDURAL_MEMORY_PROMPT),
			UserMessage(content=f'Agent history up to step {current_step}:\n{conversation}'),
		]
		try:
			response = await self.llm.ainvoke(summary_messages)
		except Exception as e:
			logger.error(f'🧠 Error creating procedural memory: {type(e).__name__}: {e}')
			return None

		if self.token_cost is not None:
			self.token_cost.add_usage(self.llm.model, response.usage)

		content = response.completion
		if not isinstance(content, str):
			content = str(content)
		return content.strip() or None
