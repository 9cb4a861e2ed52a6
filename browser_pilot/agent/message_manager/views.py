from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from browser_pilot.llm.messages import BaseMessage

MessageType = Literal['init', 'memory', 'plan', 'state', 'model_output', 'context']


class MessageMetadata(BaseModel):
	"""Metadata for a message"""

	message_type: MessageType = 'init'


class ManagedMessage(BaseModel):
	"""A message with its metadata"""

	message: BaseMessage
	metadata: MessageMetadata = Field(default_factory=MessageMetadata)

	model_config = ConfigDict(arbitrary_types_allowed=True)


class HistoryItem(BaseModel):
	"""Represents a single agent history item with its data and string representation"""

	step_number: int | None = None
	evaluation_previous_goal: str | None = None
	memory: str | None = None
	next_goal: str | None = None
	action_results: str | None = None
	error: str | None = None
	system_message: str | None = None

	model_config = ConfigDict(arbitrary_types_allowed=True)

	def model_post_init(self, __context) -> None:
		"""Validate that error and system_message are not both provided"""
		if self.error is not None and self.system_message is not None:
			raise ValueError('Cannot have both error and system_message at the same time')

	def to_string(self) -> str:
		"""Get string representation of the history item"""
		step_str = f'step_{self.step_number}' if self.step_number is not None else 'step_unknown'

		if self.error:
			return f'<{step_str}>\n{self.error}\n</{step_str}>'
		elif self.system_message:
			return f'<sys>\n{self.system_message}\n</sys>'

		content_parts = []
		if self.evaluation_previous_goal:
			content_parts.append(f'Evaluation of Previous Step: {self.evaluation_previous_goal}')
		if self.memory:
			content_parts.append(f'Memory: {self.memory}')
		if self.next_goal:
			content_parts.append(f'Next Goal: {self.next_goal}')
		if self.action_results:
			content_parts.append(self.action_results)

		content = '\n'.join(content_parts)
		return f'<{step_str}>\n{content}\n</{step_str}>'


class MessageHistory(BaseModel):
	"""Ordered conversation sent to the model, each message tagged with its type"""

	messages: list[ManagedMessage] = Field(default_factory=list)

	model_config = ConfigDict(arbitrary_types_allowed=True)

	def add_message(self, message: BaseMessage, message_type: MessageType = 'init', position: int | None = None) -> None:
		"""Add message, appending by default or inserting at position"""
		managed_message = ManagedMessage(message=message, metadata=MessageMetadata(message_type=message_type))
		if position is None:
			self.messages.append(managed_message)
		else:
			self.messages.insert(position, managed_message)

	def get_messages(self) -> list[BaseMessage]:
		return [m.message for m in self.messages]

	def get_messages_of_type(self, message_type: MessageType) -> list[BaseMessage]:
		return [m.message for m in self.messages if m.metadata.message_type == message_type]

	def remove_messages_of_type(self, message_type: MessageType) -> int:
		"""Drop every message of the given type, returns how many were removed"""
		before = len(self.messages)
		self.messages = [m for m in self.messages if m.metadata.message_type != message_type]
		return before - len(self.messages)

	def remove_last_state_message(self) -> None:
		"""Remove the most recent state message, it is only useful for the call it was built for"""
		for i in range(len(self.messages) - 1, -1, -1):
			if self.messages[i].metadata.message_type == 'state':
				self.messages.pop(i)
				return


class MessageManagerState(BaseModel):
	"""Holds the state for MessageManager"""

	history: MessageHistory = Field(default_factory=MessageHistory)
	tool_id: int = 1
	memory_summaries: int = 0
	agent_history_items: list[HistoryItem] = Field(
		default_factory=lambda: [HistoryItem(step_number=0, system_message='Agent initialized')]
	)
	read_state_description: str = ''

	model_config = ConfigDict(arbitrary_types_allowed=True)
