from __future__ import annotations

import json
from typing import Any

from browser_pilot.llm.messages import (
	AssistantMessage,
	BaseMessage,
	SystemMessage,
	UserMessage,
)

MessageDict = dict[str, Any]


class DeepSeekMessageSerializer:
	"""Serialize messages for the DeepSeek chat endpoint, which is text-only."""

	@staticmethod
	def _serialize_content(content: Any) -> str:
		if content is None:
			return ''
		if isinstance(content, str):
			return content
		texts: list[str] = []
		for part in content:
			if part.type == 'text':
				texts.append(part.text)
			elif part.type == 'refusal':
				texts.append(f'[Refusal] {part.refusal}')
			elif part.type == 'image_url':
				# images are dropped, DeepSeek chat does not accept them
				continue
		return '\n'.join(texts)

	@staticmethod
	def serialize(message: BaseMessage) -> MessageDict:
		if isinstance(message, UserMessage):
			return {'role': 'user', 'content': DeepSeekMessageSerializer._serialize_content(message.content)}

		if isinstance(message, SystemMessage):
			return {'role': 'system', 'content': DeepSeekMessageSerializer._serialize_content(message.content)}

		if isinstance(message, AssistantMessage):
			msg: MessageDict = {'role': 'assistant', 'content': DeepSeekMessageSerializer._serialize_content(message.content)}
			if message.tool_calls:
				msg['tool_calls'] = [
					{
						'id': tc.id,
						'type': 'function',
						'function': {
							'name': tc.function.name,
							'arguments': tc.function.arguments
							if isinstance(tc.function.arguments, str)
							else json.dumps(tc.function.arguments),
						},
					}
					for tc in message.tool_calls
				]
			return msg

		raise ValueError(f'Unknown message type: {type(message)}')

	@staticmethod
	def serialize_messages(messages: list[BaseMessage]) -> list[MessageDict]:
		return [DeepSeekMessageSerializer.serialize(m) for m in messages]
