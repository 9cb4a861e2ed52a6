from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, TypeVar, overload

import httpx
from openai import (
	APIConnectionError,
	APIError,
	APIStatusError,
	APITimeoutError,
	AsyncOpenAI,
	RateLimitError,
)
from openai.types.chat import ChatCompletion
from pydantic import BaseModel, ValidationError

from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.deepseek.serializer import DeepSeekMessageSerializer
from browser_pilot.llm.exceptions import ModelProviderError, ModelRateLimitError
from browser_pilot.llm.messages import BaseMessage
from browser_pilot.llm.schema import SchemaOptimizer
from browser_pilot.llm.views import ChatInvokeCompletion, ChatInvokeUsage

T = TypeVar('T', bound=BaseModel)


@dataclass
class ChatDeepSeek(BaseChatModel):
	"""DeepSeek /chat/completions wrapper (OpenAI-compatible). Structured output goes through a forced tool call."""

	model: str = 'deepseek-chat'

	# Generation parameters
	max_tokens: int | None = None
	temperature: float | None = None
	top_p: float | None = None
	seed: int | None = None

	# Connection parameters
	api_key: str | None = None
	base_url: str | httpx.URL | None = 'https://api.deepseek.com/v1'
	timeout: float | httpx.Timeout | None = None
	client_params: dict[str, Any] | None = None

	@property
	def provider(self) -> str:
		return 'deepseek'

	@property
	def name(self) -> str:
		return self.model

	def _client(self) -> AsyncOpenAI:
		return AsyncOpenAI(
			api_key=self.api_key,
			base_url=self.base_url,
			timeout=self.timeout,
			**(self.client_params or {}),
		)

	def _get_usage(self, response: ChatCompletion) -> ChatInvokeUsage | None:
		if response.usage is None:
			return None
		return ChatInvokeUsage(
			prompt_tokens=response.usage.prompt_tokens,
			prompt_cached_tokens=getattr(response.usage, 'prompt_cache_hit_tokens', None),
			completion_tokens=response.usage.completion_tokens,
			total_tokens=response.usage.total_tokens,
		)

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: None = None) -> ChatInvokeCompletion[str]: ...

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: type[T]) -> ChatInvokeCompletion[T]: ...

	async def ainvoke(
		self, messages: list[BaseMessage], output_format: type[T] | None = None
	) -> ChatInvokeCompletion[T] | ChatInvokeCompletion[str]:
		client = self._client()
		ds_messages = DeepSeekMessageSerializer.serialize_messages(messages)
		common: dict[str, Any] = {}

		if self.temperature is not None:
			common['temperature'] = self.temperature
		if self.max_tokens is not None:
			common['max_tokens'] = self.max_tokens
		if self.top_p is not None:
			common['top_p'] = self.top_p
		if self.seed is not None:
			common['seed'] = self.seed

		try:
			# plain text conversation
			if output_format is None:
				resp = await client.chat.completions.create(
					model=self.model,
					messages=ds_messages,  # type: ignore
					**common,
				)
				return ChatInvokeCompletion(
					completion=resp.choices[0].message.content or '',
					usage=self._get_usage(resp),
				)

			# structured output through a single forced function call
			tool_name = output_format.__name__
			schema = SchemaOptimizer.create_optimized_json_schema(output_format)
			schema.pop('title', None)
			tools = [
				{
					'type': 'function',
					'function': {
						'name': tool_name,
						'description': f'Return a JSON object of type {tool_name}',
						'parameters': schema,
					},
				}
			]
			resp = await client.chat.completions.create(
				model=self.model,
				messages=ds_messages,  # type: ignore
				tools=tools,  # type: ignore
				tool_choice={'type': 'function', 'function': {'name': tool_name}},
				**common,
			)
			msg = resp.choices[0].message
			if not msg.tool_calls:
				raise ModelProviderError('Expected tool_calls in response but got none', model=self.name)
			raw_args = msg.tool_calls[0].function.arguments
			parsed = json.loads(raw_args) if isinstance(raw_args, str) else raw_args
			return ChatInvokeCompletion(
				completion=output_format.model_validate(parsed),
				usage=self._get_usage(resp),
			)
		except RateLimitError as e:
			raise ModelRateLimitError(str(e), model=self.name) from e
		except (APIError, APIConnectionError, APITimeoutError, APIStatusError) as e:
			raise ModelProviderError(str(e), model=self.name) from e
		except (ModelProviderError, ValidationError):
			raise
		except Exception as e:
			raise ModelProviderError(str(e), model=self.name) from e
