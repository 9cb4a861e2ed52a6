from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar, overload

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError
from openai.types.chat import ChatCompletion
from openai.types.shared_params.response_format_json_schema import JSONSchema, ResponseFormatJSONSchema
from pydantic import BaseModel, ValidationError

from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.exceptions import ModelProviderError, ModelRateLimitError
from browser_pilot.llm.messages import BaseMessage
from browser_pilot.llm.openai.serializer import OpenAIMessageSerializer
from browser_pilot.llm.schema import SchemaOptimizer
from browser_pilot.llm.views import ChatInvokeCompletion, ChatInvokeUsage

T = TypeVar('T', bound=BaseModel)

ReasoningModels: list[str] = ['o4-mini', 'o3', 'o3-mini', 'o1', 'o1-pro', 'o3-pro', 'gpt-5', 'gpt-5-mini', 'gpt-5-nano']


@dataclass
class ChatOpenAI(BaseChatModel):
	"""
	A wrapper around AsyncOpenAI that implements the BaseChatModel protocol.

	Structured output uses ``response_format`` with a strict json_schema built from the output model.
	"""

	# Model configuration
	model: str

	# Model params
	temperature: float | None = 0.2
	frequency_penalty: float | None = 0.3
	reasoning_effort: str = 'low'
	seed: int | None = None
	top_p: float | None = None
	max_completion_tokens: int | None = 4096

	# Client initialization parameters
	api_key: str | None = None
	organization: str | None = None
	project: str | None = None
	base_url: str | httpx.URL | None = None
	timeout: float | httpx.Timeout | None = None
	max_retries: int = 5
	default_headers: Mapping[str, str] | None = None
	default_query: Mapping[str, object] | None = None
	http_client: httpx.AsyncClient | None = None
	reasoning_models: list[str] | None = field(default_factory=lambda: list(ReasoningModels))

	@property
	def provider(self) -> str:
		return 'openai'

	@property
	def name(self) -> str:
		return str(self.model)

	def _get_client_params(self) -> dict[str, Any]:
		base_params = {
			'api_key': self.api_key,
			'organization': self.organization,
			'project': self.project,
			'base_url': self.base_url,
			'timeout': self.timeout,
			'max_retries': self.max_retries,
			'default_headers': self.default_headers,
			'default_query': self.default_query,
		}
		client_params = {k: v for k, v in base_params.items() if v is not None}
		if self.http_client is not None:
			client_params['http_client'] = self.http_client
		return client_params

	def get_client(self) -> AsyncOpenAI:
		return AsyncOpenAI(**self._get_client_params())

	def _get_usage(self, response: ChatCompletion) -> ChatInvokeUsage | None:
		if response.usage is None:
			return None
		details = response.usage.prompt_tokens_details
		return ChatInvokeUsage(
			prompt_tokens=response.usage.prompt_tokens,
			prompt_cached_tokens=details.cached_tokens if details else None,
			completion_tokens=response.usage.completion_tokens,
			total_tokens=response.usage.total_tokens,
		)

	def _model_params(self) -> dict[str, Any]:
		params: dict[str, Any] = {}
		is_reasoning = any(m.lower() in str(self.model).lower() for m in (self.reasoning_models or []))
		if is_reasoning:
			params['reasoning_effort'] = self.reasoning_effort
		else:
			if self.temperature is not None:
				params['temperature'] = self.temperature
			if self.frequency_penalty is not None:
				params['frequency_penalty'] = self.frequency_penalty
		if self.max_completion_tokens is not None:
			params['max_completion_tokens'] = self.max_completion_tokens
		if self.top_p is not None:
			params['top_p'] = self.top_p
		if self.seed is not None:
			params['seed'] = self.seed
		return params

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: None = None) -> ChatInvokeCompletion[str]: ...

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: type[T]) -> ChatInvokeCompletion[T]: ...

	async def ainvoke(
		self, messages: list[BaseMessage], output_format: type[T] | None = None
	) -> ChatInvokeCompletion[T] | ChatInvokeCompletion[str]:
		"""
		Invoke the model with the given messages.

		Args:
			messages: List of chat messages
			output_format: Optional Pydantic model class for structured output

		Returns:
			Either a string response or an instance of output_format
		"""
		openai_messages = OpenAIMessageSerializer.serialize_messages(messages)
		model_params = self._model_params()

		try:
			if output_format is None:
				response = await self.get_client().chat.completions.create(
					model=self.model,
					messages=openai_messages,
					**model_params,
				)
				return ChatInvokeCompletion(
					completion=response.choices[0].message.content or '',
					usage=self._get_usage(response),
				)

			response_format: JSONSchema = {
				'name': 'agent_output',
				'strict': True,
				'schema': SchemaOptimizer.create_optimized_json_schema(output_format),
			}
			response = await self.get_client().chat.completions.create(
				model=self.model,
				messages=openai_messages,
				response_format=ResponseFormatJSONSchema(json_schema=response_format, type='json_schema'),
				**model_params,
			)

			if response.choices[0].message.content is None:
				raise ModelProviderError(
					message='Failed to parse structured output from model response',
					status_code=500,
					model=self.name,
				)

			return ChatInvokeCompletion(
				completion=output_format.model_validate_json(response.choices[0].message.content),
				usage=self._get_usage(response),
			)

		except RateLimitError as e:
			raise ModelRateLimitError(message=e.message, model=self.name) from e

		except APIConnectionError as e:
			raise ModelProviderError(message=str(e), model=self.name) from e

		except APIStatusError as e:
			raise ModelProviderError(message=e.message, status_code=e.status_code, model=self.name) from e

		except (ModelProviderError, ValidationError):
			raise

		except Exception as e:
			raise ModelProviderError(message=str(e), model=self.name) from e
