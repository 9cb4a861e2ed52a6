import asyncio
import functools
import logging
import re
from collections.abc import Callable
from inspect import Parameter, iscoroutinefunction, signature
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel, Field, RootModel, create_model

from browser_pilot.browser import BrowserSession
from browser_pilot.controller.registry.views import (
	ActionModel,
	ActionRegistry,
	RegisteredAction,
	SpecialActionParameters,
)
from browser_pilot.llm.base import BaseChatModel
from browser_pilot.utils import is_new_tab_page, match_url_with_domain_pattern, time_execution_async

Context = TypeVar('Context')

logger = logging.getLogger(__name__)

_SECRET_PATTERN = re.compile(r'<secret>(.*?)</secret>')


class Registry(Generic[Context]):
	"""Service for registering and managing actions"""

	def __init__(self, exclude_actions: list[str] | None = None):
		self.registry = ActionRegistry()
		self.exclude_actions = exclude_actions if exclude_actions is not None else []

	def _create_param_model(self, function: Callable) -> type[BaseModel]:
		"""Creates a Pydantic model from function signature, skipping injected parameters"""
		sig = signature(function)
		special_param_names = set(SpecialActionParameters.model_fields.keys())
		params = {
			name: (
				param.annotation if param.annotation != Parameter.empty else str,
				... if param.default == Parameter.empty else param.default,
			)
			for name, param in sig.parameters.items()
			if name not in special_param_names
		}
		return create_model(
			f'{function.__name__}_parameters',
			__base__=ActionModel,
			**params,  # type: ignore
		)

	def _normalize_action_function(self, func: Callable, param_model_provided: bool) -> Callable:
		"""Wrap an action so it is always called as ``await fn(params=..., **special_params)``.

		Two shapes of action functions are supported:
		- ``async def act(params: MyParams, browser_session: BrowserSession)``, with an explicit param_model
		- ``async def act(text: str, browser_session: BrowserSession)``, with a generated param_model
		"""
		sig = signature(func)
		parameters = list(sig.parameters.values())
		special_param_names = set(SpecialActionParameters.model_fields.keys())

		for param in parameters:
			if param.kind == Parameter.VAR_KEYWORD:
				raise ValueError(
					f"Action '{func.__name__}' has **{param.name} which is not allowed. "
					f'Actions must have explicit positional parameters only.'
				)

		@functools.wraps(func)
		async def normalized_wrapper(params: BaseModel, **special_context: Any) -> Any:
			params_dict = params.model_dump()
			call_kwargs: dict[str, Any] = {}

			for i, param in enumerate(parameters):
				if i == 0 and param_model_provided and param.name not in special_param_names:
					call_kwargs[param.name] = params
				elif param.name in special_param_names:
					value = special_context.get(param.name)
					if value is None and param.default == Parameter.empty:
						raise ValueError(f'Action {func.__name__} requires {param.name} but none provided.')
					call_kwargs[param.name] = value if value is not None else param.default
				elif param.name in params_dict:
					call_kwargs[param.name] = params_dict[param.name]
				elif param.default != Parameter.empty:
					call_kwargs[param.name] = param.default
				else:
					raise ValueError(f"{func.__name__}() missing required parameter '{param.name}'")

			if iscoroutinefunction(func):
				return await func(**call_kwargs)
			return await asyncio.to_thread(func, **call_kwargs)

		return normalized_wrapper

	def action(
		self,
		description: str,
		param_model: type[BaseModel] | None = None,
		domains: list[str] | None = None,
	):
		"""Decorator for registering actions"""

		def decorator(func: Callable):
			if func.__name__ in self.exclude_actions:
				return func

			actual_param_model = param_model or self._create_param_model(func)
			normalized_func = self._normalize_action_function(func, param_model_provided=param_model is not None)

			action = RegisteredAction(
				name=func.__name__,
				description=description,
				function=normalized_func,
				param_model=actual_param_model,
				domains=domains,
			)
			self.registry.actions[func.__name__] = action
			return normalized_func

		return decorator

	@time_execution_async('--execute_action')
	async def execute_action(
		self,
		action_name: str,
		params: dict,
		browser_session: BrowserSession | None = None,
		page_extraction_llm: BaseChatModel | None = None,
		sensitive_data: dict[str, str | dict[str, str]] | None = None,
		available_file_paths: list[str] | None = None,
		#
		context: Context | None = None,
	) -> Any:
		"""Validate params, fill in secrets and injected parameters, then run the action"""
		if action_name not in self.registry.actions:
			raise ValueError(f'Action {action_name} not found')

		action = self.registry.actions[action_name]
		try:
			try:
				validated_params = action.param_model(**params)
			except Exception as e:
				raise ValueError(f'Invalid parameters {params} for action {action_name}: {type(e)}: {e}') from e

			if sensitive_data:
				current_url = await browser_session.get_current_page_url() if browser_session else None
				validated_params = self._replace_sensitive_data(validated_params, sensitive_data, current_url)

			special_context = {
				'context': context,
				'browser_session': browser_session,
				'browser': browser_session,
				'browser_context': browser_session,
				'page_extraction_llm': page_extraction_llm,
				'available_file_paths': available_file_paths,
				'has_sensitive_data': action_name == 'input_text' and bool(sensitive_data),
			}

			return await action.function(params=validated_params, **special_context)

		except ValueError as e:
			if 'but none provided' in str(e):
				raise RuntimeError(str(e)) from e
			raise RuntimeError(f'Error executing action {action_name}: {str(e)}') from e
		except Exception as e:
			raise RuntimeError(f'Error executing action {action_name}: {str(e)}') from e

	def _log_sensitive_data_usage(self, placeholders_used: set[str], current_url: str | None) -> None:
		if placeholders_used:
			url_info = f' on {current_url}' if current_url and not is_new_tab_page(current_url) else ''
			logger.info(f'🔒 Using sensitive data placeholders: {", ".join(sorted(placeholders_used))}{url_info}')

	def _replace_sensitive_data(
		self, params: BaseModel, sensitive_data: dict[str, Any], current_url: str | None = None
	) -> BaseModel:
		"""
		Replaces sensitive data placeholders in params with actual values.

		Args:
			params: The parameter object containing <secret>placeholder</secret> tags
			sensitive_data: Either {key: value}, exposed everywhere,
				or {domain_pattern: {key: value}}, exposed only on matching pages
			current_url: URL of the focused tab, used for domain matching

		Returns:
			BaseModel: The parameter object with placeholders replaced by actual values
		"""
		all_missing_placeholders: set[str] = set()
		replaced_placeholders: set[str] = set()

		applicable_secrets: dict[str, str] = {}
		for domain_or_key, content in sensitive_data.items():
			if isinstance(content, dict):
				if current_url and not is_new_tab_page(current_url):
					if match_url_with_domain_pattern(current_url, domain_or_key):
						applicable_secrets.update(content)
			else:
				applicable_secrets[domain_or_key] = content

		applicable_secrets = {k: v for k, v in applicable_secrets.items() if v}

		def recursively_replace_secrets(value: Any) -> Any:
			if isinstance(value, str):
				for placeholder in _SECRET_PATTERN.findall(value):
					if placeholder in applicable_secrets:
						value = value.replace(f'<secret>{placeholder}</secret>', applicable_secrets[placeholder])
						replaced_placeholders.add(placeholder)
					else:
						# the tag stays in place so the page never sees a partial value
						all_missing_placeholders.add(placeholder)
				return value
			elif isinstance(value, dict):
				return {k: recursively_replace_secrets(v) for k, v in value.items()}
			elif isinstance(value, list):
				return [recursively_replace_secrets(v) for v in value]
			return value

		processed_params = recursively_replace_secrets(params.model_dump())

		self._log_sensitive_data_usage(replaced_placeholders, current_url)
		if all_missing_placeholders:
			logger.warning(f'Missing or empty keys in sensitive_data dictionary: {", ".join(sorted(all_missing_placeholders))}')

		return type(params).model_validate(processed_params)

	def create_action_model(self, include_actions: list[str] | None = None, page_url: str | None = None) -> type[ActionModel]:
		"""Creates a Union of individual action models from registered actions,
		used by LLM APIs that support tool calling & enforce a schema.

		Each action model contains only the specific action being used,
		rather than all actions with most set to None.
		"""
		available_actions: dict[str, RegisteredAction] = {}
		for name, action in self.registry.actions.items():
			if include_actions is not None and name not in include_actions:
				continue

			# without a page only unfiltered actions are offered
			if page_url is None:
				if action.domains is None:
					available_actions[name] = action
				continue

			if self.registry._match_domains(action.domains, page_url):
				available_actions[name] = action

		individual_action_models: list[type[BaseModel]] = []
		for name, action in available_actions.items():
			individual_model = create_model(
				f'{name.title().replace("_", "")}ActionModel',
				__base__=ActionModel,
				**{
					name: (
						action.param_model,
						Field(description=action.description),
					)  # type: ignore
				},
			)
			individual_action_models.append(individual_model)

		if not individual_action_models:
			return create_model('EmptyActionModel', __base__=ActionModel)

		if len(individual_action_models) == 1:
			return individual_action_models[0]  # type: ignore

		union_type = Union[tuple(individual_action_models)]  # type: ignore

		class ActionModelUnion(RootModel[union_type]):  # type: ignore
			"""Union of all available action models that keeps the ActionModel interface"""

			def get_index(self) -> int | None:
				if hasattr(self.root, 'get_index'):
					return self.root.get_index()  # type: ignore
				return None

			def set_index(self, index: int):
				if hasattr(self.root, 'set_index'):
					self.root.set_index(index)  # type: ignore

			def action_name(self) -> str | None:
				return self.root.action_name()  # type: ignore

			def model_dump(self, **kwargs):
				if hasattr(self.root, 'model_dump'):
					return self.root.model_dump(**kwargs)  # type: ignore
				return super().model_dump(**kwargs)

		ActionModelUnion.__name__ = 'ActionModel'
		ActionModelUnion.__qualname__ = 'ActionModel'
		return ActionModelUnion  # type: ignore

	def get_prompt_description(self, page_url: str | None = None) -> str:
		"""Get a description of all actions for the prompt, see ActionRegistry.get_prompt_description"""
		return self.registry.get_prompt_description(page_url=page_url)
