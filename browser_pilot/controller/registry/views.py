from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict

from browser_pilot.browser import BrowserSession
from browser_pilot.llm.base import BaseChatModel
from browser_pilot.utils import match_url_with_domain_pattern


class RegisteredAction(BaseModel):
	"""Model for a registered action"""

	name: str
	description: str
	function: Callable
	param_model: type[BaseModel]

	# only offer the action on pages matching these globs, e.g. ['*.google.com', 'https://www.bing.com']
	domains: list[str] | None = None

	model_config = ConfigDict(arbitrary_types_allowed=True)

	def prompt_description(self) -> str:
		"""Get a description of the action for the prompt"""
		skip_keys = ['title']
		params = {
			k: {sub_k: sub_v for sub_k, sub_v in v.items() if sub_k not in skip_keys}
			for k, v in self.param_model.model_json_schema().get('properties', {}).items()
		}
		return f'{self.name}: {self.description}. params: {params}'


class ActionModel(BaseModel):
	"""Base model for dynamically created action models.

	Exactly one field is set per instance, named after the action, e.g. ``{'click_element_by_index': {'index': 5}}``.
	"""

	model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid')

	def get_index(self) -> int | None:
		"""Get the element index the action targets, if any"""
		params = self.model_dump(exclude_unset=True).values()
		if not params:
			return None
		for param in params:
			if isinstance(param, dict) and param.get('index') is not None:
				return param['index']
		return None

	def set_index(self, index: int):
		"""Overwrite the index of the action"""
		action_data = self.model_dump(exclude_unset=True)
		action_name = next(iter(action_data.keys()))
		action_params = getattr(self, action_name)

		if hasattr(action_params, 'index'):
			action_params.index = index

	def action_name(self) -> str | None:
		action_data = self.model_dump(exclude_unset=True)
		return next(iter(action_data.keys()), None)


class ActionRegistry(BaseModel):
	"""Model representing the action registry"""

	actions: dict[str, RegisteredAction] = {}

	@staticmethod
	def _match_domains(domains: list[str] | None, url: str) -> bool:
		"""True when the url matches any of the domain globs, or when there are no globs to match."""
		if domains is None or not url:
			return True

		return any(match_url_with_domain_pattern(url, domain_pattern) for domain_pattern in domains)

	def get_prompt_description(self, page_url: str | None = None) -> str:
		"""Describe the registered actions for the prompt.

		- page_url None: only actions without a domain filter (the system prompt)
		- page_url given: only the domain-filtered actions that match it (added next to the page state)
		"""
		if page_url is None:
			return '\n'.join(action.prompt_description() for action in self.actions.values() if action.domains is None)

		filtered_actions = [
			action for action in self.actions.values() if action.domains and self._match_domains(action.domains, page_url)
		]
		return '\n'.join(action.prompt_description() for action in filtered_actions)


class SpecialActionParameters(BaseModel):
	"""Parameters injected into actions by name instead of being chosen by the model"""

	model_config = ConfigDict(arbitrary_types_allowed=True)

	# anything passed as Agent(context=...), handed through untouched
	context: Any | None = None

	browser_session: BrowserSession | None = None

	# older names for the same session object
	browser: BrowserSession | None = None
	browser_context: BrowserSession | None = None

	page_extraction_llm: BaseChatModel | None = None
	available_file_paths: list[str] | None = None
	has_sensitive_data: bool = False

	@classmethod
	def get_browser_requiring_params(cls) -> set[str]:
		"""Get parameter names that require browser_session"""
		return {'browser_session', 'browser', 'browser_context'}
