"""
Chat model wrappers and message types.

Heavy provider modules are imported lazily; pre-configured instances such as
``browser_pilot.llm.openai_gpt_4o_mini`` are created on first access.
"""

from typing import TYPE_CHECKING

from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.messages import (
	AssistantMessage,
	BaseMessage,
	SystemMessage,
	UserMessage,
)
from browser_pilot.llm.messages import (
	ContentPartImageParam as ContentImage,
)
from browser_pilot.llm.messages import (
	ContentPartRefusalParam as ContentRefusal,
)
from browser_pilot.llm.messages import (
	ContentPartTextParam as ContentText,
)

if TYPE_CHECKING:
	from browser_pilot.llm.deepseek.chat import ChatDeepSeek
	from browser_pilot.llm.openai.chat import ChatOpenAI

	openai_gpt_4o: ChatOpenAI
	openai_gpt_4o_mini: ChatOpenAI
	openai_gpt_4_1_mini: ChatOpenAI
	openai_o3: ChatOpenAI
	openai_o4_mini: ChatOpenAI
	deepseek_chat: ChatDeepSeek

_LAZY_IMPORTS = {
	'ChatDeepSeek': ('browser_pilot.llm.deepseek.chat', 'ChatDeepSeek'),
	'ChatOpenAI': ('browser_pilot.llm.openai.chat', 'ChatOpenAI'),
}

_model_cache: dict[str, 'BaseChatModel'] = {}


def __getattr__(name: str):
	"""Lazy import mechanism for chat model classes and model instances."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		from importlib import import_module

		module = import_module(module_path)
		return getattr(module, attr_name)

	if name in _model_cache:
		return _model_cache[name]

	from browser_pilot.llm.models import get_llm_by_name

	try:
		model = get_llm_by_name(name)
	except ValueError:
		raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
	_model_cache[name] = model
	return model


__all__ = [
	'BaseMessage',
	'UserMessage',
	'SystemMessage',
	'AssistantMessage',
	'ContentText',
	'ContentRefusal',
	'ContentImage',
	'BaseChatModel',
	'ChatOpenAI',
	'ChatDeepSeek',
]
