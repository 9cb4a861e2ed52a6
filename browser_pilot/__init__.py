from typing import TYPE_CHECKING

from browser_pilot.config import CONFIG
from browser_pilot.logging_config import setup_logging

# embedding applications can opt out and configure logging themselves
if CONFIG.BROWSER_PILOT_SETUP_LOGGING:
	logger = setup_logging(
		debug_log_file=CONFIG.BROWSER_PILOT_DEBUG_LOG_FILE,
		info_log_file=CONFIG.BROWSER_PILOT_INFO_LOG_FILE,
	)
else:
	import logging

	logger = logging.getLogger('browser_pilot')

if TYPE_CHECKING:
	from browser_pilot.agent.prompts import SystemPrompt
	from browser_pilot.agent.service import Agent
	from browser_pilot.agent.views import ActionResult, AgentHistoryList
	from browser_pilot.browser import Browser, BrowserProfile, BrowserSession
	from browser_pilot.controller.registry.views import ActionModel
	from browser_pilot.controller.service import Controller
	from browser_pilot.dom.service import DomService
	from browser_pilot.llm.deepseek.chat import ChatDeepSeek
	from browser_pilot.llm.openai.chat import ChatOpenAI


# agent, browser and llm modules pull in bubus, cdp-use and the provider SDKs, load them on first use
_LAZY_IMPORTS = {
	'Agent': ('browser_pilot.agent.service', 'Agent'),
	'SystemPrompt': ('browser_pilot.agent.prompts', 'SystemPrompt'),
	'ActionModel': ('browser_pilot.controller.registry.views', 'ActionModel'),
	'ActionResult': ('browser_pilot.agent.views', 'ActionResult'),
	'AgentHistoryList': ('browser_pilot.agent.views', 'AgentHistoryList'),
	'Browser': ('browser_pilot.browser', 'Browser'),
	'BrowserProfile': ('browser_pilot.browser', 'BrowserProfile'),
	'BrowserSession': ('browser_pilot.browser', 'BrowserSession'),
	'Controller': ('browser_pilot.controller.service', 'Controller'),
	'DomService': ('browser_pilot.dom.service', 'DomService'),
	'ChatOpenAI': ('browser_pilot.llm.openai.chat', 'ChatOpenAI'),
	'ChatDeepSeek': ('browser_pilot.llm.deepseek.chat', 'ChatDeepSeek'),
}


def __getattr__(name: str):
	"""Lazy import mechanism for heavy modules."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		try:
			from importlib import import_module

			module = import_module(module_path)
			attr = getattr(module, attr_name)
			globals()[name] = attr
			return attr
		except ImportError as e:
			raise ImportError(f'Failed to import {name} from {module_path}: {e}') from e

	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
	'Agent',
	'Browser',
	'BrowserProfile',
	'BrowserSession',
	'Controller',
	'DomService',
	'SystemPrompt',
	'ActionResult',
	'ActionModel',
	'AgentHistoryList',
	'ChatOpenAI',
	'ChatDeepSeek',
]
