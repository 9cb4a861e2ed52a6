"""
Shared fixtures for the CI test suite.

create_mock_llm() scripts the model's answers so agent runs are deterministic.
Tests that need a real browser use the browser_session fixture (headless Chromium),
everything else runs against FakeBrowserSession which serves a fixed list of page states.
"""

import os
from unittest.mock import AsyncMock

import pytest
from bubus import EventBus
from dotenv import load_dotenv

load_dotenv()

# no API keys in CI, the mocked models never reach a provider
os.environ['SKIP_LLM_API_KEY_VERIFICATION'] = 'true'
os.environ.setdefault('BROWSER_PILOT_LOGGING_LEVEL', 'debug')

from browser_pilot.browser import BrowserProfile, BrowserSession
from browser_pilot.browser.views import BrowserStateSummary, TabInfo
from browser_pilot.dom.views import EnhancedDOMElement, SerializedDOMState
from browser_pilot.llm import BaseChatModel
from browser_pilot.llm.views import ChatInvokeCompletion, ChatInvokeUsage

# a 1x1 PNG, enough for anything that decodes screenshots
TINY_PNG = 'iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=='

DEFAULT_DONE_ACTION = """
{
	"thinking": null,
	"evaluation_previous_goal": "Successfully completed the task",
	"memory": "Task completed",
	"next_goal": "Task completed",
	"action": [
		{
			"done": {
				"text": "Task completed successfully",
				"success": true
			}
		}
	]
}
"""


def create_mock_llm(actions: list[str] | None = None, usage: ChatInvokeUsage | None = None) -> BaseChatModel:
	"""Create a mock LLM that returns the given JSON answers in order, then a done action.

	Calls without an output_format (planner, procedural memory) get the raw string.
	"""
	llm = AsyncMock(spec=BaseChatModel)
	llm.model = 'mock-llm'
	llm._verified_api_keys = True
	llm.provider = 'mock'
	llm.name = 'mock-llm'
	llm.model_name = 'mock-llm'

	action_index = 0

	async def mock_ainvoke(*args, **kwargs):
		nonlocal action_index
		output_format = args[1] if len(args) > 1 else kwargs.get('output_format')

		if actions is None or action_index >= len(actions):
			action_json = DEFAULT_DONE_ACTION
		else:
			action_json = actions[action_index]
			action_index += 1

		if output_format is None:
			return ChatInvokeCompletion(completion=action_json, usage=usage)

		parsed = output_format.model_validate_json(action_json)
		return ChatInvokeCompletion(completion=parsed, usage=usage)

	llm.ainvoke.side_effect = mock_ainvoke
	return llm


def create_text_llm(responses: list[str | Exception]) -> BaseChatModel:
	"""Mock LLM for plain completions: returns (or raises) the given responses in order."""
	llm = AsyncMock(spec=BaseChatModel)
	llm.model = 'mock-text-llm'
	llm._verified_api_keys = True
	llm.provider = 'mock'
	llm.name = 'mock-text-llm'
	llm.model_name = 'mock-text-llm'

	remaining = list(responses)

	async def mock_ainvoke(*args, **kwargs):
		response = remaining.pop(0) if remaining else 'nothing to add'
		if isinstance(response, Exception):
			raise response
		return ChatInvokeCompletion(
			completion=response,
			usage=ChatInvokeUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
		)

	llm.ainvoke.side_effect = mock_ainvoke
	return llm


def make_element(index: int, tag_name: str = 'button', text: str = '', xpath: str | None = None, **attributes) -> EnhancedDOMElement:
	return EnhancedDOMElement(
		element_index=index,
		tag_name=tag_name,
		xpath=xpath or f'html/body/div/{tag_name}[{index}]',
		attributes=attributes,
		text=text,
	)


def make_state(
	url: str = 'https://example.com/',
	title: str = 'Example',
	elements: list[EnhancedDOMElement] | None = None,
	screenshot: str | None = TINY_PNG,
	target_id: str = 'A1B2C3D4E5F6A1B2C3D4E5F6A1B2C3D4',
) -> BrowserStateSummary:
	selector_map = {element.element_index: element for element in elements or []}
	return BrowserStateSummary(
		dom_state=SerializedDOMState(selector_map=selector_map),
		url=url,
		title=title,
		tabs=[TabInfo(url=url, title=title, target_id=target_id)],
		screenshot=screenshot,
	)


class FakeBrowserSession:
	"""Stands in for BrowserSession where only the page state matters.

	Serves the given states in order (the last one repeats) and records lifecycle calls.
	"""

	def __init__(self, states: list[BrowserStateSummary] | None = None, keep_alive: bool = False, **profile_kwargs):
		self.id = 'fake-session-0000'
		self.browser_profile = BrowserProfile(keep_alive=keep_alive, wait_between_actions=0, **profile_kwargs)
		self.event_bus = EventBus(name='FakeBrowserSession')
		self.agent_focus = None
		self.cdp_url = None
		self.states = states or [make_state()]
		self.state_requests = 0
		self.started = False
		self.killed = False
		self._cached_browser_state_summary: BrowserStateSummary | None = None

	async def start(self):
		self.started = True
		return self

	async def kill(self):
		self.killed = True

	async def get_browser_state_summary(self, cache_clickable_elements_hashes=True, include_screenshot=True, cached=False):
		if cached and self._cached_browser_state_summary is not None:
			return self._cached_browser_state_summary
		state = self.states[min(self.state_requests, len(self.states) - 1)]
		self.state_requests += 1
		self._cached_browser_state_summary = state
		return state

	async def get_element_by_index(self, index: int):
		if self._cached_browser_state_summary is None:
			return None
		return self._cached_browser_state_summary.dom_state.selector_map.get(index)

	async def get_current_page_url(self) -> str:
		if self._cached_browser_state_summary is not None:
			return self._cached_browser_state_summary.url
		return self.states[0].url


@pytest.fixture(scope='function')
def mock_llm():
	return create_mock_llm()


@pytest.fixture(scope='function')
def fake_browser_session():
	return FakeBrowserSession()


@pytest.fixture(scope='function')
async def browser_session():
	"""A real headless browser, killed after the test"""
	session = BrowserSession(
		browser_profile=BrowserProfile(
			headless=True,
			user_data_dir=None,
			keep_alive=True,
			wait_between_actions=0.1,
		)
	)
	await session.start()
	yield session
	await session.kill()
