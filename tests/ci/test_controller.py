import asyncio
import json
import time

import pytest
from pydantic import BaseModel
from pytest_httpserver import HTTPServer

from browser_pilot.agent.views import ActionModel, ActionResult
from browser_pilot.browser import BrowserProfile, BrowserSession
from browser_pilot.browser.events import NavigateToUrlEvent
from browser_pilot.controller.service import Controller
from browser_pilot.controller.views import (
	ClickElementAction,
	DoneAction,
	GoToUrlAction,
	InputTextAction,
	NoParamsAction,
	StructuredOutputAction,
)
from tests.ci.conftest import FakeBrowserSession


@pytest.fixture(scope='session')
def http_server():
	"""Create and provide a test HTTP server that serves static content."""
	server = HTTPServer()
	server.start()

	server.expect_request('/').respond_with_data(
		'<html><head><title>Test Home Page</title></head><body><h1>Test Home Page</h1><p>Welcome to the test site</p></body></html>',
		content_type='text/html',
	)

	server.expect_request('/page1').respond_with_data(
		'<html><head><title>Test Page 1</title></head><body><h1>Test Page 1</h1><p>This is test page 1</p></body></html>',
		content_type='text/html',
	)

	server.expect_request('/page2').respond_with_data(
		'<html><head><title>Test Page 2</title></head><body><h1>Test Page 2</h1><p>This is test page 2</p></body></html>',
		content_type='text/html',
	)

	server.expect_request('/form').respond_with_data(
		"""
		<html>
		<head><title>Form Page</title></head>
		<body>
			<input id="name" type="text" placeholder="Your name" />
			<button id="greet" onclick="document.title = 'Hello ' + document.getElementById('name').value">Greet</button>
		</body>
		</html>
		""",
		content_type='text/html',
	)

	yield server
	server.stop()


@pytest.fixture(scope='session')
def base_url(http_server):
	"""Return the base URL for the test HTTP server."""
	return f'http://{http_server.host}:{http_server.port}'


@pytest.fixture(scope='module')
async def browser_session():
	browser_session = BrowserSession(
		browser_profile=BrowserProfile(
			headless=True,
			user_data_dir=None,
			keep_alive=True,
		)
	)
	await browser_session.start()
	yield browser_session
	await browser_session.kill()


@pytest.fixture(scope='function')
def controller():
	return Controller()


class GoToUrlActionModel(ActionModel):
	go_to_url: GoToUrlAction | None = None


class GoBackActionModel(ActionModel):
	go_back: NoParamsAction | None = None


class DoneActionModel(ActionModel):
	done: DoneAction | None = None


class TestControllerRegistry:
	"""Action registration, no browser needed"""

	def test_default_actions_registered(self, controller):
		default_actions = [
			'done',
			'search_google',
			'go_to_url',
			'go_back',
			'wait',
			'click_element_by_index',
			'input_text',
			'switch_tab',
			'close_tab',
			'extract_structured_data',
			'scroll',
			'send_keys',
			'scroll_to_text',
			'get_dropdown_options',
			'select_dropdown_option',
		]

		for action in default_actions:
			assert action in controller.registry.registry.actions
			assert controller.registry.registry.actions[action].function is not None
			assert controller.registry.registry.actions[action].description

	def test_excluded_actions(self):
		controller = Controller(exclude_actions=['search_google', 'scroll'])

		assert 'search_google' not in controller.registry.registry.actions
		assert 'scroll' not in controller.registry.registry.actions
		assert 'go_to_url' in controller.registry.registry.actions
		assert 'click_element_by_index' in controller.registry.registry.actions

	def test_wait_param_model_defaults(self, controller):
		wait_action = controller.registry.registry.actions['wait']
		schema = wait_action.param_model.model_json_schema()

		assert 'seconds' in wait_action.param_model.model_fields
		assert schema['properties']['seconds']['default'] == 3
		# injected parameters never reach the model's schema
		assert 'browser_session' not in schema['properties']

	def test_prompt_description_lists_actions(self, controller):
		description = controller.registry.get_prompt_description()

		assert 'go_to_url:' in description
		assert 'done:' in description
		assert "'url'" in description

	async def test_done_action(self, controller):
		"""done needs no browser and reports both outcomes"""
		result = await controller.act(DoneActionModel(done=DoneAction(text='All finished', success=True)), browser_session=None)

		assert isinstance(result, ActionResult)
		assert result.is_done is True
		assert result.success is True
		assert result.extracted_content == 'All finished'
		assert result.error is None

		result = await controller.act(DoneActionModel(done=DoneAction(text='Gave up', success=False)), browser_session=None)

		assert result.is_done is True
		assert result.success is False
		assert result.extracted_content == 'Gave up'

	async def test_done_action_long_text_is_shortened_in_memory(self, controller):
		text = 'x' * 250
		result = await controller.act(DoneActionModel(done=DoneAction(text=text, success=True)), browser_session=None)

		assert result.extracted_content == text
		assert result.long_term_memory is not None
		assert '150 more characters' in result.long_term_memory

	async def test_structured_done_action(self):
		class Person(BaseModel):
			name: str
			age: int

		controller = Controller(output_model=Person)

		class StructuredDoneModel(ActionModel):
			done: StructuredOutputAction[Person] | None = None

		action = StructuredDoneModel(done={'success': True, 'data': {'name': 'Ada', 'age': 36}})
		result = await controller.act(action, browser_session=None)

		assert result.is_done is True
		assert result.success is True
		assert json.loads(result.extracted_content) == {'name': 'Ada', 'age': 36}

	async def test_use_structured_output_action_replaces_done(self, controller):
		class Answer(BaseModel):
			value: str

		controller.use_structured_output_action(Answer)
		done_action = controller.registry.registry.actions['done']

		assert 'data' in done_action.param_model.model_fields

	async def test_custom_action_without_browser(self, controller):
		@controller.action('Add two numbers')
		def add_numbers(a: int, b: int):
			return ActionResult(extracted_content=str(a + b))

		class AddModel(ActionModel):
			add_numbers: dict | None = None

		result = await controller.act(AddModel(add_numbers={'a': 2, 'b': 3}), browser_session=None)

		assert result.extracted_content == '5'

	async def test_custom_action_string_result(self, controller):
		@controller.action('Echo text')
		async def echo(text: str):
			return text

		class EchoModel(ActionModel):
			echo: dict | None = None

		result = await controller.act(EchoModel(echo={'text': 'hello'}), browser_session=None)

		assert result.extracted_content == 'hello'

	async def test_invalid_params_become_error_result(self, controller):
		class AddModel(ActionModel):
			add_numbers: dict | None = None

		@controller.action('Add two numbers')
		async def add_numbers(a: int, b: int):
			return ActionResult(extracted_content=str(a + b))

		result = await controller.act(AddModel(add_numbers={'a': 'not a number', 'b': 3}), browser_session=None)

		assert result.error is not None
		assert 'add_numbers' in result.error

	async def test_action_needing_browser_fails_without_one(self, controller):
		result = await controller.act(GoBackActionModel(go_back=NoParamsAction()), browser_session=None)

		assert result.error is not None
		assert 'browser_session' in result.error

	async def test_wait_without_browser(self, controller):
		class WaitActionModel(ActionModel):
			wait: dict | None = None

		start_time = time.time()
		result = await controller.act(WaitActionModel(wait={'seconds': 1}), browser_session=None)
		elapsed = time.time() - start_time

		assert result.extracted_content == 'Waited for 1 seconds'
		assert 0.8 <= elapsed <= 2.0

	async def test_search_query_is_url_encoded(self, controller):
		class SearchGoogleActionModel(ActionModel):
			search_google: dict | None = None

		session = FakeBrowserSession()
		visited: list[str] = []

		async def on_navigate(event: NavigateToUrlEvent) -> None:
			visited.append(event.url)

		session.event_bus.on(NavigateToUrlEvent, on_navigate)

		result = await controller.act(SearchGoogleActionModel(search_google={'query': 'AT&T earnings C# 2024'}), browser_session=session)

		assert result.error is None
		assert visited == ['https://www.google.com/search?q=AT%26T+earnings+C%23+2024&udm=14']
		assert result.extracted_content == "Searched Google for 'AT&T earnings C# 2024'"

	async def test_context_is_injected(self):
		controller = Controller[dict]()

		@controller.action('Read a value from the shared context')
		async def read_context(key: str, context: dict):
			return ActionResult(extracted_content=context[key])

		class ReadContextModel(ActionModel):
			read_context: dict | None = None

		result = await controller.act(
			ReadContextModel(read_context={'key': 'color'}), browser_session=None, context={'color': 'blue'}
		)

		assert result.extracted_content == 'blue'


class TestControllerIntegration:
	"""Integration tests for Controller using actual browser instances."""

	async def test_custom_action_registration(self, controller, browser_session, base_url):
		class CustomParams(BaseModel):
			text: str

		@controller.action('Test custom action', param_model=CustomParams)
		async def custom_action(params: CustomParams, browser_session):
			current_url = await browser_session.get_current_page_url()
			return ActionResult(extracted_content=f'Custom action executed with: {params.text} on {current_url}')

		await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/page1')), browser_session)

		class CustomActionModel(ActionModel):
			custom_action: CustomParams | None = None

		result = await controller.act(CustomActionModel(custom_action=CustomParams(text='test_value')), browser_session)

		assert isinstance(result, ActionResult)
		assert result.extracted_content is not None
		assert 'Custom action executed with: test_value on' in result.extracted_content
		assert f'{base_url}/page1' in result.extracted_content

	async def test_go_to_url(self, controller, browser_session, base_url):
		result = await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/page2')), browser_session)

		assert result.error is None
		assert result.extracted_content is not None
		assert f'Navigated to {base_url}/page2' in result.extracted_content
		assert result.long_term_memory == f'Navigated to {base_url}/page2'

		current_url = await browser_session.get_current_page_url()
		assert f'{base_url}/page2' in current_url

	async def test_wait_action(self, controller, browser_session):
		class WaitActionModel(ActionModel):
			wait: dict | None = None

		start_time = time.time()
		result = await controller.act(WaitActionModel(wait={'seconds': 1}), browser_session)
		end_time = time.time()

		assert isinstance(result, ActionResult)
		assert result.extracted_content is not None
		assert 'Waited for' in result.extracted_content
		assert 0.8 <= end_time - start_time <= 2.0

	async def test_go_back_action(self, controller, browser_session, base_url):
		await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/page1')), browser_session)
		first_url = await browser_session.get_current_page_url()
		assert f'{base_url}/page1' in first_url

		await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/page2')), browser_session)
		second_url = await browser_session.get_current_page_url()
		assert f'{base_url}/page2' in second_url

		result = await controller.act(GoBackActionModel(go_back=NoParamsAction()), browser_session)

		assert isinstance(result, ActionResult)
		assert result.extracted_content is not None
		assert 'Navigated back' in result.extracted_content

		await asyncio.sleep(1)

		final_url = await browser_session.get_current_page_url()
		assert f'{base_url}/page1' in final_url, f'Expected to return to page1 but got {final_url}'

	async def test_navigation_chain(self, controller, browser_session, base_url):
		"""Navigate Home -> Page1 -> Page2, then back through history."""
		urls = [f'{base_url}/', f'{base_url}/page1', f'{base_url}/page2']

		for url in urls:
			await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=url)), browser_session)
			current_url = await browser_session.get_current_page_url()
			assert url in current_url

		for expected_url in reversed(urls[:-1]):
			await controller.act(GoBackActionModel(go_back=NoParamsAction()), browser_session)
			await asyncio.sleep(1)

			current_url = await browser_session.get_current_page_url()
			assert expected_url in current_url

	async def test_input_text_and_click(self, controller, browser_session, base_url):
		await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/form')), browser_session)

		state = await browser_session.get_browser_state_summary()
		selector_map = state.dom_state.selector_map
		input_index = next(index for index, element in selector_map.items() if element.tag_name == 'input')
		button_index = next(index for index, element in selector_map.items() if element.tag_name == 'button')

		class InputTextActionModel(ActionModel):
			input_text: InputTextAction | None = None

		class ClickActionModel(ActionModel):
			click_element_by_index: ClickElementAction | None = None

		result = await controller.act(
			InputTextActionModel(input_text=InputTextAction(index=input_index, text='Ada')), browser_session
		)
		assert result.error is None
		assert result.extracted_content == f"Input 'Ada' into element {input_index}."

		result = await controller.act(
			ClickActionModel(click_element_by_index=ClickElementAction(index=button_index)), browser_session
		)
		assert result.error is None
		assert result.extracted_content == f'Clicked element with index {button_index}'

		await asyncio.sleep(0.5)
		assert await browser_session.get_current_page_title() == 'Hello Ada'

	async def test_click_unknown_index(self, controller, browser_session, base_url):
		await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/page1')), browser_session)
		await browser_session.get_browser_state_summary()

		class ClickActionModel(ActionModel):
			click_element_by_index: ClickElementAction | None = None

		result = await controller.act(
			ClickActionModel(click_element_by_index=ClickElementAction(index=999)), browser_session
		)

		assert result.error is not None
		assert 'Element index 999 not found' in result.error

	async def test_new_tab_and_switch_back(self, controller, browser_session, base_url):
		await controller.act(GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/page1')), browser_session)
		first_target_id = browser_session.agent_focus.target_id

		result = await controller.act(
			GoToUrlActionModel(go_to_url=GoToUrlAction(url=f'{base_url}/page2', new_tab=True)), browser_session
		)
		assert result.error is None
		assert 'Opened new tab' in result.extracted_content
		assert browser_session.agent_focus.target_id != first_target_id

		class SwitchTabActionModel(ActionModel):
			switch_tab: dict | None = None

		result = await controller.act(SwitchTabActionModel(switch_tab={'tab_id': first_target_id[-4:]}), browser_session)

		assert result.error is None
		assert result.extracted_content == f'Switched to Tab with ID {first_target_id[-4:]}'
		assert browser_session.agent_focus.target_id == first_target_id
		assert f'{base_url}/page1' in await browser_session.get_current_page_url()
