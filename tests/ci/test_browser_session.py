"""
BrowserSession against a real headless Chromium: lifecycle, tabs and page state.
"""

import pytest

from browser_pilot.browser import BrowserProfile, BrowserSession
from browser_pilot.browser.events import CloseTabEvent, NavigateToUrlEvent, SwitchTabEvent
from browser_pilot.utils import is_new_tab_page

SHOP_HTML = """
<html>
<head><title>Mug shop</title></head>
<body>
	<h1>Mugs</h1>
	<a href="/blue">Blue mug</a>
	<input type="search" placeholder="Search mugs">
	<button id="buy">Buy</button>
	<div style="height: 3000px">tall content</div>
</body>
</html>
"""


@pytest.fixture
def shop(httpserver):
	httpserver.expect_request('/').respond_with_data(SHOP_HTML, content_type='text/html')
	httpserver.expect_request('/blue').respond_with_data(
		'<html><head><title>Blue mug</title></head><body><p>12 EUR</p></body></html>', content_type='text/html'
	)
	return httpserver


async def navigate(session: BrowserSession, url: str, new_tab: bool = False) -> None:
	event = session.event_bus.dispatch(NavigateToUrlEvent(url=url, new_tab=new_tab))
	await event
	await event.event_result(raise_if_any=True, raise_if_none=False)


class TestLifecycle:
	async def test_start_and_kill(self):
		session = BrowserSession(browser_profile=BrowserProfile(headless=True, user_data_dir=None))
		await session.start()

		assert session.agent_focus is not None
		assert session.cdp_url is not None
		assert len(await session.get_tabs()) >= 1

		await session.kill()

		assert session.agent_focus is None
		assert await session.get_tabs() == []

	async def test_start_twice_reuses_connection(self, browser_session):
		focus = browser_session.agent_focus

		await browser_session.start()

		assert browser_session.agent_focus is focus


class TestPageState:
	async def test_state_summary(self, browser_session, shop):
		await navigate(browser_session, shop.url_for('/'))

		state = await browser_session.get_browser_state_summary(include_screenshot=True)

		assert state.url == shop.url_for('/')
		assert state.title == 'Mug shop'
		assert state.screenshot
		tags = sorted(element.tag_name for element in state.dom_state.selector_map.values())
		assert tags == ['a', 'button', 'input']
		assert sorted(state.dom_state.selector_map) == [1, 2, 3]
		assert state.pixels_below > 0
		assert state.page_info is not None

	async def test_element_lookup_uses_last_state(self, browser_session, shop):
		await navigate(browser_session, shop.url_for('/'))
		state = await browser_session.get_browser_state_summary(include_screenshot=False)

		index = next(i for i, element in state.dom_state.selector_map.items() if element.tag_name == 'button')
		element = await browser_session.get_element_by_index(index)

		assert element is not None
		assert element.attributes.get('id') == 'buy'
		assert await browser_session.get_element_by_index(999) is None

	async def test_blank_page_state(self, browser_session):
		state = await browser_session.get_browser_state_summary(include_screenshot=True)

		assert is_new_tab_page(state.url)
		assert state.dom_state.selector_map == {}
		assert state.screenshot is None

	async def test_cached_state_is_reused_until_navigation(self, browser_session, shop):
		await navigate(browser_session, shop.url_for('/'))
		first = await browser_session.get_browser_state_summary(include_screenshot=True)

		assert await browser_session.get_browser_state_summary(include_screenshot=True, cached=True) is first

		await navigate(browser_session, shop.url_for('/blue'))
		fresh = await browser_session.get_browser_state_summary(include_screenshot=True, cached=True)
		assert fresh.title == 'Blue mug'


class TestTabs:
	async def test_new_tab_takes_focus(self, browser_session, shop):
		await navigate(browser_session, shop.url_for('/'))
		first_target = browser_session.agent_focus.target_id

		await navigate(browser_session, shop.url_for('/blue'), new_tab=True)

		assert browser_session.agent_focus.target_id != first_target
		assert await browser_session.get_current_page_title() == 'Blue mug'
		assert len(await browser_session.get_tabs()) == 2

	async def test_switch_and_close(self, browser_session, shop):
		await navigate(browser_session, shop.url_for('/'))
		first_target = browser_session.agent_focus.target_id
		await navigate(browser_session, shop.url_for('/blue'), new_tab=True)
		second_target = browser_session.agent_focus.target_id

		assert await browser_session.get_target_id_from_tab_id(first_target[-4:]) == first_target

		await browser_session.event_bus.dispatch(SwitchTabEvent(target_id=first_target))
		assert await browser_session.get_current_page_url() == shop.url_for('/')

		await browser_session.event_bus.dispatch(CloseTabEvent(target_id=first_target))
		assert browser_session.agent_focus.target_id == second_target
		assert [tab.target_id for tab in await browser_session.get_tabs()] == [second_target]

	async def test_unknown_tab_id(self, browser_session):
		with pytest.raises(ValueError, match='No TargetID found'):
			await browser_session.get_target_id_from_tab_id('zzzz')
