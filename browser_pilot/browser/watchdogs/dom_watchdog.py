"""DOM watchdog for building the browser state summary the agent sees."""

import asyncio
from typing import Any, ClassVar

from bubus import BaseEvent

from browser_pilot.browser.events import BrowserStateRequestEvent, ScreenshotEvent, TabCreatedEvent
from browser_pilot.browser.views import BrowserStateSummary, PageInfo
from browser_pilot.browser.watchdog_base import BaseWatchdog
from browser_pilot.dom.service import DomService, PageMetrics
from browser_pilot.dom.views import SerializedDOMState


class DOMWatchdog(BaseWatchdog):
	"""Extracts interactive elements and assembles BrowserStateSummary.

	Highlights are drawn while the DOM is extracted so that the screenshot taken right after
	shows the element indices; the ScreenshotWatchdog removes them again.
	"""

	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [BrowserStateRequestEvent, TabCreatedEvent]
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [ScreenshotEvent]

	async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
		self.logger.debug(f'📄 Tab created: #{event.target_id[-4:]} {event.url}')

	async def on_BrowserStateRequestEvent(self, event: BrowserStateRequestEvent) -> BrowserStateSummary:
		profile = self.browser_session.browser_profile
		page_url = await self.browser_session.get_current_page_url()
		tabs_info = await self.browser_session.get_tabs()

		# nothing to extract from about:blank, chrome:// and friends
		if page_url.lower().split(':', 1)[0] not in ('http', 'https', 'file'):
			self.logger.debug(f'⚡ Skipping DOM extraction for empty target: {page_url}')
			browser_state = BrowserStateSummary(
				dom_state=SerializedDOMState(),
				url=page_url,
				title='Empty Tab',
				tabs=tabs_info,
				screenshot=None,
				page_info=None,
			)
			self.browser_session._cached_browser_state_summary = browser_state
			self.browser_session.update_cached_selector_map({})
			return browser_state

		await asyncio.sleep(profile.minimum_wait_page_load_time)

		previous_selector_map = (
			self.browser_session._cached_browser_state_summary.dom_state.selector_map
			if event.cache_clickable_elements_hashes and self.browser_session._cached_browser_state_summary
			else None
		)

		dom_state, metrics = SerializedDOMState(), PageMetrics()
		browser_errors: list[str] = []
		if event.include_dom:
			dom_service = DomService(
				self.browser_session,
				viewport_expansion=profile.viewport_expansion,
				highlight_elements=profile.highlight_elements,
			)
			try:
				dom_state, metrics = await dom_service.get_serialized_dom_state(previous_selector_map=previous_selector_map)
			except Exception as e:
				self.logger.warning(f'🌳 DOM extraction failed: {type(e).__name__}: {e}, using empty state')
				browser_errors.append(f'DOM extraction failed: {e}')

		screenshot_b64 = None
		if event.include_screenshot:
			try:
				screenshot_event = self.event_bus.dispatch(ScreenshotEvent(full_page=False))
				await screenshot_event
				screenshot_b64 = await screenshot_event.event_result(raise_if_any=True, raise_if_none=False)
			except Exception as e:
				self.logger.warning(f'📸 Screenshot failed: {type(e).__name__}: {e}')
				browser_errors.append(f'Screenshot failed: {e}')
		elif profile.highlight_elements:
			await self.browser_session.remove_highlights()

		try:
			title = await asyncio.wait_for(self.browser_session.get_current_page_title(), timeout=1.0)
		except Exception as e:
			self.logger.debug(f'Failed to get page title: {type(e).__name__}: {e}')
			title = 'Page'

		page_info = self._page_info_from_metrics(metrics)
		browser_state = BrowserStateSummary(
			dom_state=dom_state,
			url=page_url,
			title=title,
			tabs=tabs_info,
			screenshot=screenshot_b64,
			page_info=page_info,
			pixels_above=page_info.pixels_above if page_info else 0,
			pixels_below=page_info.pixels_below if page_info else 0,
			browser_errors=browser_errors,
		)

		self.browser_session._cached_browser_state_summary = browser_state
		self.browser_session.update_cached_selector_map(dom_state.selector_map)
		return browser_state

	@staticmethod
	def _page_info_from_metrics(metrics: PageMetrics) -> PageInfo | None:
		if not metrics.viewport_height:
			return None
		return PageInfo(
			viewport_width=metrics.viewport_width,
			viewport_height=metrics.viewport_height,
			page_width=metrics.page_width,
			page_height=metrics.page_height,
			scroll_x=metrics.scroll_x,
			scroll_y=metrics.scroll_y,
			pixels_above=metrics.scroll_y,
			pixels_below=max(0, metrics.page_height - metrics.viewport_height - metrics.scroll_y),
			pixels_left=metrics.scroll_x,
			pixels_right=max(0, metrics.page_width - metrics.viewport_width - metrics.scroll_x),
		)
