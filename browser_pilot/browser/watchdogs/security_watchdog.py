"""Security watchdog for enforcing URL access policies."""

from typing import Any, ClassVar

from bubus import BaseEvent

from browser_pilot.browser.events import BrowserErrorEvent, NavigationCompleteEvent, TabCreatedEvent
from browser_pilot.browser.views import URLNotAllowedError
from browser_pilot.browser.watchdog_base import BaseWatchdog
from browser_pilot.utils import is_new_tab_page, match_url_with_domain_pattern


class SecurityWatchdog(BaseWatchdog):
	"""Keeps the browser inside ``BrowserProfile.allowed_domains``.

	Navigation requests are checked up front by the session via ``assert_url_allowed``;
	redirects and new tabs that land somewhere disallowed are caught here afterwards.
	"""

	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [NavigationCompleteEvent, TabCreatedEvent]
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [BrowserErrorEvent]

	def is_url_allowed(self, url: str) -> bool:
		allowed_domains = self.browser_session.browser_profile.allowed_domains
		if not allowed_domains:
			return True
		if is_new_tab_page(url):
			return True
		return any(match_url_with_domain_pattern(url, pattern, log_warnings=True) for pattern in allowed_domains)

	def assert_url_allowed(self, url: str) -> None:
		if not self.is_url_allowed(url):
			self.logger.warning(f'⛔️ Blocking navigation to disallowed URL: {url}')
			self.event_bus.dispatch(
				BrowserErrorEvent(
					error_type='NavigationBlocked',
					message=f'Navigation blocked to disallowed URL: {url}',
					details={'url': url, 'reason': 'not_in_allowed_domains'},
				)
			)
			raise URLNotAllowedError(
				f'Navigation to {url} blocked by security policy',
				short_term_memory=f'Navigation to {url} is not allowed.',
				long_term_memory=f'Tried to open {url}, which is outside the allowed domains.',
			)

	async def on_NavigationCompleteEvent(self, event: NavigationCompleteEvent) -> None:
		"""Redirected somewhere disallowed: park the tab on about:blank."""
		current_url = event.url
		if self.browser_session.agent_focus and self.browser_session.agent_focus.target_id == event.target_id:
			current_url = await self.browser_session.get_current_page_url()

		if self.is_url_allowed(current_url):
			return

		self.logger.warning(f'⛔️ Navigation to non-allowed URL detected: {current_url}')
		self.event_bus.dispatch(
			BrowserErrorEvent(
				error_type='NavigationBlocked',
				message=f'Navigation to non-allowed URL: {current_url}',
				details={'url': current_url, 'target_id': event.target_id},
			)
		)
		await self.browser_session._cdp_navigate('about:blank', event.target_id)

	async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
		if self.is_url_allowed(event.url):
			return

		self.logger.warning(f'⛔️ New tab created with disallowed URL: {event.url}')
		self.event_bus.dispatch(
			BrowserErrorEvent(
				error_type='TabCreationBlocked',
				message=f'Tab created with non-allowed URL: {event.url}',
				details={'url': event.url, 'target_id': event.target_id},
			)
		)
		try:
			await self.browser_session._cdp_close_page(event.target_id)
			self.logger.info(f'⛔️ Closed new tab with non-allowed URL: {event.url}')
		except Exception as e:
			self.logger.error(f'⛔️ Failed to close new tab with non-allowed URL: {type(e).__name__}: {e}')
