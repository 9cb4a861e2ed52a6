"""Screenshot watchdog for handling screenshot requests using CDP."""

from typing import Any, ClassVar

from bubus import BaseEvent

from browser_pilot.browser.events import ScreenshotEvent
from browser_pilot.browser.views import BrowserError
from browser_pilot.browser.watchdog_base import BaseWatchdog


class ScreenshotWatchdog(BaseWatchdog):
	"""Handles screenshot requests using CDP."""

	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [ScreenshotEvent]
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

	async def on_ScreenshotEvent(self, event: ScreenshotEvent) -> str:
		"""Capture the focused tab as a base64 PNG, then clear any element highlights."""
		try:
			cdp_session = await self.browser_session.get_or_create_cdp_session()
			result = await cdp_session.cdp_client.send.Page.captureScreenshot(
				params={'format': 'png', 'captureBeyondViewport': event.full_page},
				session_id=cdp_session.session_id,
			)
			if result and 'data' in result:
				self.logger.debug('📸 Screenshot captured successfully')
				return result['data']

			raise BrowserError('[ScreenshotWatchdog] Screenshot result missing data')
		finally:
			await self.browser_session.remove_highlights()
