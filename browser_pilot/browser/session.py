"""Event-driven browser session driven over CDP."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Self, cast

import httpx
from bubus import EventBus
from cdp_use import CDPClient
from cdp_use.cdp.target import SessionID, TargetID
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from uuid_extensions import uuid7str

from browser_pilot.browser.events import (
	BrowserConnectedEvent,
	BrowserErrorEvent,
	BrowserKillEvent,
	BrowserLaunchEvent,
	BrowserLaunchResult,
	BrowserStartEvent,
	BrowserStateRequestEvent,
	BrowserStopEvent,
	BrowserStoppedEvent,
	CloseTabEvent,
	NavigateToUrlEvent,
	NavigationCompleteEvent,
	SwitchTabEvent,
	TabClosedEvent,
	TabCreatedEvent,
)
from browser_pilot.browser.profile import BrowserProfile, ViewportSize
from browser_pilot.browser.views import BrowserStateSummary, TabInfo
from browser_pilot.dom.views import DOMSelectorMap, EnhancedDOMElement
from browser_pilot.utils import _log_pretty_url, is_new_tab_page

red = '\033[91m'
reset = '\033[0m'


class CDPSession(BaseModel):
	"""A CDP session attached to one page target over the shared root websocket."""

	model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

	cdp_client: CDPClient

	target_id: TargetID
	session_id: SessionID
	title: str = 'Unknown title'
	url: str = 'about:blank'

	@classmethod
	async def for_target(cls, cdp_client: CDPClient, target_id: TargetID, domains: list[str] | None = None) -> Self:
		cdp_session = cls(cdp_client=cdp_client, target_id=target_id, session_id='connecting')
		return await cdp_session.attach(domains=domains)

	async def attach(self, domains: list[str] | None = None) -> Self:
		result = await self.cdp_client.send.Target.attachToTarget(params={'targetId': self.target_id, 'flatten': True})
		self.session_id = result['sessionId']

		domains = domains or ['Page', 'DOM', 'Runtime']
		results = await asyncio.gather(
			*(getattr(self.cdp_client.send, domain).enable(session_id=self.session_id) for domain in domains),
			return_exceptions=True,
		)
		if any(isinstance(result, Exception) for result in results):
			raise RuntimeError(f'Failed to enable requested CDP domain: {results}')

		tab_info = await self.get_tab_info()
		self.title = tab_info.title
		self.url = tab_info.url
		return self

	async def get_tab_info(self) -> TabInfo:
		result = await self.cdp_client.send.Target.getTargetInfo(params={'targetId': self.target_id})
		target_info = result['targetInfo']
		return TabInfo(target_id=target_info['targetId'], url=target_info['url'], title=target_info['title'])


class BrowserSession(BaseModel):
	"""A running browser, reachable over CDP, shared by any number of agents.

	All browser operations go through the session's bubus ``event_bus``: the session itself
	handles start/stop, navigation and tabs, and watchdogs handle everything else::

		session = BrowserSession(headless=True)
		await session.start()
		await session.event_bus.dispatch(NavigateToUrlEvent(url='https://example.com'))
		state = await session.get_browser_state_summary()
		await session.kill()
	"""

	model_config = ConfigDict(
		arbitrary_types_allowed=True,
		validate_assignment=True,
		extra='forbid',
		revalidate_instances='never',
	)

	def __init__(
		self,
		id: str | None = None,
		browser_profile: BrowserProfile | None = None,
		cdp_url: str | None = None,
		is_local: bool | None = None,
		headless: bool | None = None,
		executable_path: str | Path | None = None,
		user_data_dir: str | Path | None = None,
		args: list[str] | None = None,
		keep_alive: bool | None = None,
		allowed_domains: list[str] | None = None,
		window_size: ViewportSize | dict | None = None,
		viewport: ViewportSize | dict | None = None,
		downloads_path: str | Path | None = None,
		highlight_elements: bool | None = None,
		viewport_expansion: int | None = None,
		minimum_wait_page_load_time: float | None = None,
		wait_for_network_idle_page_load_time: float | None = None,
		wait_between_actions: float | None = None,
	):
		# only pass explicitly set values so profile defaults stay in one place
		profile_kwargs = {k: v for k, v in locals().items() if k not in ('self', 'id', 'browser_profile') and v is not None}
		if cdp_url and is_local is None:
			profile_kwargs['is_local'] = False

		if browser_profile is not None and profile_kwargs:
			resolved_browser_profile = BrowserProfile(**{**browser_profile.model_dump(), **profile_kwargs})
		else:
			resolved_browser_profile = browser_profile or BrowserProfile(**profile_kwargs)

		super().__init__(id=id or uuid7str(), browser_profile=resolved_browser_profile)

	id: str = Field(default_factory=uuid7str, description='Unique identifier for this browser session')
	browser_profile: BrowserProfile = Field(default_factory=BrowserProfile)

	# shared bus for the session and all of its watchdogs
	event_bus: EventBus = Field(default_factory=EventBus)

	# tab the agent is currently looking at
	agent_focus: CDPSession | None = None

	_cdp_client_root: CDPClient | None = PrivateAttr(default=None)
	_cdp_session_pool: dict[str, CDPSession] = PrivateAttr(default_factory=dict)
	_cached_browser_state_summary: BrowserStateSummary | None = PrivateAttr(default=None)
	_cached_selector_map: DOMSelectorMap = PrivateAttr(default_factory=dict)

	_watchdogs_attached: bool = PrivateAttr(default=False)
	_local_browser_watchdog: Any | None = PrivateAttr(default=None)
	_security_watchdog: Any | None = PrivateAttr(default=None)
	_default_action_watchdog: Any | None = PrivateAttr(default=None)
	_screenshot_watchdog: Any | None = PrivateAttr(default=None)
	_dom_watchdog: Any | None = PrivateAttr(default=None)

	@property
	def cdp_url(self) -> str | None:
		return self.browser_profile.cdp_url

	@property
	def is_local(self) -> bool:
		return self.browser_profile.is_local

	@property
	def logger(self) -> logging.Logger:
		# rebuilt every time, the focused tab is part of the name
		return logging.getLogger(f'browser_pilot.{self}')

	@property
	def _tab_id_for_logs(self) -> str:
		return self.agent_focus.target_id[-2:] if self.agent_focus else f'{red}--{reset}'

	def __repr__(self) -> str:
		return f'BrowserSession🅑 {self.id[-4:]} 🅣 {self._tab_id_for_logs} (cdp_url={self.cdp_url}, profile={self.browser_profile})'

	def __str__(self) -> str:
		return f'BrowserSession🅑 {self.id[-4:]} 🅣 {self._tab_id_for_logs}'

	def model_post_init(self, __context) -> None:
		self._attach_session_handlers()

	def _attach_session_handlers(self) -> None:
		from browser_pilot.browser.watchdog_base import BaseWatchdog

		start_handlers = self.event_bus.handlers.get('BrowserStartEvent', [])
		if any('on_BrowserStartEvent' in getattr(h, '__name__', str(h)) for h in start_handlers):
			raise RuntimeError(
				'[BrowserSession] Duplicate handler registration attempted! '
				'This likely means BrowserSession was initialized multiple times with the same EventBus.'
			)

		BaseWatchdog.attach_handler_to_session(self, BrowserStartEvent, self.on_BrowserStartEvent)
		BaseWatchdog.attach_handler_to_session(self, BrowserStopEvent, self.on_BrowserStopEvent)
		BaseWatchdog.attach_handler_to_session(self, NavigateToUrlEvent, self.on_NavigateToUrlEvent)
		BaseWatchdog.attach_handler_to_session(self, SwitchTabEvent, self.on_SwitchTabEvent)
		BaseWatchdog.attach_handler_to_session(self, CloseTabEvent, self.on_CloseTabEvent)

	async def reset(self) -> None:
		"""Forget every CDP session and cached state, keeping the profile."""
		self._cdp_session_pool.clear()
		self._cdp_client_root = None
		self._cached_browser_state_summary = None
		self._cached_selector_map = {}
		self.agent_focus = None
		if self.is_local:
			self.browser_profile.cdp_url = None

		self._watchdogs_attached = False
		self._local_browser_watchdog = None
		self._security_watchdog = None
		self._default_action_watchdog = None
		self._screenshot_watchdog = None
		self._dom_watchdog = None

	# ========== Lifecycle ==========

	async def start(self) -> Self:
		"""Launch or connect to the browser."""
		start_event = self.event_bus.dispatch(BrowserStartEvent())
		await start_event
		await start_event.event_result(raise_if_any=True, raise_if_none=False)
		return self

	async def stop(self) -> None:
		"""Disconnect from the browser, leaving it running when keep_alive is set."""
		await self.event_bus.dispatch(BrowserStopEvent(force=False))
		await self._replace_event_bus()

	async def kill(self) -> None:
		"""Terminate the browser process and reset all session state."""
		await self.event_bus.dispatch(BrowserStopEvent(force=True))
		await self._replace_event_bus()

	async def _replace_event_bus(self) -> None:
		await self.event_bus.stop(clear=True, timeout=5)
		await self.reset()
		self.event_bus = EventBus()
		self._attach_session_handlers()

	async def __aenter__(self) -> Self:
		return await self.start()

	async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
		if self.browser_profile.keep_alive:
			await self.stop()
		else:
			await self.kill()

	async def on_BrowserStartEvent(self, event: BrowserStartEvent) -> dict[str, str]:
		# watchdogs first, the local browser watchdog handles BrowserLaunchEvent
		await self.attach_all_watchdogs()

		try:
			if event.cdp_url:
				self.browser_profile.cdp_url = event.cdp_url

			if not self.cdp_url:
				if not self.is_local:
					raise ValueError('Got BrowserSession(is_local=False) but no cdp_url was provided to connect to!')
				launch_event = self.event_bus.dispatch(BrowserLaunchEvent())
				await launch_event
				launch_result = cast(
					BrowserLaunchResult, await launch_event.event_result(raise_if_none=True, raise_if_any=True)
				)
				self.browser_profile.cdp_url = launch_result.cdp_url

			assert self.cdp_url and '://' in self.cdp_url

			if self._cdp_client_root is None:
				await self.connect(cdp_url=self.cdp_url)
				self.event_bus.dispatch(BrowserConnectedEvent(cdp_url=self.cdp_url))
			else:
				self.logger.debug('Already connected to CDP, skipping reconnection')

			return {'cdp_url': self.cdp_url}

		except Exception as e:
			self.event_bus.dispatch(
				BrowserErrorEvent(
					error_type='BrowserStartEventError',
					message=f'Failed to start browser: {type(e).__name__} {e}',
					details={'cdp_url': self.cdp_url, 'is_local': self.is_local},
				)
			)
			raise

	async def on_BrowserStopEvent(self, event: BrowserStopEvent) -> None:
		if self.browser_profile.keep_alive and not event.force:
			self.event_bus.dispatch(BrowserStoppedEvent(reason='Kept alive due to keep_alive=True'))
			return

		if self._cdp_client_root is not None:
			try:
				await self._cdp_client_root.stop()
			except Exception as e:
				self.logger.debug(f'CDP client did not close cleanly: {type(e).__name__}: {e}')

		if self.is_local:
			await self.event_bus.dispatch(BrowserKillEvent())

		await self.event_bus.dispatch(BrowserStoppedEvent(reason='Stopped by request'))

	async def attach_all_watchdogs(self) -> None:
		"""Create every watchdog and register its handlers on the event bus."""
		if self._watchdogs_attached:
			self.logger.debug('Watchdogs already attached, skipping duplicate attachment')
			return

		from browser_pilot.browser.watchdogs.default_action_watchdog import DefaultActionWatchdog
		from browser_pilot.browser.watchdogs.dom_watchdog import DOMWatchdog
		from browser_pilot.browser.watchdogs.local_browser_watchdog import LocalBrowserWatchdog
		from browser_pilot.browser.watchdogs.screenshot_watchdog import ScreenshotWatchdog
		from browser_pilot.browser.watchdogs.security_watchdog import SecurityWatchdog

		LocalBrowserWatchdog.model_rebuild()
		self._local_browser_watchdog = LocalBrowserWatchdog(event_bus=self.event_bus, browser_session=self)
		self._local_browser_watchdog.attach_to_session()

		SecurityWatchdog.model_rebuild()
		self._security_watchdog = SecurityWatchdog(event_bus=self.event_bus, browser_session=self)
		self._security_watchdog.attach_to_session()

		DefaultActionWatchdog.model_rebuild()
		self._default_action_watchdog = DefaultActionWatchdog(event_bus=self.event_bus, browser_session=self)
		self._default_action_watchdog.attach_to_session()

		ScreenshotWatchdog.model_rebuild()
		self._screenshot_watchdog = ScreenshotWatchdog(event_bus=self.event_bus, browser_session=self)
		self._screenshot_watchdog.attach_to_session()

		# depends on ScreenshotWatchdog
		DOMWatchdog.model_rebuild()
		self._dom_watchdog = DOMWatchdog(event_bus=self.event_bus, browser_session=self)
		self._dom_watchdog.attach_to_session()

		self._watchdogs_attached = True

	async def connect(self, cdp_url: str | None = None) -> Self:
		"""Connect to a chromium-based browser over CDP. Fails hard on any error."""
		self.browser_profile.cdp_url = cdp_url or self.cdp_url
		if not self.cdp_url:
			raise RuntimeError('Cannot setup CDP connection without CDP URL')

		if not self.cdp_url.startswith('ws'):
			# resolve the websocket url from the http /json/version endpoint
			url = self.cdp_url.rstrip('/')
			if not url.endswith('/json/version'):
				url = url + '/json/version'
			async with httpx.AsyncClient() as client:
				version_info = await client.get(url)
				self.browser_profile.cdp_url = version_info.json()['webSocketDebuggerUrl']

		assert self.cdp_url is not None
		browser_location = 'local browser' if self.is_local else 'remote browser'
		self.logger.debug(f'🌎 Connecting to chromium-based browser via CDP: {self.cdp_url} -> ({browser_location})')

		try:
			self._cdp_client_root = CDPClient(self.cdp_url)
			await self._cdp_client_root.start()
			await self._cdp_client_root.send.Target.setAutoAttach(
				params={'autoAttach': True, 'waitForDebuggerOnStart': False, 'flatten': True}
			)

			page_targets = await self._cdp_get_all_pages()
			if page_targets:
				target_id = page_targets[0]['targetId']
				self.logger.debug(f'📄 Using existing page with target ID: {target_id}')
			else:
				target_id = await self._cdp_create_new_page('about:blank')
				self.logger.debug(f'📄 Created new blank page with target ID: {target_id}')

			self.agent_focus = await CDPSession.for_target(self._cdp_client_root, target_id)
			self._cdp_session_pool[target_id] = self.agent_focus

			# chrome://newtab cannot be scripted, park such tabs on about:blank
			if is_new_tab_page(self.agent_focus.url) and self.agent_focus.url != 'about:blank':
				await self._cdp_navigate('about:blank', target_id)

			for target in page_targets:
				self.event_bus.dispatch(TabCreatedEvent(url=target.get('url', ''), target_id=target['targetId']))

		except Exception as e:
			self.logger.error(f'❌ FATAL: Failed to setup CDP connection: {e}')
			self._cdp_client_root = None
			self.agent_focus = None
			raise RuntimeError(f'Failed to establish CDP connection to browser: {e}') from e

		return self

	@property
	def cdp_client(self) -> CDPClient:
		assert self._cdp_client_root is not None, 'CDP client not initialized - browser may not be connected yet'
		return self._cdp_client_root

	async def get_or_create_cdp_session(self, target_id: TargetID | None = None, focus: bool = True) -> CDPSession:
		"""Get the CDP session for a target, attaching to it on first use.

		With ``target_id=None`` the focused tab's session is returned. ``focus=True`` also
		moves the agent focus there and brings the tab to the foreground.
		"""
		assert self._cdp_client_root is not None, 'Root CDP client not initialized - browser may not be connected yet'
		assert self.agent_focus is not None, 'CDP session not initialized - browser may not be connected yet'

		if target_id is None:
			target_id = self.agent_focus.target_id

		session = self._cdp_session_pool.get(target_id)
		if session is None:
			self.logger.debug(f'[get_or_create_cdp_session] Attaching new CDP session for target {target_id}')
			session = await CDPSession.for_target(self._cdp_client_root, target_id)
			self._cdp_session_pool[target_id] = session

		if focus and self.agent_focus.target_id != target_id:
			self.logger.debug(f'[get_or_create_cdp_session] Switching agent focus from {self.agent_focus.target_id} to {target_id}')
			self.agent_focus = session
			self._cached_browser_state_summary = None
			self._cached_selector_map = {}
			await session.cdp_client.send.Target.activateTarget(params={'targetId': target_id})
			await session.cdp_client.send.Runtime.runIfWaitingForDebugger(session_id=session.session_id)
		return session

	# ========== Navigation and tabs ==========

	async def on_NavigateToUrlEvent(self, event: NavigateToUrlEvent) -> None:
		if not self.agent_focus:
			raise RuntimeError('Cannot navigate - browser not connected')

		# domain policy is checked before the page is touched
		if self._security_watchdog:
			self._security_watchdog.assert_url_allowed(event.url)

		target_id = self.agent_focus.target_id
		if event.new_tab:
			target_id = await self._cdp_create_new_page('about:blank')
			self.logger.debug(f'Created new tab #{target_id[-4:]}')
			await self.event_bus.dispatch(TabCreatedEvent(target_id=target_id, url='about:blank'))

		try:
			await self._cdp_navigate(event.url, target_id)
			timeout = event.timeout_ms / 1000 if event.timeout_ms else 10.0
			await self._wait_for_page_load(event.wait_until, timeout)
			await self.event_bus.dispatch(NavigationCompleteEvent(target_id=target_id, url=event.url))
		except Exception as e:
			self.logger.error(f'Navigation failed: {type(e).__name__}: {e}')
			await self.event_bus.dispatch(
				NavigationCompleteEvent(target_id=target_id, url=event.url, error_message=f'{type(e).__name__}: {e}')
			)
			raise

	async def _wait_for_page_load(self, wait_until: str, timeout: float) -> None:
		"""Wait for document.readyState, then for the page to settle."""
		cdp_session = await self.get_or_create_cdp_session()
		wanted = ('complete',) if wait_until == 'load' else ('interactive', 'complete')
		await asyncio.sleep(self.browser_profile.minimum_wait_page_load_time)

		loop = asyncio.get_event_loop()
		deadline = loop.time() + timeout
		while loop.time() < deadline:
			try:
				result = await cdp_session.cdp_client.send.Runtime.evaluate(
					params={'expression': 'document.readyState', 'returnByValue': True},
					session_id=cdp_session.session_id,
				)
				if result.get('result', {}).get('value') in wanted:
					break
			except Exception as e:
				# the execution context is replaced while the new document loads
				self.logger.debug(f'readyState check failed while loading: {type(e).__name__}: {e}')
			await asyncio.sleep(0.1)
		else:
			self.logger.warning(f'⚠️ Page did not finish loading within {timeout}s, continuing anyway')

		await asyncio.sleep(self.browser_profile.wait_for_network_idle_page_load_time)

	async def on_SwitchTabEvent(self, event: SwitchTabEvent) -> TargetID:
		if not self.agent_focus:
			raise RuntimeError('Cannot switch tabs - browser not connected')
		self.agent_focus = await self.get_or_create_cdp_session(target_id=event.target_id, focus=True)
		return self.agent_focus.target_id

	async def on_CloseTabEvent(self, event: CloseTabEvent) -> None:
		was_focused = self.agent_focus is not None and self.agent_focus.target_id == event.target_id
		await self._cdp_close_page(event.target_id)
		self._cdp_session_pool.pop(event.target_id, None)
		await self.event_bus.dispatch(TabClosedEvent(target_id=event.target_id))

		if was_focused:
			# fall back to the most recently opened tab, or a fresh blank one
			remaining = await self._cdp_get_all_pages()
			fallback_id = remaining[-1]['targetId'] if remaining else await self._cdp_create_new_page('about:blank')
			self._cached_browser_state_summary = None
			self._cached_selector_map = {}
			self.agent_focus = await CDPSession.for_target(self.cdp_client, fallback_id)
			self._cdp_session_pool[fallback_id] = self.agent_focus
			await self.cdp_client.send.Target.activateTarget(params={'targetId': fallback_id})

	async def get_tabs(self) -> list[TabInfo]:
		"""Get information about all open tabs."""
		if not self._cdp_client_root:
			return []

		tabs = []
		for page_target in await self._cdp_get_all_pages():
			url = page_target['url']
			title = page_target.get('title', '')
			if is_new_tab_page(url):
				title = 'ignore this tab and do not use it' if url != 'about:blank' else title
			elif url.startswith('chrome://') and not title:
				title = url
			tabs.append(TabInfo(target_id=page_target['targetId'], url=url, title=title))
		return tabs

	async def get_current_page_url(self) -> str:
		if not self.agent_focus:
			return 'about:blank'
		return (await self.agent_focus.get_tab_info()).url

	async def get_current_page_title(self) -> str:
		if not self.agent_focus:
			return 'Unknown page title'
		return (await self.agent_focus.get_tab_info()).title

	async def get_target_id_from_tab_id(self, tab_id: str) -> TargetID:
		"""Get the full-length TargetID from the truncated 4-char tab_id."""
		for full_target_id in self._cdp_session_pool:
			if full_target_id.endswith(tab_id):
				return full_target_id
		for target in await self._cdp_get_all_pages():
			if target['targetId'].endswith(tab_id):
				return target['targetId']
		raise ValueError(f'No TargetID found ending in tab_id=...{tab_id}')

	# ========== Page state ==========

	async def get_browser_state_summary(
		self,
		cache_clickable_elements_hashes: bool = True,
		include_screenshot: bool = True,
		cached: bool = False,
	) -> BrowserStateSummary:
		if cached and self._cached_browser_state_summary is not None:
			cached_summary = self._cached_browser_state_summary
			if include_screenshot and not cached_summary.screenshot:
				self.logger.debug('⚠️ Cached browser state has no screenshot, fetching fresh state with screenshot')
			elif cached_summary.dom_state.selector_map:
				self.logger.debug('🔄 Using pre-cached browser state summary for open tab')
				return cached_summary

		event = self.event_bus.dispatch(
			BrowserStateRequestEvent(
				include_dom=True,
				include_screenshot=include_screenshot,
				cache_clickable_elements_hashes=cache_clickable_elements_hashes,
			)
		)
		result = await event.event_result(raise_if_none=True, raise_if_any=True)
		assert result is not None and result.dom_state is not None
		return result

	def update_cached_selector_map(self, selector_map: DOMSelectorMap) -> None:
		self._cached_selector_map = selector_map

	async def get_selector_map(self) -> DOMSelectorMap:
		return self._cached_selector_map

	async def get_element_by_index(self, index: int) -> EnhancedDOMElement | None:
		return self._cached_selector_map.get(index)

	async def remove_highlights(self) -> None:
		if not self.browser_profile.highlight_elements or not self.agent_focus:
			return
		from browser_pilot.dom.service import DomService

		try:
			await DomService(self).remove_highlights()
		except Exception as e:
			self.logger.debug(f'Failed to remove highlights: {type(e).__name__}: {e}')

	# ========== CDP helpers ==========

	async def _cdp_get_all_pages(self) -> list[dict[str, Any]]:
		"""All page targets, http(s) and about:blank / new tab pages only."""
		if not self._cdp_client_root:
			return []
		targets = await self.cdp_client.send.Target.getTargets()
		return [
			t
			for t in targets.get('targetInfos', [])
			if t.get('type') in ('page', 'tab')
			and (t.get('url', '').startswith(('http://', 'https://', 'file://')) or is_new_tab_page(t.get('url', '')))
		]

	async def _cdp_create_new_page(self, url: str = 'about:blank') -> TargetID:
		result = await self.cdp_client.send.Target.createTarget(params={'url': url})
		return result['targetId']

	async def _cdp_close_page(self, target_id: TargetID) -> None:
		await self.cdp_client.send.Target.closeTarget(params={'targetId': target_id})

	async def _cdp_navigate(self, url: str, target_id: TargetID | None = None) -> None:
		assert self.agent_focus is not None, 'CDP session not initialized - browser may not be connected yet'
		self.agent_focus = await self.get_or_create_cdp_session(target_id or self.agent_focus.target_id, focus=True)
		self.logger.debug(f'🔗 Navigating to {_log_pretty_url(url, max_len=60)}')
		await self.agent_focus.cdp_client.send.Page.navigate(params={'url': url}, session_id=self.agent_focus.session_id)
		self._cached_browser_state_summary = None


# "browser" and "context" are the vocabulary of older releases, both are now one session
Browser = BrowserSession
BrowserContext = BrowserSession
