"""Event definitions for browser communication."""

from typing import Any, Literal

from bubus import BaseEvent
from bubus.models import T_EventResultType
from pydantic import BaseModel, Field

from browser_pilot.browser.views import BrowserStateSummary
from browser_pilot.dom.views import EnhancedDOMElement

# ============================================================================
# Agent/Controller -> BrowserSession Events (high-level browser actions)
# ============================================================================


class ElementSelectedEvent(BaseEvent[T_EventResultType]):
	"""An event that targets one interactive element."""

	node: EnhancedDOMElement


class NavigateToUrlEvent(BaseEvent[None]):
	"""Navigate to a specific URL."""

	url: str
	wait_until: Literal['load', 'domcontentloaded'] = 'load'
	timeout_ms: int | None = None
	new_tab: bool = Field(
		default=False, description='Set True to leave the current tab alone and open a new tab in the foreground for the new URL'
	)

	event_timeout: float | None = 15.0  # seconds


class ClickElementEvent(ElementSelectedEvent[None]):
	"""Click an element."""

	button: Literal['left', 'right', 'middle'] = 'left'
	while_holding_ctrl: bool = False

	event_timeout: float | None = 15.0  # seconds


class TypeTextEvent(ElementSelectedEvent[None]):
	"""Type text into an element."""

	text: str
	clear_existing: bool = True

	event_timeout: float | None = 15.0  # seconds


class ScrollEvent(BaseEvent[None]):
	"""Scroll the page, or the scroll container of an element."""

	direction: Literal['up', 'down']
	amount: int  # pixels
	node: EnhancedDOMElement | None = None  # None means scroll page

	event_timeout: float | None = 8.0  # seconds


class SwitchTabEvent(BaseEvent[None]):
	"""Switch to a different tab."""

	target_id: str

	event_timeout: float | None = 10.0  # seconds


class CloseTabEvent(BaseEvent[None]):
	"""Close a tab."""

	target_id: str

	event_timeout: float | None = 10.0  # seconds


class ScreenshotEvent(BaseEvent[str]):
	"""Request to take a screenshot, returns base64 png."""

	full_page: bool = False

	event_timeout: float | None = 8.0  # seconds


class BrowserStateRequestEvent(BaseEvent[BrowserStateSummary]):
	"""Request current browser state."""

	include_dom: bool = True
	include_screenshot: bool = True
	cache_clickable_elements_hashes: bool = True

	event_timeout: float | None = 30.0  # seconds


class GoBackEvent(BaseEvent[None]):
	"""Navigate back in browser history."""

	event_timeout: float | None = 15.0  # seconds


class WaitEvent(BaseEvent[None]):
	"""Wait for a specified number of seconds."""

	seconds: float = 3.0
	max_seconds: float = 10.0  # Safety cap

	event_timeout: float | None = 60.0  # seconds


class SendKeysEvent(BaseEvent[None]):
	"""Send keyboard keys/shortcuts."""

	keys: str  # e.g., "Control+a", "Enter"

	event_timeout: float | None = 15.0  # seconds


class GetDropdownOptionsEvent(ElementSelectedEvent[dict[str, Any]]):
	"""Get all options of a native <select> or ARIA listbox/menu.

	Returns a dict with the dropdown type and its options list."""

	event_timeout: float | None = 15.0  # seconds


class SelectDropdownOptionEvent(ElementSelectedEvent[dict[str, str]]):
	"""Select a dropdown option by exact text."""

	text: str

	event_timeout: float | None = 8.0  # seconds


class ScrollToTextEvent(BaseEvent[None]):
	"""Scroll to specific text on the page. Raises exception if text not found."""

	text: str

	event_timeout: float | None = 15.0  # seconds


# ============================================================================
# Lifecycle Events
# ============================================================================


class BrowserStartEvent(BaseEvent):
	"""Start/connect to browser."""

	cdp_url: str | None = None

	event_timeout: float | None = 30.0  # seconds


class BrowserStopEvent(BaseEvent):
	"""Stop/disconnect from browser."""

	force: bool = False

	event_timeout: float | None = 45.0  # seconds


class BrowserLaunchResult(BaseModel):
	"""Result of launching a browser."""

	cdp_url: str


class BrowserLaunchEvent(BaseEvent[BrowserLaunchResult]):
	"""Launch a local browser process."""

	event_timeout: float | None = 30.0  # seconds


class BrowserKillEvent(BaseEvent):
	"""Kill local browser subprocess."""

	event_timeout: float | None = 30.0  # seconds


class BrowserConnectedEvent(BaseEvent):
	"""Browser has started/connected."""

	cdp_url: str

	event_timeout: float | None = 30.0  # seconds


class BrowserStoppedEvent(BaseEvent):
	"""Browser has stopped/disconnected."""

	reason: str | None = None

	event_timeout: float | None = 30.0  # seconds


class TabCreatedEvent(BaseEvent):
	"""A new tab was created."""

	url: str
	target_id: str

	event_timeout: float | None = 30.0  # seconds


class TabClosedEvent(BaseEvent):
	"""A tab was closed."""

	target_id: str

	event_timeout: float | None = 10.0  # seconds


class NavigationCompleteEvent(BaseEvent):
	"""Navigation completed."""

	target_id: str
	url: str
	error_message: str | None = None

	event_timeout: float | None = 30.0  # seconds


class BrowserErrorEvent(BaseEvent):
	"""An error occurred in the browser layer."""

	error_type: str
	message: str
	details: dict[str, Any] = Field(default_factory=dict)

	event_timeout: float | None = 30.0  # seconds
