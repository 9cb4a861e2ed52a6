import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bubus import BaseEvent
from cdp_use.cdp.target import TargetID
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer

from browser_pilot.dom.views import DOMInteractedElement, SerializedDOMState

# a 4x4 white PNG, returned for about:blank pages instead of a real screenshot
PLACEHOLDER_4PX_SCREENSHOT = (
	'iVBORw0KGgoAAAANSUhEUgAAAAQAAAAECAIAAAAmkwkpAAAAFElEQVR4nGP8//8/AwwwMSAB3BwAlm4DBfIlvvkAAAAASUVORK5CYII='
)


class TabInfo(BaseModel):
	"""Represents information about a browser tab"""

	model_config = ConfigDict(
		extra='forbid',
		validate_by_name=True,
		validate_by_alias=True,
		populate_by_name=True,
	)

	url: str
	title: str
	target_id: TargetID = Field(serialization_alias='tab_id', validation_alias=AliasChoices('tab_id', 'target_id'))

	@field_serializer('target_id')
	def serialize_target_id(self, target_id: TargetID, _info: Any) -> str:
		return target_id[-4:]


class PageInfo(BaseModel):
	"""Page size and scroll information"""

	viewport_width: int
	viewport_height: int

	page_width: int
	page_height: int

	scroll_x: int
	scroll_y: int

	pixels_above: int
	pixels_below: int
	pixels_left: int
	pixels_right: int


@dataclass
class BrowserStateSummary:
	"""The summary of the browser's current state designed for an LLM to process"""

	dom_state: SerializedDOMState

	url: str
	title: str
	tabs: list[TabInfo]
	screenshot: str | None = field(default=None, repr=False)
	page_info: PageInfo | None = None

	pixels_above: int = 0
	pixels_below: int = 0
	browser_errors: list[str] = field(default_factory=list)


@dataclass
class BrowserStateHistory:
	"""The summary of the browser's state at a past point in time, as kept in agent history"""

	url: str
	title: str
	tabs: list[TabInfo]
	interacted_element: list[DOMInteractedElement | None] | list[None]
	screenshot_path: str | None = None

	def get_screenshot(self) -> str | None:
		"""Load screenshot from disk and return as base64 string"""
		if not self.screenshot_path:
			return None

		path_obj = Path(self.screenshot_path)
		if not path_obj.exists():
			return None

		return base64.b64encode(path_obj.read_bytes()).decode('utf-8')

	def to_dict(self) -> dict[str, Any]:
		return {
			'tabs': [tab.model_dump() for tab in self.tabs],
			'screenshot_path': self.screenshot_path,
			'interacted_element': [el.to_dict() if el else None for el in self.interacted_element],
			'url': self.url,
			'title': self.title,
		}


class BrowserError(Exception):
	"""Browser error with structured memory for LLM context management.

	- short_term_memory: shown once to the LLM for the next action
	- long_term_memory: kept in the agent history across steps
	"""

	message: str
	short_term_memory: str | None = None
	long_term_memory: str | None = None
	details: dict[str, Any] | None = None
	while_handling_event: BaseEvent[Any] | None = None

	def __init__(
		self,
		message: str,
		short_term_memory: str | None = None,
		long_term_memory: str | None = None,
		details: dict[str, Any] | None = None,
		event: BaseEvent[Any] | None = None,
	):
		self.message = message
		self.short_term_memory = short_term_memory
		self.long_term_memory = long_term_memory
		self.details = details
		self.while_handling_event = event
		super().__init__(message)

	def __str__(self) -> str:
		if self.details:
			return f'{self.message} ({self.details}) during: {self.while_handling_event}'
		elif self.while_handling_event:
			return f'{self.message} (while handling: {self.while_handling_event})'
		else:
			return self.message


class URLNotAllowedError(BrowserError):
	"""Error raised when a URL is not allowed"""
