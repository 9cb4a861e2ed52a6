import json
import logging
from dataclasses import dataclass
from importlib import resources
from typing import TYPE_CHECKING, Any

from browser_pilot.dom.views import DOMRect, DOMSelectorMap, EnhancedDOMElement, SerializedDOMState
from browser_pilot.utils import time_execution_async

if TYPE_CHECKING:
	from browser_pilot.browser.session import BrowserSession


@dataclass
class PageMetrics:
	scroll_x: int = 0
	scroll_y: int = 0
	viewport_width: int = 0
	viewport_height: int = 0
	page_width: int = 0
	page_height: int = 0


class DomService:
	"""
	Collects the interactive elements of the focused page.

	The bundled ``dom_tree.js`` runs inside the page through ``Runtime.evaluate`` and
	returns a flat list of visible interactive elements with their xpaths and bounds.
	"""

	def __init__(
		self,
		browser_session: 'BrowserSession',
		logger: logging.Logger | None = None,
		viewport_expansion: int = 0,
		highlight_elements: bool = True,
	):
		self.browser_session = browser_session
		self.logger = logger or browser_session.logger
		self.viewport_expansion = viewport_expansion
		self.highlight_elements = highlight_elements
		self.js_code = resources.files('browser_pilot.dom').joinpath('dom_tree.js').read_text(encoding='utf-8')

	async def _evaluate(self, expression: str) -> Any:
		cdp_session = await self.browser_session.get_or_create_cdp_session()
		result = await cdp_session.cdp_client.send.Runtime.evaluate(
			params={'expression': expression, 'returnByValue': True, 'awaitPromise': True},
			session_id=cdp_session.session_id,
		)
		if 'exceptionDetails' in result:
			details = result['exceptionDetails']
			raise RuntimeError(f'DOM extraction script failed: {details.get("text", "")} {details.get("exception", {})}')
		return result.get('result', {}).get('value')

	@time_execution_async('--get_serialized_dom_state')
	async def get_serialized_dom_state(
		self, previous_selector_map: DOMSelectorMap | None = None
	) -> tuple[SerializedDOMState, PageMetrics]:
		args = {
			'highlightElements': self.highlight_elements,
			'viewportExpansion': self.viewport_expansion,
		}
		raw = await self._evaluate(f'({self.js_code})({json.dumps(args)})')
		if not raw:
			self.logger.debug('🌳 DOM extraction returned nothing, page is probably still loading')
			return SerializedDOMState(selector_map={}), PageMetrics()

		previous_hashes = {e.element_hash for e in previous_selector_map.values()} if previous_selector_map else None

		selector_map: DOMSelectorMap = {}
		for item in raw.get('elements', []):
			bounds = item.get('bounds')
			element = EnhancedDOMElement(
				element_index=item['index'],
				tag_name=item['tag'],
				xpath=item['xpath'],
				attributes=item.get('attributes') or {},
				text=item.get('text') or '',
				bounds=DOMRect(**bounds) if bounds else None,
				is_in_viewport=item.get('isInViewport', True),
			)
			if previous_hashes is not None:
				element.is_new = element.element_hash not in previous_hashes
			selector_map[element.element_index] = element

		scroll = raw.get('scroll') or {}
		metrics = PageMetrics(
			scroll_x=int(scroll.get('scrollX', 0)),
			scroll_y=int(scroll.get('scrollY', 0)),
			viewport_width=int(scroll.get('viewportWidth', 0)),
			viewport_height=int(scroll.get('viewportHeight', 0)),
			page_width=int(scroll.get('pageWidth', 0)),
			page_height=int(scroll.get('pageHeight', 0)),
		)
		self.logger.debug(f'🌳 Found {len(selector_map)} interactive elements')
		return SerializedDOMState(selector_map=selector_map), metrics

	async def remove_highlights(self) -> None:
		await self._evaluate("document.getElementById('browser-pilot-highlight-container')?.remove()")
