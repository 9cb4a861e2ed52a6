"""Default browser action handlers using CDP."""

import asyncio
import json
from typing import Any

from browser_pilot.browser.events import (
	ClickElementEvent,
	GetDropdownOptionsEvent,
	GoBackEvent,
	ScrollEvent,
	ScrollToTextEvent,
	SelectDropdownOptionEvent,
	SendKeysEvent,
	SwitchTabEvent,
	TypeTextEvent,
	WaitEvent,
)
from browser_pilot.browser.views import BrowserError
from browser_pilot.browser.watchdog_base import BaseWatchdog
from browser_pilot.dom.views import EnhancedDOMElement

# CDP modifier bits
_MODIFIERS = {'alt': 1, 'option': 1, 'ctrl': 2, 'control': 2, 'meta': 4, 'cmd': 4, 'command': 4, 'shift': 8}

_KEY_MAP = {
	'enter': 'Enter',
	'return': 'Enter',
	'tab': 'Tab',
	'delete': 'Delete',
	'backspace': 'Backspace',
	'escape': 'Escape',
	'esc': 'Escape',
	'space': ' ',
	'up': 'ArrowUp',
	'down': 'ArrowDown',
	'left': 'ArrowLeft',
	'right': 'ArrowRight',
	'pageup': 'PageUp',
	'pagedown': 'PageDown',
	'home': 'Home',
	'end': 'End',
}

_VIRTUAL_KEY_CODES = {
	'Enter': 13,
	'Tab': 9,
	'Escape': 27,
	' ': 32,
	'Backspace': 8,
	'Delete': 46,
	'ArrowUp': 38,
	'ArrowDown': 40,
	'ArrowLeft': 37,
	'ArrowRight': 39,
	'Home': 36,
	'End': 35,
	'PageUp': 33,
	'PageDown': 34,
}

# resolves an xpath to the element, shared by all element scripts below
_FIND_ELEMENT_JS = 'const el = document.evaluate({xpath}, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;'

_GET_DROPDOWN_OPTIONS_JS = """
if (!el) return {error: 'element not found'};
const container = el.tagName.toLowerCase() === 'select' || ['menu', 'listbox', 'combobox'].includes(el.getAttribute('role'))
	? el : el.querySelector('select, [role="listbox"], [role="menu"]');
if (!container) return {error: 'not a dropdown'};
if (container.tagName.toLowerCase() === 'select') {
	return {type: 'select', options: Array.from(container.options).map((opt, i) => ({index: i, text: opt.text.trim(), value: opt.value}))};
}
const items = container.querySelectorAll('[role="option"], [role="menuitem"]');
return {type: 'aria', options: Array.from(items).map((item, i) => ({index: i, text: item.textContent.trim(), value: item.getAttribute('data-value') || item.textContent.trim()}))};
"""

_SELECT_DROPDOWN_OPTION_JS = """
if (!el) return {success: false, error: 'element not found'};
const wanted = {text}.toLowerCase();
const container = el.tagName.toLowerCase() === 'select' || ['menu', 'listbox', 'combobox'].includes(el.getAttribute('role'))
	? el : el.querySelector('select, [role="listbox"], [role="menu"]');
if (!container) return {success: false, error: 'not a dropdown'};
if (container.tagName.toLowerCase() === 'select') {
	for (const option of container.options) {
		if (option.text.trim().toLowerCase() === wanted || option.value.toLowerCase() === wanted) {
			container.value = option.value;
			option.selected = true;
			container.dispatchEvent(new Event('input', {bubbles: true}));
			container.dispatchEvent(new Event('change', {bubbles: true}));
			return {success: true, message: `Selected option: ${option.text.trim()} (value: ${option.value})`, value: option.value};
		}
	}
	const available = Array.from(container.options).map(opt => opt.text.trim());
	return {success: false, error: `Option '${wanted}' not found. Available options: ${JSON.stringify(available)}`};
}
for (const item of container.querySelectorAll('[role="option"], [role="menuitem"]')) {
	if (item.textContent.trim().toLowerCase() === wanted || (item.getAttribute('data-value') || '').toLowerCase() === wanted) {
		item.click();
		return {success: true, message: `Selected menu item: ${item.textContent.trim()}`};
	}
}
return {success: false, error: `Option '${wanted}' not found in menu`};
"""


class DefaultActionWatchdog(BaseWatchdog):
	"""Handles default browser actions like click, type, and scroll using CDP."""

	async def _evaluate_on_element(self, node: EnhancedDOMElement, body: str) -> Any:
		"""Run a JS snippet with ``el`` bound to the element at the node's xpath."""
		cdp_session = await self.browser_session.get_or_create_cdp_session()
		expression = '(() => {' + _FIND_ELEMENT_JS.format(xpath=json.dumps(node.xpath)) + body + '})()'
		result = await cdp_session.cdp_client.send.Runtime.evaluate(
			params={'expression': expression, 'returnByValue': True, 'awaitPromise': True},
			session_id=cdp_session.session_id,
		)
		if 'exceptionDetails' in result:
			raise BrowserError(f'Script failed on element {node}: {result["exceptionDetails"].get("text", "")}')
		return result.get('result', {}).get('value')

	async def on_ClickElementEvent(self, event: ClickElementEvent) -> dict | None:
		if not self.browser_session.agent_focus:
			raise BrowserError('Cannot execute click: browser session is not connected')

		element_node = event.node
		starting_target_id = self.browser_session.agent_focus.target_id
		initial_targets = {t['targetId'] for t in await self.browser_session._cdp_get_all_pages()}

		click_metadata = await self._click_element_node_impl(element_node, event.button, event.while_holding_ctrl)
		self.logger.debug(f'🖱️ Clicked element with index {element_node.element_index}: {element_node.text[:40]}')

		# new tabs open asynchronously
		await asyncio.sleep(0.5)

		after_targets = {t['targetId'] for t in await self.browser_session._cdp_get_all_pages()}
		new_target_ids = after_targets - initial_targets
		if new_target_ids and not event.while_holding_ctrl:
			# surprise tab, the agent should look at it
			self.logger.info('🔗 New tab opened - switching to it')
			await self.event_bus.dispatch(SwitchTabEvent(target_id=new_target_ids.pop()))
		elif starting_target_id in after_targets:
			await self.browser_session.get_or_create_cdp_session(target_id=starting_target_id, focus=True)

		return click_metadata

	async def _click_element_node_impl(
		self, element_node: EnhancedDOMElement, button: str = 'left', while_holding_ctrl: bool = False
	) -> dict | None:
		cdp_session = await self.browser_session.get_or_create_cdp_session()
		rect = await self._evaluate_on_element(
			element_node,
			"""
			if (!el) return null;
			el.scrollIntoView({block: 'center', inline: 'center'});
			const r = el.getBoundingClientRect();
			return {x: r.left, y: r.top, width: r.width, height: r.height};
			""",
		)
		if rect is None:
			raise BrowserError(
				f'Element with index {element_node.element_index} does not exist anymore',
				short_term_memory=f'Element with index {element_node.element_index} is gone, the page has changed.',
			)

		if rect['width'] <= 0 or rect['height'] <= 0:
			# invisible after scrolling, fall back to a JS click
			self.logger.debug(f'Element {element_node.element_index} has no size, using JS click')
			await self._evaluate_on_element(element_node, 'el.click(); return true;')
			return None

		center_x = rect['x'] + rect['width'] / 2
		center_y = rect['y'] + rect['height'] / 2
		modifiers = 2 if while_holding_ctrl else 0

		await cdp_session.cdp_client.send.Input.dispatchMouseEvent(
			params={'type': 'mouseMoved', 'x': center_x, 'y': center_y},
			session_id=cdp_session.session_id,
		)
		await asyncio.sleep(0.05)
		for mouse_event_type in ('mousePressed', 'mouseReleased'):
			await asyncio.wait_for(
				cdp_session.cdp_client.send.Input.dispatchMouseEvent(
					params={
						'type': mouse_event_type,
						'x': center_x,
						'y': center_y,
						'button': button,
						'clickCount': 1,
						'modifiers': modifiers,
					},
					session_id=cdp_session.session_id,
				),
				timeout=3.0,
			)
		return {'click_x': center_x, 'click_y': center_y}

	async def on_TypeTextEvent(self, event: TypeTextEvent) -> None:
		element_node = event.node
		focused = await self._evaluate_on_element(
			element_node,
			f"""
			if (!el) return false;
			el.scrollIntoView({{block: 'center'}});
			el.focus();
			if ({'true' if event.clear_existing else 'false'}) {{
				if (el.isContentEditable) {{
					document.execCommand('selectAll', false, null);
					document.execCommand('delete', false, null);
				}} else if ('value' in el) {{
					el.value = '';
					el.dispatchEvent(new Event('input', {{bubbles: true}}));
				}}
			}}
			return document.activeElement === el || el.contains(document.activeElement);
			""",
		)
		if not focused:
			# some widgets only take focus from a real click
			self.logger.debug(f'Element {element_node.element_index} did not take focus, clicking it first')
			await self._click_element_node_impl(element_node)

		cdp_session = await self.browser_session.get_or_create_cdp_session()
		await cdp_session.cdp_client.send.Input.insertText(params={'text': event.text}, session_id=cdp_session.session_id)
		await self._evaluate_on_element(
			element_node, "if (el) el.dispatchEvent(new Event('change', {bubbles: true})); return true;"
		)
		self.logger.debug(f'⌨️ Typed into element with index {element_node.element_index}')

	async def on_ScrollEvent(self, event: ScrollEvent) -> None:
		if not self.browser_session.agent_focus:
			raise BrowserError('No active target for scrolling')

		pixels = event.amount if event.direction == 'down' else -event.amount

		if event.node is not None:
			scrolled = await self._evaluate_on_element(
				event.node,
				f"""
				if (!el) return false;
				let container = el;
				while (container && container !== document.body) {{
					const style = getComputedStyle(container);
					if (/(auto|scroll)/.test(style.overflowY) && container.scrollHeight > container.clientHeight) {{
						const before = container.scrollTop;
						container.scrollBy({{top: {pixels}, behavior: 'auto'}});
						return container.scrollTop !== before;
					}}
					container = container.parentElement;
				}}
				return false;
				""",
			)
			if scrolled:
				self.logger.debug(f'📜 Scrolled element {event.node.element_index} container {event.direction} by {event.amount}px')
				return None

		cdp_session = await self.browser_session.get_or_create_cdp_session()
		layout_metrics = await cdp_session.cdp_client.send.Page.getLayoutMetrics(session_id=cdp_session.session_id)
		await cdp_session.cdp_client.send.Input.dispatchMouseEvent(
			params={
				'type': 'mouseWheel',
				'x': layout_metrics['layoutViewport']['clientWidth'] / 2,
				'y': layout_metrics['layoutViewport']['clientHeight'] / 2,
				'deltaX': 0,
				'deltaY': pixels,
			},
			session_id=cdp_session.session_id,
		)
		self.logger.debug(f'📜 Scrolled {event.direction} by {event.amount} pixels')

	async def on_GoBackEvent(self, event: GoBackEvent) -> None:
		cdp_session = await self.browser_session.get_or_create_cdp_session()
		history = await cdp_session.cdp_client.send.Page.getNavigationHistory(session_id=cdp_session.session_id)
		current_index = history['currentIndex']
		entries = history['entries']
		if current_index <= 0:
			self.logger.warning('⚠️ Cannot go back - no previous entry in history')
			return

		await cdp_session.cdp_client.send.Page.navigateToHistoryEntry(
			params={'entryId': entries[current_index - 1]['id']}, session_id=cdp_session.session_id
		)
		await asyncio.sleep(0.5)
		self.logger.info(f'🔙 Navigated back to {entries[current_index - 1]["url"]}')

	async def on_WaitEvent(self, event: WaitEvent) -> None:
		actual_seconds = min(max(event.seconds, 0), event.max_seconds)
		if actual_seconds != event.seconds:
			self.logger.info(f'🕒 Waiting for {actual_seconds} seconds (capped from {event.seconds}s)')
		else:
			self.logger.info(f'🕒 Waiting for {actual_seconds} seconds')
		await asyncio.sleep(actual_seconds)

	async def on_SendKeysEvent(self, event: SendKeysEvent) -> None:
		cdp_session = await self.browser_session.get_or_create_cdp_session(focus=True)
		send = cdp_session.cdp_client.send.Input.dispatchKeyEvent

		parts = event.keys.split('+')
		modifiers = 0
		for part in parts[:-1]:
			modifiers |= _MODIFIERS.get(part.strip().lower(), 0)

		raw_key = parts[-1].strip()
		key = _KEY_MAP.get(raw_key.lower(), raw_key)
		params: dict[str, Any] = {'key': key, 'modifiers': modifiers}
		if vk_code := _VIRTUAL_KEY_CODES.get(key):
			params['windowsVirtualKeyCode'] = vk_code
			params['code'] = key

		# printable keys and Enter also need a char event to produce input
		char_text = '\r' if key == 'Enter' else key if len(key) == 1 else ''
		await send(params={**params, 'type': 'rawKeyDown' if (modifiers or not char_text) else 'keyDown'}, session_id=cdp_session.session_id)
		if char_text and not modifiers:
			await send(params={'type': 'char', 'text': char_text, 'unmodifiedText': char_text}, session_id=cdp_session.session_id)
		await send(params={**params, 'type': 'keyUp'}, session_id=cdp_session.session_id)

		self.logger.info(f'⌨️ Sent keys: {event.keys}')
		if key == 'Enter':
			# Enter often submits a form
			await asyncio.sleep(0.5)

	async def on_ScrollToTextEvent(self, event: ScrollToTextEvent) -> None:
		cdp_session = await self.browser_session.get_or_create_cdp_session()
		result = await cdp_session.cdp_client.send.Runtime.evaluate(
			params={
				'expression': f"""
				(() => {{
					const wanted = {json.dumps(event.text)}.toLowerCase();
					const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT);
					let node;
					while ((node = walker.nextNode())) {{
						if (node.textContent.toLowerCase().includes(wanted) && node.parentElement.getClientRects().length) {{
							node.parentElement.scrollIntoView({{behavior: 'auto', block: 'center'}});
							return true;
						}}
					}}
					return false;
				}})()
				""",
				'returnByValue': True,
			},
			session_id=cdp_session.session_id,
		)
		if not result.get('result', {}).get('value'):
			raise BrowserError(f'Text not found: "{event.text}"', details={'text': event.text})
		self.logger.debug(f'📜 Scrolled to text: "{event.text}"')

	async def on_GetDropdownOptionsEvent(self, event: GetDropdownOptionsEvent) -> dict[str, Any]:
		result = await self._evaluate_on_element(event.node, _GET_DROPDOWN_OPTIONS_JS)
		if not result or result.get('error'):
			error = result.get('error') if result else 'no result'
			raise BrowserError(
				f'Failed to get dropdown options for element {event.node.element_index}: {error}',
				short_term_memory=f'Element {event.node.element_index} is not a dropdown ({error}).',
			)
		return result

	async def on_SelectDropdownOptionEvent(self, event: SelectDropdownOptionEvent) -> dict[str, str]:
		result = await self._evaluate_on_element(
			event.node, _SELECT_DROPDOWN_OPTION_JS.replace('{text}', json.dumps(event.text))
		)
		if not result or not result.get('success'):
			error = result.get('error') if result else 'no result'
			raise BrowserError(
				f'Failed to select option {event.text!r} in element {event.node.element_index}: {error}',
				short_term_memory=error,
				long_term_memory=f"Couldn't select option '{event.text}' in dropdown {event.node.element_index}.",
			)
		self.logger.debug(f'✅ {result.get("message")}')
		return {'message': result.get('message', ''), 'value': result.get('value', event.text)}
