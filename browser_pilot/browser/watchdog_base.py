"""Base watchdog class for browser session components."""

import inspect
import time
from typing import Any, ClassVar

from bubus import BaseEvent, EventBus
from pydantic import BaseModel, ConfigDict, Field

from browser_pilot.browser.session import BrowserSession


class BaseWatchdog(BaseModel):
	"""Base class for all browser watchdogs.

	Handlers are discovered by name: a method ``on_ClickElementEvent(self, event)`` is
	attached to the session's event bus for ``ClickElementEvent``.
	"""

	model_config = ConfigDict(
		arbitrary_types_allowed=True,
		extra='forbid',
		validate_assignment=False,
		revalidate_instances='never',
	)

	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = []
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

	event_bus: EventBus = Field()
	browser_session: BrowserSession = Field()

	@property
	def logger(self):
		return self.browser_session.logger

	@staticmethod
	def attach_handler_to_session(browser_session: BrowserSession, event_class: type[BaseEvent[Any]], handler) -> None:
		"""Attach a single ``on_<EventName>`` handler to the session's event bus, wrapped with debug logging."""
		event_bus = browser_session.event_bus

		assert handler.__name__.startswith('on_'), f'Handler {handler.__name__} must start with "on_"'
		assert handler.__name__.endswith(event_class.__name__), (
			f'Handler {handler.__name__} must end with event type {event_class.__name__}'
		)

		watchdog_instance = getattr(handler, '__self__', None)
		watchdog_class_name = watchdog_instance.__class__.__name__ if watchdog_instance else 'Unknown'

		red = '\033[91m'
		green = '\033[92m'
		cyan = '\033[96m'
		magenta = '\033[95m'
		reset = '\033[0m'

		def make_unique_handler(actual_handler):
			async def unique_handler(event):
				event_str = f'#{event.event_id[-4:]}'
				label = f'[{watchdog_class_name}.{actual_handler.__name__}({event_str})]'.ljust(54)
				time_start = time.time()
				browser_session.logger.debug(f'{cyan}🚌 {label} ⏳ Starting...{reset}')
				try:
					result = await actual_handler(event)
					if isinstance(result, Exception):
						raise result
					result_summary = '' if result is None else f' ➡️ {magenta}<{type(result).__name__}>{reset}'
					browser_session.logger.debug(
						f'{green}🚌 {label} ✅ Succeeded ({time.time() - time_start:.2f}s){reset}{result_summary}'
					)
					return result
				except Exception as e:
					browser_session.logger.error(
						f'{red}🚌 {label} ❌ Failed ({time.time() - time_start:.2f}s): {type(e).__name__}: {e}{reset}'
					)
					raise

			return unique_handler

		unique_handler = make_unique_handler(handler)
		unique_handler.__name__ = f'{watchdog_class_name}.{handler.__name__}'

		existing_handlers = event_bus.handlers.get(event_class.__name__, [])
		if unique_handler.__name__ in [getattr(h, '__name__', str(h)) for h in existing_handlers]:
			raise RuntimeError(
				f'[{watchdog_class_name}] Duplicate handler registration attempted! '
				f'Handler {unique_handler.__name__} is already registered for {event_class.__name__}.'
			)

		event_bus.on(event_class, unique_handler)

	def attach_to_session(self) -> None:
		"""Register every ``on_<EventName>`` method of this watchdog on the session's event bus."""
		from browser_pilot.browser import events

		event_classes = {
			name: obj
			for name, obj in vars(events).items()
			if inspect.isclass(obj) and issubclass(obj, BaseEvent) and obj is not BaseEvent
		}

		registered_events = set()
		for method_name in dir(self):
			if not method_name.startswith('on_') or not callable(getattr(self, method_name)):
				continue
			event_class = event_classes.get(method_name[3:])
			if event_class is None:
				continue
			if self.LISTENS_TO:
				assert event_class in self.LISTENS_TO, (
					f'[{self.__class__.__name__}] Handler {method_name} is not declared in LISTENS_TO'
				)
			self.attach_handler_to_session(self.browser_session, event_class, getattr(self, method_name))
			registered_events.add(event_class)

		missing_handlers = set(self.LISTENS_TO) - registered_events
		if missing_handlers:
			self.logger.warning(
				f'[{self.__class__.__name__}] LISTENS_TO declares {[e.__name__ for e in missing_handlers]} but no handlers found'
			)
