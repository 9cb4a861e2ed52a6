from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from .profile import BrowserProfile
	from .session import Browser, BrowserContext, BrowserSession

# session pulls in cdp-use and bubus, only load it on first use
_LAZY_IMPORTS = {
	'BrowserProfile': ('.profile', 'BrowserProfile'),
	'BrowserSession': ('.session', 'BrowserSession'),
	'Browser': ('.session', 'Browser'),
	'BrowserContext': ('.session', 'BrowserContext'),
}


def __getattr__(name: str):
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		from importlib import import_module

		full_module_path = f'browser_pilot.browser{module_path}'
		try:
			module = import_module(full_module_path)
		except ImportError as e:
			raise ImportError(f'Failed to import {name} from {full_module_path}: {e}') from e
		attr = getattr(module, attr_name)
		globals()[name] = attr
		return attr

	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
	'Browser',
	'BrowserContext',
	'BrowserSession',
	'BrowserProfile',
]
