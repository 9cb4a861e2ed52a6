from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from browser_pilot.controller.service import Controller

_LAZY_IMPORTS = {
	'Controller': ('browser_pilot.controller.service', 'Controller'),
}


def __getattr__(name: str):
	"""Lazy import so that importing the registry does not pull in the agent views."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		from importlib import import_module

		module = import_module(module_path)
		attr = getattr(module, attr_name)
		globals()[name] = attr
		return attr

	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = ['Controller']
