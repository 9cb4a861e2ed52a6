import asyncio
import fnmatch
import logging
import os
import platform
import signal
import sys
import time
from collections.abc import Callable, Coroutine
from functools import wraps
from pathlib import Path
from typing import Any, ParamSpec, TypeVar
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_exiting = False

R = TypeVar('R')
T = TypeVar('T')
P = ParamSpec('P')


class SignalHandler:
	"""
	SIGINT handling for an asyncio run loop.

	The first Ctrl+C calls ``pause_callback`` and waits for Enter (resume) or a second
	Ctrl+C (exit). The second Ctrl+C calls ``custom_exit_callback`` and exits the process.
	"""

	def __init__(
		self,
		loop: asyncio.AbstractEventLoop | None = None,
		pause_callback: Callable[[], None] | None = None,
		resume_callback: Callable[[], None] | None = None,
		custom_exit_callback: Callable[[], None] | None = None,
		exit_on_second_int: bool = True,
		interruptible_task_patterns: list[str] | None = None,
	):
		self.loop = loop or asyncio.get_event_loop()
		self.pause_callback = pause_callback
		self.resume_callback = resume_callback
		self.custom_exit_callback = custom_exit_callback
		self.exit_on_second_int = exit_on_second_int
		self.interruptible_task_patterns = interruptible_task_patterns or ['step', 'multi_act', 'get_next_action']
		self.is_windows = platform.system() == 'Windows'

		self._initialize_loop_state()

		self.original_sigint_handler = None
		self.original_sigterm_handler = None

	def _initialize_loop_state(self) -> None:
		setattr(self.loop, 'ctrl_c_pressed', False)
		setattr(self.loop, 'waiting_for_input', False)

	def register(self) -> None:
		try:
			if self.is_windows:

				def windows_handler(sig, frame):
					print('\n\n🛑 Got Ctrl+C. Exiting immediately on Windows...\n', flush=True)
					if self.custom_exit_callback:
						self.custom_exit_callback()
					os._exit(0)

				self.original_sigint_handler = signal.signal(signal.SIGINT, windows_handler)
			else:
				self.original_sigint_handler = self.loop.add_signal_handler(signal.SIGINT, lambda: self.sigint_handler())
				self.original_sigterm_handler = self.loop.add_signal_handler(signal.SIGTERM, lambda: self.sigterm_handler())
		except Exception:
			# there are situations where signal handlers are not supported, e.g.
			# - when running in a thread other than the main thread
			# - some operating systems
			pass

	def unregister(self) -> None:
		try:
			if self.is_windows:
				if self.original_sigint_handler:
					signal.signal(signal.SIGINT, self.original_sigint_handler)
			else:
				self.loop.remove_signal_handler(signal.SIGINT)
				self.loop.remove_signal_handler(signal.SIGTERM)
				if self.original_sigint_handler:
					signal.signal(signal.SIGINT, self.original_sigint_handler)
				if self.original_sigterm_handler:
					signal.signal(signal.SIGTERM, self.original_sigterm_handler)
		except Exception as e:
			logger.warning(f'Error while unregistering signal handlers: {e}')

	def _handle_second_ctrl_c(self) -> None:
		global _exiting

		if not _exiting:
			_exiting = True
			if self.custom_exit_callback:
				try:
					self.custom_exit_callback()
				except Exception as e:
					logger.error(f'Error in exit callback: {e}')

		print('\n\n🛑  Got second Ctrl+C. Exiting immediately...\n')
		# reset the terminal so a half-drawn prompt does not leave it in a weird state
		print('\033[?25h\033[0m', end='', flush=True)
		os._exit(0)

	def sigint_handler(self) -> None:
		global _exiting

		if _exiting:
			os._exit(0)

		if getattr(self.loop, 'ctrl_c_pressed', False):
			if getattr(self.loop, 'waiting_for_input', False):
				return
			if self.exit_on_second_int:
				self._handle_second_ctrl_c()

		setattr(self.loop, 'ctrl_c_pressed', True)
		self._cancel_interruptible_tasks()

		if self.pause_callback:
			try:
				self.pause_callback()
			except Exception as e:
				logger.error(f'Error in pause callback: {e}')

		print('----------------------------------------------------------------------', file=sys.stderr)

	def sigterm_handler(self) -> None:
		global _exiting
		if not _exiting:
			_exiting = True
			print('\n\n🛑 SIGTERM received. Exiting immediately...\n\n', file=sys.stderr)
			if self.custom_exit_callback:
				self.custom_exit_callback()
		os._exit(0)

	def _cancel_interruptible_tasks(self) -> None:
		current_task = asyncio.current_task(self.loop)
		for task in asyncio.all_tasks(self.loop):
			if task != current_task and not task.done():
				task_name = task.get_name() if hasattr(task, 'get_name') else str(task)
				if any(pattern in task_name for pattern in self.interruptible_task_patterns):
					logger.debug(f'Cancelling task: {task_name}')
					task.cancel()
					task.add_done_callback(lambda t: t.exception() if t.cancelled() is False else None)

	def wait_for_resume(self) -> None:
		"""Block on stdin until the user presses Enter (resume) or Ctrl+C (exit)."""
		setattr(self.loop, 'waiting_for_input', True)

		original_handler = signal.getsignal(signal.SIGINT)
		try:
			signal.signal(signal.SIGINT, signal.default_int_handler)
		except ValueError:
			pass

		green = '\x1b[32;1m'
		red = '\x1b[31m'
		blink = '\033[33;5m'
		unblink = '\033[0m'
		reset = '\x1b[0m'

		try:
			print(
				f'➡️  Press {green}[Enter]{reset} to resume or {red}[Ctrl+C]{reset} again to exit{blink}...{unblink} ',
				end='',
				flush=True,
			)
			input()
			if self.resume_callback:
				self.resume_callback()
		except KeyboardInterrupt:
			self._handle_second_ctrl_c()
		finally:
			try:
				signal.signal(signal.SIGINT, original_handler)
				setattr(self.loop, 'waiting_for_input', False)
			except Exception:
				pass

	def reset(self) -> None:
		setattr(self.loop, 'ctrl_c_pressed', False)
		setattr(self.loop, 'waiting_for_input', False)


def time_execution_sync(additional_text: str = '') -> Callable[[Callable[P, R]], Callable[P, R]]:
	def decorator(func: Callable[P, R]) -> Callable[P, R]:
		@wraps(func)
		def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			start_time = time.time()
			result = func(*args, **kwargs)
			execution_time = time.time() - start_time
			# Only log if execution takes more than 0.25 seconds
			if execution_time > 0.25:
				self_has_logger = args and getattr(args[0], 'logger', None)
				if self_has_logger:
					_logger = getattr(args[0], 'logger')
				elif 'agent' in kwargs:
					_logger = getattr(kwargs['agent'], 'logger')
				else:
					_logger = logger
				_logger.debug(f'⏳ {additional_text.strip("-")}() took {execution_time:.2f}s')
			return result

		return wrapper

	return decorator


def time_execution_async(
	additional_text: str = '',
) -> Callable[[Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]]:
	def decorator(func: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, Coroutine[Any, Any, R]]:
		@wraps(func)
		async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			start_time = time.time()
			result = await func(*args, **kwargs)
			execution_time = time.time() - start_time
			if execution_time > 0.25:
				self_has_logger = args and getattr(args[0], 'logger', None)
				if self_has_logger:
					_logger = getattr(args[0], 'logger')
				elif 'agent' in kwargs:
					_logger = getattr(kwargs['agent'], 'logger')
				elif 'browser_session' in kwargs:
					_logger = getattr(kwargs['browser_session'], 'logger')
				else:
					_logger = logger
				_logger.debug(f'⏳ {additional_text.strip("-")}() took {execution_time:.2f}s')
			return result

		return wrapper

	return decorator


def is_new_tab_page(url: str) -> bool:
	"""Check if a URL is a new tab page (about:blank or chrome://new-tab-page)."""
	return url in ('about:blank', 'chrome://new-tab-page/', 'chrome://new-tab-page', 'chrome://newtab/', 'chrome://newtab')


def match_url_with_domain_pattern(url: str, domain_pattern: str, log_warnings: bool = False) -> bool:
	"""
	Check if a URL matches a domain pattern.

	Patterns may carry a scheme (``https://*.example.com``); without one, only https is matched.
	``*.example.com`` matches the bare domain and any subdomain. ``*`` matches everything.

	Args:
		url: The URL to check
		domain_pattern: Domain pattern to match against
		log_warnings: Whether to log warnings about unsafe patterns

	Returns:
		bool: True if the URL matches the pattern, False otherwise
	"""
	try:
		if is_new_tab_page(url):
			return False

		parsed_url = urlparse(url)
		scheme = parsed_url.scheme.lower() if parsed_url.scheme else ''
		domain = parsed_url.hostname.lower() if parsed_url.hostname else ''

		if not scheme or not domain:
			return False

		if '://' in domain_pattern:
			pattern_scheme, pattern_domain = domain_pattern.lower().split('://', 1)
		else:
			pattern_scheme = 'https'
			pattern_domain = domain_pattern.lower()

		if '/' in pattern_domain:
			pattern_domain = pattern_domain.split('/', 1)[0]
		if ':' in pattern_domain and not pattern_domain.startswith(':'):
			pattern_domain = pattern_domain.split(':', 1)[0]

		if not fnmatch.fnmatch(scheme, pattern_scheme):
			return False

		if pattern_domain == '*' or domain == pattern_domain:
			return True

		if '*' in pattern_domain:
			if pattern_domain.count('*') > 1:
				if log_warnings:
					logger.error(f'⛔️ Multiple wildcards in pattern=[{domain_pattern}] are not supported')
				return False

			if pattern_domain.endswith('.*'):
				if log_warnings:
					logger.error(f'⛔️ Wildcard TLDs like in pattern=[{domain_pattern}] are not supported for security')
				return False

			if '*' in pattern_domain.split('.', 1)[-1] and not pattern_domain.startswith('*.'):
				if log_warnings:
					logger.error(f'⛔️ Embedded wildcards like in pattern=[{domain_pattern}] are not supported')
				return False

			if pattern_domain.startswith('*.'):
				parent_domain = pattern_domain[2:]
				if domain == parent_domain or fnmatch.fnmatch(domain, pattern_domain):
					return True

		return False
	except Exception as e:
		logger.error(f'⛔️ Error matching URL {url} with pattern {domain_pattern}: {type(e).__name__}: {e}')
		return False


def _log_pretty_path(path: str | Path | None) -> str:
	"""Pretty-print a path, shorten home dir to ~ and cwd to ."""
	if not path or not str(path).strip():
		return ''

	if not isinstance(path, (str, Path)):
		return f'<{type(path).__name__}>'

	pretty_path = str(path).replace(str(Path.home()), '~').replace(str(Path.cwd().resolve()), '.')

	# wrap in quotes if it contains spaces
	if pretty_path.strip() and ' ' in pretty_path:
		pretty_path = f'"{pretty_path}"'

	return pretty_path


def _log_pretty_url(s: str, max_len: int | None = 22) -> str:
	"""Truncate/pretty-print a URL with a maximum length, removing the protocol and www. prefix"""
	s = s.replace('https://', '').replace('http://', '').replace('www.', '')
	if max_len is not None and len(s) > max_len:
		return s[:max_len] + '…'
	return s


def get_browser_pilot_version() -> str:
	"""Get the installed browser-pilot version"""
	from importlib.metadata import PackageNotFoundError, version

	try:
		return version('browser-pilot')
	except PackageNotFoundError:
		logger.debug('browser-pilot is not installed as a distribution, reporting version as unknown')
		return 'unknown'
