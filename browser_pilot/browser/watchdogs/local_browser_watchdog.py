"""Local browser watchdog for managing the browser subprocess lifecycle."""

import asyncio
import glob
import os
import platform
import shutil
import socket
import tempfile
from pathlib import Path
from typing import Any, ClassVar

import aiohttp
import psutil
from bubus import BaseEvent
from pydantic import PrivateAttr

from browser_pilot.browser.events import BrowserKillEvent, BrowserLaunchEvent, BrowserLaunchResult
from browser_pilot.browser.watchdog_base import BaseWatchdog

_TEMP_DIR_PREFIX = 'browserpilot-tmp-'

_BROWSER_PATH_PATTERNS = {
	'Darwin': [
		'/Applications/Google Chrome.app/Contents/MacOS/Google Chrome',
		'{playwright_path}/chromium-*/chrome-mac/Chromium.app/Contents/MacOS/Chromium',
		'/Applications/Chromium.app/Contents/MacOS/Chromium',
		'/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary',
		'/Applications/Brave Browser.app/Contents/MacOS/Brave Browser',
	],
	'Linux': [
		'/usr/bin/google-chrome-stable',
		'/usr/bin/google-chrome',
		'/usr/local/bin/google-chrome',
		'{playwright_path}/chromium-*/chrome-linux/chrome',
		'/usr/bin/chromium',
		'/usr/bin/chromium-browser',
		'/usr/local/bin/chromium',
		'/snap/bin/chromium',
		'/usr/bin/brave-browser',
		'{playwright_path}/chromium_headless_shell-*/chrome-linux/chrome',
	],
	'Windows': [
		r'C:\Program Files\Google\Chrome\Application\chrome.exe',
		r'C:\Program Files (x86)\Google\Chrome\Application\chrome.exe',
		r'%LOCALAPPDATA%\Google\Chrome\Application\chrome.exe',
		'{playwright_path}\\chromium-*\\chrome-win\\chrome.exe',
		r'C:\Program Files\Chromium\Application\chrome.exe',
		r'C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe',
		r'C:\Program Files\Microsoft\Edge\Application\msedge.exe',
	],
}

_DEFAULT_PLAYWRIGHT_PATHS = {
	'Darwin': '~/Library/Caches/ms-playwright',
	'Linux': '~/.cache/ms-playwright',
	'Windows': r'%LOCALAPPDATA%\ms-playwright',
}


class LocalBrowserWatchdog(BaseWatchdog):
	"""Launches Chrome with a remote debugging port and cleans it up afterwards."""

	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [BrowserLaunchEvent, BrowserKillEvent]
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

	_subprocess: psutil.Process | None = PrivateAttr(default=None)
	_temp_dirs_to_cleanup: list[Path] = PrivateAttr(default_factory=list)
	_original_user_data_dir: str | None = PrivateAttr(default=None)

	async def on_BrowserLaunchEvent(self, event: BrowserLaunchEvent) -> BrowserLaunchResult:
		try:
			process, cdp_url = await self._launch_browser()
		except Exception as e:
			self.logger.error(f'[LocalBrowserWatchdog] Failed to launch browser: {type(e).__name__}: {e}')
			raise
		self._subprocess = process
		return BrowserLaunchResult(cdp_url=cdp_url)

	async def on_BrowserKillEvent(self, event: BrowserKillEvent) -> None:
		self.logger.debug('[LocalBrowserWatchdog] Killing local browser process')

		if self._subprocess:
			await self._cleanup_process(self._subprocess)
			self._subprocess = None

		for temp_dir in self._temp_dirs_to_cleanup:
			self._cleanup_temp_dir(temp_dir)
		self._temp_dirs_to_cleanup.clear()

		# profile dirs created by BrowserProfile itself are temporary too
		user_data_dir = self.browser_session.browser_profile.user_data_dir
		if user_data_dir and _TEMP_DIR_PREFIX in str(user_data_dir):
			self._cleanup_temp_dir(user_data_dir)

		if self._original_user_data_dir is not None:
			self.browser_session.browser_profile.user_data_dir = self._original_user_data_dir
			self._original_user_data_dir = None

	async def _launch_browser(self, max_retries: int = 3) -> tuple[psutil.Process, str]:
		"""Launch the browser and return (process, cdp_url).

		A locked or unusable user_data_dir is retried with a fresh temporary directory.
		"""
		profile = self.browser_session.browser_profile
		self._original_user_data_dir = str(profile.user_data_dir) if profile.user_data_dir else None
		self._temp_dirs_to_cleanup = []

		browser_path = str(profile.executable_path) if profile.executable_path else self._find_installed_browser_path()
		if not browser_path:
			raise RuntimeError(
				'No local Chrome/Chromium install found, set BrowserProfile(executable_path=...) or install Chrome'
			)
		self.logger.debug(f'[LocalBrowserWatchdog] 📦 Using browser executable_path= {browser_path}')

		for attempt in range(max_retries):
			debug_port = self._find_free_port()
			launch_args = [*profile.get_args(), f'--remote-debugging-port={debug_port}']
			try:
				subprocess = await asyncio.create_subprocess_exec(
					browser_path,
					*launch_args,
					stdout=asyncio.subprocess.PIPE,
					stderr=asyncio.subprocess.PIPE,
				)
				self.logger.debug(
					f'[LocalBrowserWatchdog] 🎭 Browser running with browser_pid= {subprocess.pid} 🔗 listening on CDP port :{debug_port}'
				)
				process = psutil.Process(subprocess.pid)
				cdp_url = await self._wait_for_cdp_url(debug_port)
				return process, cdp_url

			except Exception as e:
				error_str = str(e).lower()
				recoverable = any(
					err in error_str for err in ('singletonlock', 'user data directory', 'cannot create', 'already in use')
				)
				if recoverable and attempt < max_retries - 1:
					self.logger.warning(f'Browser launch failed (attempt {attempt + 1}/{max_retries}): {e}')
					tmp_dir = Path(tempfile.mkdtemp(prefix=_TEMP_DIR_PREFIX))
					self._temp_dirs_to_cleanup.append(tmp_dir)
					profile.user_data_dir = str(tmp_dir)
					await asyncio.sleep(0.5)
					continue

				if self._original_user_data_dir is not None:
					profile.user_data_dir = self._original_user_data_dir
				for tmp_dir in self._temp_dirs_to_cleanup:
					shutil.rmtree(tmp_dir, ignore_errors=True)
				raise

		raise RuntimeError(f'Failed to launch browser after {max_retries} attempts')

	@staticmethod
	def _find_installed_browser_path() -> str | None:
		"""Find a Chrome/Chromium executable in the usual install locations."""
		system = platform.system()
		playwright_path = os.environ.get('PLAYWRIGHT_BROWSERS_PATH') or _DEFAULT_PLAYWRIGHT_PATHS.get(system, '')

		for pattern in _BROWSER_PATH_PATTERNS.get(system, []):
			pattern_str = os.path.expandvars(str(Path(pattern.format(playwright_path=playwright_path)).expanduser()))
			if '*' in pattern_str:
				# highest version wins
				matches = sorted(glob.glob(pattern_str))
				if matches and Path(matches[-1]).is_file():
					return matches[-1]
			elif Path(pattern_str).is_file():
				return pattern_str

		return shutil.which('google-chrome') or shutil.which('chromium') or shutil.which('chromium-browser')

	@staticmethod
	def _find_free_port() -> int:
		with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
			s.bind(('127.0.0.1', 0))
			s.listen(1)
			return s.getsockname()[1]

	@staticmethod
	async def _wait_for_cdp_url(port: int, timeout: float = 30) -> str:
		"""Poll /json/version until the browser answers."""
		loop = asyncio.get_event_loop()
		start_time = loop.time()

		while loop.time() - start_time < timeout:
			try:
				async with aiohttp.ClientSession() as session:
					async with session.get(f'http://127.0.0.1:{port}/json/version') as resp:
						if resp.status == 200:
							return f'http://127.0.0.1:{port}/'
			except aiohttp.ClientError:
				pass  # not listening yet
			await asyncio.sleep(0.1)

		raise TimeoutError(f'Browser did not start within {timeout} seconds')

	@staticmethod
	async def _cleanup_process(process: psutil.Process) -> None:
		"""Terminate the browser, killing it if it ignores SIGTERM for 5s."""
		try:
			process.terminate()
			for _ in range(50):
				if not process.is_running():
					return
				await asyncio.sleep(0.1)
			process.kill()
		except psutil.NoSuchProcess:
			pass

	def _cleanup_temp_dir(self, temp_dir: Path | str) -> None:
		temp_path = Path(temp_dir)
		# never delete anything we did not create
		if _TEMP_DIR_PREFIX in str(temp_path):
			shutil.rmtree(temp_path, ignore_errors=True)

	@property
	def browser_pid(self) -> int | None:
		return self._subprocess.pid if self._subprocess else None
