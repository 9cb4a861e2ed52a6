"""
Per-step screenshot storage for agent runs.
"""

import base64
import logging
from pathlib import Path

import anyio

logger = logging.getLogger(__name__)


class ScreenshotService:
	"""Writes one PNG per agent step under ``<agent_directory>/screenshots``."""

	def __init__(self, agent_directory: str | Path):
		self.agent_directory = Path(agent_directory)
		self.screenshots_dir = self.agent_directory / 'screenshots'
		self.screenshots_dir.mkdir(parents=True, exist_ok=True)

	def path_for_step(self, step_number: int) -> Path:
		return self.screenshots_dir / f'step_{step_number}.png'

	async def store_screenshot(self, screenshot_b64: str, step_number: int) -> str:
		"""Decode a base64 PNG, save it as ``step_{n}.png`` and return the path."""
		screenshot_path = self.path_for_step(step_number)
		async with await anyio.open_file(screenshot_path, 'wb') as f:
			await f.write(base64.b64decode(screenshot_b64))
		logger.debug(f'📸 Stored screenshot for step {step_number} at {screenshot_path}')
		return str(screenshot_path)

	async def get_screenshot(self, screenshot_path: str | None) -> str | None:
		"""Load a stored screenshot back as base64, None when it is missing."""
		if not screenshot_path:
			return None
		path = anyio.Path(screenshot_path)
		if not await path.exists():
			return None
		return base64.b64encode(await path.read_bytes()).decode('utf-8')
