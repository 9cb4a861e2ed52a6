"""Configuration for browser-pilot, read lazily from the environment."""

import logging
import os
from functools import cache
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


@cache
def is_running_in_docker() -> bool:
	"""Detect if we are running in a docker container, for the purpose of optimizing chrome launch flags"""
	try:
		if Path('/.dockerenv').exists() or 'docker' in Path('/proc/1/cgroup').read_text().lower():
			return True
	except Exception:
		pass
	return False


def _env_bool(name: str, default: str) -> bool:
	return os.getenv(name, default).lower()[:1] in 'ty1'


class Config:
	"""Environment-backed settings.

	Every attribute is re-read from the environment on access, so values changed at
	runtime (e.g. monkeypatched in tests) take effect immediately.
	"""

	@property
	def BROWSER_PILOT_LOGGING_LEVEL(self) -> str:
		return os.getenv('BROWSER_PILOT_LOGGING_LEVEL', 'info').lower()

	@property
	def CDP_LOGGING_LEVEL(self) -> str:
		return os.getenv('CDP_LOGGING_LEVEL', 'WARNING')

	@property
	def BROWSER_PILOT_SETUP_LOGGING(self) -> bool:
		return _env_bool('BROWSER_PILOT_SETUP_LOGGING', 'true')

	@property
	def BROWSER_PILOT_DEBUG_LOG_FILE(self) -> str | None:
		return os.getenv('BROWSER_PILOT_DEBUG_LOG_FILE') or None

	@property
	def BROWSER_PILOT_INFO_LOG_FILE(self) -> str | None:
		return os.getenv('BROWSER_PILOT_INFO_LOG_FILE') or None

	@property
	def SKIP_LLM_API_KEY_VERIFICATION(self) -> bool:
		return _env_bool('SKIP_LLM_API_KEY_VERIFICATION', 'false')

	@property
	def OPENAI_API_KEY(self) -> str:
		return os.getenv('OPENAI_API_KEY', '')

	@property
	def DEEPSEEK_API_KEY(self) -> str:
		return os.getenv('DEEPSEEK_API_KEY', '')

	@property
	def XDG_CONFIG_HOME(self) -> Path:
		return Path(os.getenv('XDG_CONFIG_HOME', '~/.config')).expanduser().resolve()

	@property
	def BROWSER_PILOT_CONFIG_DIR(self) -> Path:
		path = Path(os.getenv('BROWSER_PILOT_CONFIG_DIR', str(self.XDG_CONFIG_HOME / 'browserpilot'))).expanduser().resolve()
		path.mkdir(parents=True, exist_ok=True)
		return path

	@property
	def BROWSER_PILOT_PROFILES_DIR(self) -> Path:
		path = self.BROWSER_PILOT_CONFIG_DIR / 'profiles'
		path.mkdir(parents=True, exist_ok=True)
		return path

	@property
	def IN_DOCKER(self) -> bool:
		return _env_bool('IN_DOCKER', 'false') or is_running_in_docker()


CONFIG = Config()
