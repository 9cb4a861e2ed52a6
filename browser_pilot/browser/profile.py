import logging
import tempfile
from pathlib import Path
from typing import Annotated, Any, Self

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from browser_pilot.config import CONFIG

logger = logging.getLogger(__name__)

CHROME_DEFAULT_ARGS = [
	'--disable-field-trial-config',
	'--disable-background-networking',
	'--disable-background-timer-throttling',
	'--disable-backgrounding-occluded-windows',
	'--disable-back-forward-cache',
	'--disable-breakpad',
	'--disable-client-side-phishing-detection',
	'--disable-component-extensions-with-background-pages',
	'--disable-component-update',
	'--no-default-browser-check',
	'--disable-default-apps',
	'--disable-dev-shm-usage',
	'--disable-extensions',
	'--disable-hang-monitor',
	'--disable-ipc-flooding-protection',
	'--disable-popup-blocking',
	'--disable-prompt-on-repost',
	'--disable-renderer-backgrounding',
	'--metrics-recording-only',
	'--no-first-run',
	'--password-store=basic',
	'--use-mock-keychain',
	'--no-service-autorun',
	'--export-tagged-pdf',
	'--disable-search-engine-choice-screen',
	'--disable-sync',
	'--disable-features=Translate,AcceptCHFrame,OptimizationHints,MediaRouter,InterestFeedContentSuggestions',
]

CHROME_DOCKER_ARGS = [
	'--no-sandbox',
	'--disable-gpu-sandbox',
	'--disable-setuid-sandbox',
	'--no-zygote',
	'--disable-site-isolation-trials',
]

CHROME_HEADLESS_ARGS = ['--headless=new']


def _validate_domain_patterns(domains: list[str] | None) -> list[str] | None:
	if not domains:
		return domains
	for pattern in domains:
		if pattern.endswith('.*') or pattern.count('*') > 1:
			raise ValueError(f'Unsupported allowed_domains pattern: {pattern!r} (wildcard TLDs and multiple wildcards are not allowed)')
	return domains


class ViewportSize(BaseModel):
	width: int = Field(ge=0)
	height: int = Field(ge=0)


class BrowserProfile(BaseModel):
	"""
	How a browser is launched or connected to, and how the session behaves while driving it.

	One profile can be shared by several sessions; the session never mutates it except for
	temporary user_data_dir fallbacks during launch.
	"""

	model_config = ConfigDict(
		extra='ignore',
		validate_assignment=True,
		populate_by_name=True,
	)

	# connection
	cdp_url: str | None = Field(default=None, description='Connect to an already running browser instead of launching one')
	is_local: bool = Field(default=True, description='Whether the browser process is launched and owned by this session')
	keep_alive: bool | None = Field(default=None, description='Keep the browser alive after the agent has finished running')

	# launch
	executable_path: str | Path | None = Field(default=None, description='Path to a Chrome/Chromium executable')
	headless: bool | None = Field(default=None, description='Run without a window; None means auto-detect a display')
	user_data_dir: str | Path | None = Field(default=None, description='Chrome profile dir, a temp dir when None')
	args: list[str] = Field(default_factory=list, description='Extra command line arguments passed to the browser')
	window_size: ViewportSize | None = Field(default=None, description='Window size for headful browsers')
	viewport: ViewportSize | None = Field(default=None, description='Viewport size used for headless browsers')
	downloads_path: str | Path | None = Field(default=None, description='Directory downloads are saved to')
	chromium_sandbox: bool = Field(default=not CONFIG.IN_DOCKER)

	# security
	allowed_domains: Annotated[list[str] | None, AfterValidator(_validate_domain_patterns)] = Field(
		default=None,
		description='List of allowed domains for navigation e.g. ["*.google.com", "https://example.com"]',
	)

	# agent behaviour
	highlight_elements: bool = Field(default=True, description='Draw index labels around interactive elements')
	viewport_expansion: int = Field(default=500, description='Pixels beyond the viewport to include elements from, -1 for all')
	minimum_wait_page_load_time: float = Field(default=0.25, description='Minimum time to wait before capturing page state')
	wait_for_network_idle_page_load_time: float = Field(default=0.5, description='Time to wait for the page to settle')
	wait_between_actions: float = Field(default=0.5, description='Time to wait between multiple actions of one step')

	@model_validator(mode='after')
	def ensure_user_data_dir(self) -> Self:
		if self.user_data_dir is None and not self.cdp_url:
			# bypass validate_assignment to avoid re-running this validator
			object.__setattr__(self, 'user_data_dir', Path(tempfile.mkdtemp(prefix='browserpilot-tmp-')))
		return self

	def __repr__(self) -> str:
		short_dir = str(self.user_data_dir).replace(str(Path('~').expanduser()), '~') if self.user_data_dir else None
		return f'BrowserProfile(user_data_dir={short_dir}, headless={self.headless})'

	def __str__(self) -> str:
		return 'BrowserProfile'

	def _detect_headless(self) -> bool:
		if self.headless is not None:
			return self.headless
		import os
		import platform

		has_display = platform.system() in ('Darwin', 'Windows') or bool(os.environ.get('DISPLAY') or os.environ.get('WAYLAND_DISPLAY'))
		if not has_display:
			logger.debug('🖥️ No display detected, launching browser headless')
		return not has_display

	def get_args(self) -> list[str]:
		"""Get the list of all Chrome CLI launch args for this profile."""
		headless = self._detect_headless()
		size = (self.viewport if headless else self.window_size) or ViewportSize(width=1280, height=1100)

		pre_conversion_args: list[str] = [
			*CHROME_DEFAULT_ARGS,
			*(CHROME_DOCKER_ARGS if (CONFIG.IN_DOCKER or not self.chromium_sandbox) else []),
			*(CHROME_HEADLESS_ARGS if headless else []),
			f'--user-data-dir={self.user_data_dir}',
			f'--window-size={size.width},{size.height}',
			*self.args,
		]

		# deduplicate by flag name, later values override earlier ones
		final_args: dict[str, Any] = {}
		for arg in pre_conversion_args:
			key, _, value = arg.partition('=')
			final_args[key] = value
		return [f'{key}={value}' if value else key for key, value in final_args.items()]
