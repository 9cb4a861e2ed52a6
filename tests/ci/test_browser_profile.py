import pytest
from pydantic import ValidationError

from browser_pilot.browser import BrowserProfile, BrowserSession
from browser_pilot.browser.profile import CHROME_HEADLESS_ARGS


class TestBrowserProfile:
	def test_temporary_user_data_dir(self):
		profile = BrowserProfile()

		assert profile.user_data_dir is not None
		assert 'browserpilot-tmp-' in str(profile.user_data_dir)

	def test_no_user_data_dir_when_connecting(self):
		assert BrowserProfile(cdp_url='http://localhost:9222').user_data_dir is None

	def test_headless_args(self):
		assert CHROME_HEADLESS_ARGS[0] in BrowserProfile(headless=True).get_args()
		assert CHROME_HEADLESS_ARGS[0] not in BrowserProfile(headless=False).get_args()

	def test_args_are_deduplicated_last_wins(self, tmp_path):
		profile = BrowserProfile(
			headless=True,
			user_data_dir=tmp_path,
			args=['--window-size=800,600', '--lang=de', '--lang=fr'],
		)
		args = profile.get_args()

		assert '--window-size=800,600' in args
		assert '--window-size=1280,1100' not in args
		assert '--lang=fr' in args
		assert '--lang=de' not in args
		assert f'--user-data-dir={tmp_path}' in args
		assert len(args) == len(set(arg.split('=')[0] for arg in args))

	def test_viewport_sets_headless_window_size(self):
		args = BrowserProfile(headless=True, viewport={'width': 1024, 'height': 768}).get_args()

		assert '--window-size=1024,768' in args

	@pytest.mark.parametrize('pattern', ['example.*', '*.*.example.com', 'https://*.example.*'])
	def test_unsafe_allowed_domains_rejected(self, pattern):
		with pytest.raises(ValidationError, match='Unsupported allowed_domains pattern'):
			BrowserProfile(allowed_domains=[pattern])

	def test_allowed_domains_accepted(self):
		profile = BrowserProfile(allowed_domains=['*.example.com', 'http://localhost', '*'])

		assert profile.allowed_domains == ['*.example.com', 'http://localhost', '*']

	def test_assignment_is_validated(self):
		profile = BrowserProfile()
		with pytest.raises(ValidationError):
			profile.allowed_domains = ['example.*']


class TestBrowserSessionConstruction:
	def test_kwargs_build_a_profile(self):
		session = BrowserSession(headless=True, keep_alive=True, allowed_domains=['example.com'])

		assert session.browser_profile.headless is True
		assert session.browser_profile.keep_alive is True
		assert session.browser_profile.allowed_domains == ['example.com']

	def test_kwargs_override_a_given_profile(self):
		base = BrowserProfile(headless=True, wait_between_actions=2)
		session = BrowserSession(browser_profile=base, wait_between_actions=0.1)

		assert session.browser_profile.headless is True
		assert session.browser_profile.wait_between_actions == 0.1
		assert base.wait_between_actions == 2

	def test_cdp_url_means_remote_browser(self):
		session = BrowserSession(cdp_url='http://localhost:9222')

		assert session.is_local is False
		assert session.cdp_url == 'http://localhost:9222'

	async def test_remote_session_needs_cdp_url(self):
		session = BrowserSession(is_local=False)

		with pytest.raises(Exception, match='no cdp_url'):
			await session.start()

	async def test_state_before_start(self):
		session = BrowserSession(headless=True)

		assert await session.get_current_page_url() == 'about:blank'
		assert await session.get_tabs() == []
		assert session.agent_focus is None
