import base64
import io

import pytest
from PIL import Image

from browser_pilot.agent.gif import create_history_gif, decode_unicode_escapes_to_utf8
from browser_pilot.agent.views import ActionResult, AgentHistory, AgentHistoryList, AgentOutput
from browser_pilot.browser.views import PLACEHOLDER_4PX_SCREENSHOT, BrowserStateHistory
from browser_pilot.controller.service import Controller
from browser_pilot.screenshots.service import ScreenshotService


def png_b64(color: tuple[int, int, int], size: tuple[int, int] = (640, 400)) -> str:
	buffer = io.BytesIO()
	Image.new('RGB', size, color).save(buffer, format='PNG')
	return base64.b64encode(buffer.getvalue()).decode('utf-8')


@pytest.fixture
def output_model() -> type[AgentOutput]:
	return AgentOutput.type_with_custom_actions(Controller().registry.create_action_model())


async def build_history(tmp_path, output_model, screenshots: list[str | None]) -> AgentHistoryList:
	service = ScreenshotService(tmp_path / 'agent')
	items = []
	for step, screenshot in enumerate(screenshots):
		path = await service.store_screenshot(screenshot, step) if screenshot else None
		model_output = output_model.model_validate(
			{
				'evaluation_previous_goal': 'Unknown',
				'memory': '',
				'next_goal': f'Goal number {step}',
				'action': [{'go_back': {}}],
			}
		)
		items.append(
			AgentHistory(
				model_output=model_output,
				result=[ActionResult(extracted_content='Navigated back')],
				state=BrowserStateHistory(url='https://example.com/', title='Example', tabs=[], interacted_element=[None], screenshot_path=path),
			)
		)
	return AgentHistoryList(history=items)


class TestScreenshotService:
	async def test_store_and_load(self, tmp_path):
		service = ScreenshotService(tmp_path / 'agent')
		screenshot = png_b64((255, 0, 0), (10, 10))

		path = await service.store_screenshot(screenshot, 3)

		assert path.endswith('screenshots/step_3.png')
		assert await service.get_screenshot(path) == screenshot
		assert await service.get_screenshot(str(tmp_path / 'missing.png')) is None
		assert await service.get_screenshot(None) is None


class TestHistoryGif:
	async def test_gif_has_task_frame_and_steps(self, tmp_path, output_model):
		history = await build_history(tmp_path, output_model, [png_b64((200, 0, 0)), png_b64((0, 200, 0))])
		output_path = tmp_path / 'run.gif'

		create_history_gif(task='Find the blue mug', history=history, output_path=str(output_path))

		with Image.open(output_path) as gif:
			assert gif.n_frames == 3
			assert gif.size == (640, 400)

	async def test_placeholders_and_missing_screenshots_are_skipped(self, tmp_path, output_model):
		history = await build_history(tmp_path, output_model, [PLACEHOLDER_4PX_SCREENSHOT, None, png_b64((0, 0, 200))])
		output_path = tmp_path / 'run.gif'

		create_history_gif(task='t', history=history, output_path=str(output_path), show_task=False)

		with Image.open(output_path) as gif:
			assert gif.n_frames == 1

	async def test_nothing_to_render(self, tmp_path, output_model):
		history = await build_history(tmp_path, output_model, [PLACEHOLDER_4PX_SCREENSHOT])
		output_path = tmp_path / 'run.gif'

		create_history_gif(task='t', history=history, output_path=str(output_path))
		create_history_gif(task='t', history=AgentHistoryList(history=[]), output_path=str(output_path))

		assert not output_path.exists()


def test_unicode_escapes_are_decoded():
	assert decode_unicode_escapes_to_utf8('plain text') == 'plain text'
	assert decode_unicode_escapes_to_utf8('\\u4f60\\u597d') == '你好'
