from __future__ import annotations

import base64
import io
import logging
import platform
from typing import TYPE_CHECKING

from browser_pilot.browser.views import PLACEHOLDER_4PX_SCREENSHOT

if TYPE_CHECKING:
	from PIL import Image, ImageFont

	from browser_pilot.agent.views import AgentHistoryList

logger = logging.getLogger(__name__)


def decode_unicode_escapes_to_utf8(text: str) -> str:
	"""Handle decoding any unicode escape sequences embedded in a string (needed to render non-ASCII languages like chinese or arabic in the GIF overlay text)"""

	if r'\u' not in text:
		return text

	try:
		return text.encode('latin1').decode('unicode_escape')
	except (UnicodeEncodeError, UnicodeDecodeError):
		return text


def create_history_gif(
	task: str,
	history: AgentHistoryList,
	#
	output_path: str = 'agent_history.gif',
	duration: int = 3000,
	show_goals: bool = True,
	show_task: bool = True,
	show_logo: bool = False,
	font_size: int = 40,
	title_font_size: int = 56,
	goal_font_size: int = 44,
	margin: int = 40,
	line_spacing: float = 1.5,
) -> None:
	"""Create a GIF from the agent's history with overlaid task and goal text."""
	if not history.history:
		logger.warning('No history to create GIF from')
		return

	from PIL import Image, ImageFont

	images = []

	# Get all screenshots from history (including None placeholders)
	screenshots = history.screenshots(return_none_if_not_screenshot=True)

	if not screenshots:
		logger.warning('No screenshots found in history')
		return

	first_real_screenshot = next(
		(screenshot for screenshot in screenshots if screenshot and screenshot != PLACEHOLDER_4PX_SCREENSHOT), None
	)
	if not first_real_screenshot:
		logger.warning('No valid screenshots found (all are placeholders)')
		return

	font_options = [
		'PingFang',
		'STHeiti Medium',
		'Microsoft YaHei',
		'Noto Sans CJK SC',
		'Helvetica',
		'Arial',
		'DejaVuSans',
		'Verdana',
	]
	regular_font = title_font = goal_font = None
	for font_name in font_options:
		try:
			if platform.system() == 'Windows':
				# Windows needs the absolute font path
				font_name = f'C:\\Windows\\Fonts\\{font_name}.ttf'
			regular_font = ImageFont.truetype(font_name, font_size)
			title_font = ImageFont.truetype(font_name, title_font_size)
			goal_font = ImageFont.truetype(font_name, goal_font_size)
			break
		except OSError:
			continue

	if regular_font is None or title_font is None or goal_font is None:
		regular_font = ImageFont.load_default()
		title_font = ImageFont.load_default()
		goal_font = regular_font

	logo = None
	if show_logo:
		try:
			logo = Image.open('./static/browser-pilot.png')
			logo_height = 150
			aspect_ratio = logo.width / logo.height
			logo = logo.resize((int(logo_height * aspect_ratio), logo_height), Image.Resampling.LANCZOS)
		except OSError as e:
			logger.warning(f'Could not load logo: {e}')

	if show_task and task:
		task_frame = _create_task_frame(
			task,
			first_real_screenshot,
			title_font,  # type: ignore
			regular_font,  # type: ignore
			logo,
			line_spacing,
		)
		images.append(task_frame)

	for i, (item, screenshot) in enumerate(zip(history.history, screenshots), 1):
		if not screenshot:
			continue

		# about:blank pages only have the 4px placeholder
		if screenshot == PLACEHOLDER_4PX_SCREENSHOT:
			logger.debug(f'Skipping placeholder screenshot from about:blank page at step {i}')
			continue

		image = Image.open(io.BytesIO(base64.b64decode(screenshot)))

		if show_goals and item.model_output:
			image = _add_overlay_to_image(
				image=image,
				step_number=i,
				goal_text=item.model_output.current_state.next_goal,
				regular_font=goal_font,  # type: ignore
				title_font=title_font,  # type: ignore
				margin=margin,
				logo=logo,
			)

		images.append(image)

	if images:
		images[0].save(
			output_path,
			save_all=True,
			append_images=images[1:],
			duration=duration,
			loop=0,
			optimize=False,
		)
		logger.info(f'🎞️ Created GIF at {output_path}')
	else:
		logger.warning('No images found in history to create GIF')


def _wrap_text(text: str, font: ImageFont.FreeTypeFont, max_width: int) -> str:
	"""Greedy word wrap so every line fits in max_width pixels"""
	text = decode_unicode_escapes_to_utf8(text)
	words = text.split()
	lines: list[str] = []
	current_line: list[str] = []

	for word in words:
		current_line.append(word)
		line = ' '.join(current_line)
		bbox = font.getbbox(line)
		if bbox[2] > max_width:
			if len(current_line) == 1:
				lines.append(current_line.pop())
			else:
				current_line.pop()
				lines.append(' '.join(current_line))
				current_line = [word]

	if current_line:
		lines.append(' '.join(current_line))

	return '\n'.join(lines)


def _create_task_frame(
	task: str,
	first_screenshot: str,
	title_font: ImageFont.FreeTypeFont,
	regular_font: ImageFont.FreeTypeFont,
	logo: Image.Image | None = None,
	line_spacing: float = 1.5,
) -> Image.Image:
	"""Create the opening frame: the task text centered on a black canvas the size of the first screenshot"""
	from PIL import Image, ImageDraw

	img_data = base64.b64decode(first_screenshot)
	template = Image.open(io.BytesIO(img_data))
	image = Image.new('RGB', template.size, (0, 0, 0))
	draw = ImageDraw.Draw(image)

	center_y = image.height // 2
	margin = 140
	max_width = image.width - (2 * margin)

	task_font = regular_font
	wrapped_text = _wrap_text(task, task_font, max_width)
	line_height = (task_font.size if hasattr(task_font, 'size') else 12) * line_spacing
	lines = wrapped_text.split('\n')
	total_height = line_height * len(lines)

	text_y = center_y - (total_height / 2) + 50
	for line in lines:
		line_bbox = draw.textbbox((0, 0), line, font=task_font)
		text_x = (image.width - (line_bbox[2] - line_bbox[0])) // 2
		draw.text((text_x, text_y), line, font=task_font, fill=(255, 255, 255))
		text_y += line_height

	if logo:
		logo_margin = 20
		logo_x = image.width - logo.width - logo_margin
		image.paste(logo, (logo_x, logo_margin), logo if logo.mode == 'RGBA' else None)

	return image


def _add_overlay_to_image(
	image: Image.Image,
	step_number: int,
	goal_text: str,
	regular_font: ImageFont.FreeTypeFont,
	title_font: ImageFont.FreeTypeFont,
	margin: int,
	logo: Image.Image | None = None,
	display_step: bool = True,
	text_color: tuple[int, int, int, int] = (255, 255, 255, 255),
	text_box_color: tuple[int, int, int, int] = (0, 0, 0, 255),
) -> Image.Image:
	"""Draw the step number and the step's goal on top of a screenshot"""
	from PIL import Image, ImageDraw

	goal_text = decode_unicode_escapes_to_utf8(goal_text)
	image = image.convert('RGBA')
	txt_layer = Image.new('RGBA', image.size, (0, 0, 0, 0))
	draw = ImageDraw.Draw(txt_layer)

	if display_step:
		step_text = str(step_number)
		step_bbox = draw.textbbox((0, 0), step_text, font=title_font)
		step_width = step_bbox[2] - step_bbox[0]
		step_height = step_bbox[3] - step_bbox[1]

		x_step = margin + 10
		y_step = image.height - margin - step_height - 10

		padding = 20
		step_bg_bbox = (
			x_step - padding,
			y_step - padding,
			x_step + step_width + padding,
			y_step + step_height + padding,
		)
		draw.rounded_rectangle(step_bg_bbox, radius=15, fill=text_box_color)
		draw.text((x_step, y_step), step_text, font=title_font, fill=text_color)

	max_width = image.width - (4 * margin)
	wrapped_goal = _wrap_text(goal_text, regular_font, max_width)
	goal_bbox = draw.multiline_textbbox((0, 0), wrapped_goal, font=regular_font)
	goal_width = goal_bbox[2] - goal_bbox[0]
	goal_height = goal_bbox[3] - goal_bbox[1]

	x_goal = (image.width - goal_width) // 2
	y_goal = image.height - margin - goal_height - 100

	padding_goal = 25
	goal_bg_bbox = (
		x_goal - padding_goal,
		y_goal - padding_goal,
		x_goal + goal_width + padding_goal,
		y_goal + goal_height + padding_goal,
	)
	draw.rounded_rectangle(goal_bg_bbox, radius=15, fill=text_box_color)
	draw.multiline_text((x_goal, y_goal), wrapped_goal, font=regular_font, fill=text_color, align='center')

	if logo:
		logo_layer = Image.new('RGBA', image.size, (0, 0, 0, 0))
		logo_margin = 20
		logo_x = image.width - logo.width - logo_margin
		logo_layer.paste(logo, (logo_x, logo_margin), logo if logo.mode == 'RGBA' else None)
		txt_layer = Image.alpha_composite(logo_layer, txt_layer)

	result = Image.alpha_composite(image, txt_layer)
	return result.convert('RGB')
