"""
Chat message types shared by every provider.

The shapes follow the OpenAI chat completion message params so serializers stay thin.
"""

from typing import Literal

from pydantic import BaseModel

SupportedImageMediaType = Literal['image/jpeg', 'image/png', 'image/gif', 'image/webp']


def _truncate(text: str, max_length: int = 50) -> str:
	if len(text) <= max_length:
		return text
	return text[: max_length - 3] + '...'


def _format_image_url(url: str, max_length: int = 50) -> str:
	if url.startswith('data:'):
		media_type = url.split(';')[0].split(':')[1] if ';' in url else 'image'
		return f'<base64 {media_type}>'
	return _truncate(url, max_length)


class ContentPartTextParam(BaseModel):
	text: str
	type: Literal['text'] = 'text'

	def __str__(self) -> str:
		return f'Text: {_truncate(self.text)}'

	def __repr__(self) -> str:
		return f'ContentPartTextParam(text={_truncate(self.text)})'


class ContentPartRefusalParam(BaseModel):
	refusal: str
	type: Literal['refusal'] = 'refusal'

	def __str__(self) -> str:
		return f'Refusal: {_truncate(self.refusal)}'


class ImageURL(BaseModel):
	url: str
	"""Either a URL of the image or the base64 encoded image data."""
	detail: Literal['auto', 'low', 'high'] = 'auto'
	"""Specifies the detail level of the image."""
	media_type: SupportedImageMediaType = 'image/png'

	def __str__(self) -> str:
		return f'🖼️  Image[{self.media_type}, detail={self.detail}]: {_format_image_url(self.url)}'


class ContentPartImageParam(BaseModel):
	image_url: ImageURL
	type: Literal['image_url'] = 'image_url'

	def __str__(self) -> str:
		return str(self.image_url)


class Function(BaseModel):
	arguments: str
	name: str


class ToolCall(BaseModel):
	id: str
	function: Function
	type: Literal['function'] = 'function'


class _MessageBase(BaseModel):
	"""Base class for all message types"""

	role: Literal['user', 'system', 'assistant']


class UserMessage(_MessageBase):
	role: Literal['user'] = 'user'
	content: str | list[ContentPartTextParam | ContentPartImageParam]
	name: str | None = None

	@property
	def text(self) -> str:
		"""Text content of the message, image parts are skipped"""
		if isinstance(self.content, str):
			return self.content
		return '\n'.join(part.text for part in self.content if part.type == 'text')

	def __str__(self) -> str:
		return f'UserMessage(content={self.text})'


class SystemMessage(_MessageBase):
	role: Literal['system'] = 'system'
	content: str | list[ContentPartTextParam]
	name: str | None = None

	@property
	def text(self) -> str:
		if isinstance(self.content, str):
			return self.content
		return '\n'.join(part.text for part in self.content if part.type == 'text')

	def __str__(self) -> str:
		return f'SystemMessage(content={self.text})'


class AssistantMessage(_MessageBase):
	role: Literal['assistant'] = 'assistant'
	content: str | list[ContentPartTextParam | ContentPartRefusalParam] | None = None
	name: str | None = None
	refusal: str | None = None
	tool_calls: list[ToolCall] = []

	@property
	def text(self) -> str:
		if isinstance(self.content, str):
			return self.content
		if isinstance(self.content, list):
			text = ''
			for part in self.content:
				if part.type == 'text':
					text += part.text
				elif part.type == 'refusal':
					text += f'[Refusal] {part.refusal}'
			return text
		return ''

	def __str__(self) -> str:
		return f'AssistantMessage(content={self.text})'


BaseMessage = UserMessage | SystemMessage | AssistantMessage
