import hashlib
import re
from dataclasses import asdict, dataclass, field
from typing import Any

# attributes shown to the model for every interactive element
DEFAULT_INCLUDE_ATTRIBUTES = [
	'title',
	'type',
	'checked',
	'name',
	'role',
	'value',
	'placeholder',
	'data-date-format',
	'alt',
	'aria-label',
	'aria-expanded',
	'data-state',
	'aria-checked',
]

# attributes that identify an element across reloads, used for hashing
_HASH_ATTRIBUTES = ('id', 'name', 'type', 'role', 'aria-label', 'placeholder', 'href')

_XPATH_INDEX_RE = re.compile(r'\[\d+\]')


@dataclass(slots=True)
class DOMRect:
	x: float
	y: float
	width: float
	height: float

	def to_dict(self) -> dict[str, Any]:
		return asdict(self)

	@property
	def center(self) -> tuple[float, float]:
		return self.x + self.width / 2, self.y + self.height / 2


@dataclass(slots=True)
class EnhancedDOMElement:
	"""An interactive element found on the page, addressed by its 1-based index."""

	element_index: int
	tag_name: str
	xpath: str
	attributes: dict[str, str] = field(default_factory=dict)
	text: str = ''
	bounds: DOMRect | None = None
	is_in_viewport: bool = True
	is_new: bool = False

	@property
	def element_hash(self) -> int:
		"""Stable identity of the element: xpath, tag and identifying attributes."""
		attributes_string = ''.join(f'{key}={self.attributes[key]}' for key in _HASH_ATTRIBUTES if key in self.attributes)
		combined_string = f'{self.tag_name}|{self.xpath}|{attributes_string}'
		return int(hashlib.sha256(combined_string.encode()).hexdigest()[:16], 16)

	def parent_branch_hash(self) -> int:
		"""Hash of the tag path from the root, ignoring sibling positions."""
		branch = _XPATH_INDEX_RE.sub('', self.xpath)
		return int(hashlib.sha256(branch.encode()).hexdigest()[:16], 16)

	def llm_representation(self, include_attributes: list[str] | None = None, max_text_length: int = 100) -> str:
		include_attributes = include_attributes if include_attributes is not None else DEFAULT_INCLUDE_ATTRIBUTES
		attrs = [
			f"{key}='{_cap(value, 40)}'"
			for key in include_attributes
			if (value := self.attributes.get(key)) is not None and value != '' and value != self.text
		]
		attrs_str = (' ' + ' '.join(attrs)) if attrs else ''
		text = _cap(' '.join(self.text.split()), max_text_length)
		marker = '*' if self.is_new else ''
		return f'{marker}[{self.element_index}]<{self.tag_name}{attrs_str}>{text} />'

	def __str__(self) -> str:
		return f'[<{self.tag_name}>:{self.element_index}]'

	def __json__(self) -> dict[str, Any]:
		return {
			'element_index': self.element_index,
			'tag_name': self.tag_name,
			'xpath': self.xpath,
			'attributes': self.attributes,
			'text': self.text,
			'bounds': self.bounds.to_dict() if self.bounds else None,
			'is_in_viewport': self.is_in_viewport,
		}


def _cap(text: str, max_length: int) -> str:
	return text if len(text) <= max_length else text[:max_length] + '...'


DOMSelectorMap = dict[int, EnhancedDOMElement]


@dataclass
class SerializedDOMState:
	selector_map: DOMSelectorMap = field(default_factory=dict)

	def llm_representation(self, include_attributes: list[str] | None = None) -> str:
		"""Render the interactive elements as one line each, in index order."""
		if not self.selector_map:
			return 'Empty DOM tree'
		include_attributes = include_attributes or DEFAULT_INCLUDE_ATTRIBUTES
		return '\n'.join(
			self.selector_map[index].llm_representation(include_attributes) for index in sorted(self.selector_map)
		)


@dataclass
class DOMInteractedElement:
	"""
	Snapshot of an element the agent acted on, kept in history so a replay can find it again.
	"""

	node_name: str
	attributes: dict[str, str] | None
	bounds: DOMRect | None
	x_path: str
	element_hash: int
	text: str = ''

	def to_dict(self) -> dict[str, Any]:
		return {
			'node_name': self.node_name,
			'attributes': self.attributes,
			'bounds': self.bounds.to_dict() if self.bounds else None,
			'x_path': self.x_path,
			'element_hash': self.element_hash,
			'text': self.text,
		}

	@classmethod
	def load_from_enhanced_dom_element(cls, element: EnhancedDOMElement) -> 'DOMInteractedElement':
		return cls(
			node_name=element.tag_name,
			attributes=element.attributes,
			bounds=element.bounds,
			x_path=element.xpath,
			element_hash=element.element_hash,
			text=element.text,
		)
