from pydantic import BaseModel, ConfigDict, Field

from browser_pilot.llm.base import BaseChatModel


class MemoryConfig(BaseModel):
	"""Configuration for procedural memory."""

	model_config = ConfigDict(
		from_attributes=True, validate_default=True, revalidate_instances='always', validate_assignment=True
	)

	# Memory settings
	agent_id: str = Field(default='browser_pilot_agent', min_length=1)
	memory_interval: int = Field(default=10, gt=1, lt=100)

	# LLM settings, None falls back to the agent's llm
	llm_instance: BaseChatModel | None = None

	# messages that stay verbatim after each summary
	keep_last_messages: int = Field(default=2, ge=0)
