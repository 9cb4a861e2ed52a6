from datetime import datetime

from pydantic import BaseModel, Field

from browser_pilot.llm.views import ChatInvokeUsage


class TokenUsageEntry(BaseModel):
	"""Single LLM call usage record"""

	model: str
	timestamp: datetime
	usage: ChatInvokeUsage


class ModelUsageStats(BaseModel):
	"""Usage statistics for a single model"""

	model: str
	prompt_tokens: int = 0
	completion_tokens: int = 0
	total_tokens: int = 0
	invocations: int = 0
	average_tokens_per_invocation: float = 0.0


class UsageSummary(BaseModel):
	"""Summary of token usage across every model the agent called"""

	total_prompt_tokens: int = 0
	total_prompt_cached_tokens: int = 0
	total_completion_tokens: int = 0
	total_tokens: int = 0
	entry_count: int = 0
	by_model: dict[str, ModelUsageStats] = Field(default_factory=dict)
