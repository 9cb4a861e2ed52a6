"""
Token usage tracking for agent runs.

The agent reports the usage of each completion it receives (main model, planner,
memory summarizer, page extraction) and asks for a summary at the end of a run.
"""

import logging
from datetime import datetime

from browser_pilot.llm.views import ChatInvokeUsage
from browser_pilot.tokens.views import ModelUsageStats, TokenUsageEntry, UsageSummary

logger = logging.getLogger(__name__)


class TokenCost:
	"""Collects ChatInvokeUsage records per model"""

	def __init__(self):
		self.usage_history: list[TokenUsageEntry] = []

	def add_usage(self, model: str, usage: ChatInvokeUsage | None) -> TokenUsageEntry | None:
		if usage is None:
			return None
		entry = TokenUsageEntry(model=model, timestamp=datetime.now(), usage=usage)
		self.usage_history.append(entry)
		return entry

	def get_usage_tokens_for_model(self, model: str) -> ModelUsageStats:
		stats = ModelUsageStats(model=model)
		for entry in self.usage_history:
			if entry.model != model:
				continue
			stats.prompt_tokens += entry.usage.prompt_tokens
			stats.completion_tokens += entry.usage.completion_tokens
			stats.total_tokens += entry.usage.total_tokens
			stats.invocations += 1
		if stats.invocations:
			stats.average_tokens_per_invocation = stats.total_tokens / stats.invocations
		return stats

	def get_usage_summary(self, model: str | None = None) -> UsageSummary:
		entries = [e for e in self.usage_history if model is None or e.model == model]
		summary = UsageSummary(entry_count=len(entries))
		for entry in entries:
			summary.total_prompt_tokens += entry.usage.prompt_tokens
			summary.total_prompt_cached_tokens += entry.usage.prompt_cached_tokens or 0
			summary.total_completion_tokens += entry.usage.completion_tokens
			summary.total_tokens += entry.usage.total_tokens
			if entry.model not in summary.by_model:
				summary.by_model[entry.model] = self.get_usage_tokens_for_model(entry.model)
		return summary

	def log_usage_summary(self) -> None:
		summary = self.get_usage_summary()
		if summary.entry_count == 0:
			return

		logger.debug(
			f'💲 Total usage: {summary.total_tokens:,} tokens '
			f'(📥 {summary.total_prompt_tokens:,} prompt, 📤 {summary.total_completion_tokens:,} completion) '
			f'over {summary.entry_count} calls'
		)
		for model, stats in summary.by_model.items():
			logger.debug(
				f'  🤖 {model}: {stats.total_tokens:,} tokens in {stats.invocations} calls '
				f'(~{stats.average_tokens_per_invocation:,.0f}/call)'
			)
