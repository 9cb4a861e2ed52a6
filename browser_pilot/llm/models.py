"""
Convenient access to LLM models.

Usage:
    from browser_pilot import llm

    model = llm.openai_gpt_4o
    model = llm.deepseek_chat
"""

from typing import TYPE_CHECKING

from browser_pilot.config import CONFIG
from browser_pilot.llm.deepseek.chat import ChatDeepSeek
from browser_pilot.llm.openai.chat import ChatOpenAI

if TYPE_CHECKING:
	from browser_pilot.llm.base import BaseChatModel

AVAILABLE_PROVIDERS = ['openai', 'deepseek']


def get_llm_by_name(model_name: str) -> 'BaseChatModel':
	"""
	Factory function to create LLM instances from string names with API keys from environment.

	Args:
	    model_name: String name like 'openai_gpt_4o', 'openai_gpt_4_1_mini', 'deepseek_chat'

	Returns:
	    LLM instance with API keys from environment variables

	Raises:
	    ValueError: If model_name is not recognized
	"""
	if not model_name:
		raise ValueError('Model name cannot be empty')

	parts = model_name.split('_', 1)
	if len(parts) < 2:
		raise ValueError(f"Invalid model name format: '{model_name}'. Expected format: 'provider_model_name'")

	provider, model_part = parts

	# Convert underscores back to dots/dashes for actual model names
	if 'gpt_4_1' in model_part:
		model = model_part.replace('gpt_4_1', 'gpt-4.1').replace('_', '-')
	else:
		model = model_part.replace('_', '-')

	if provider == 'openai':
		return ChatOpenAI(model=model, api_key=CONFIG.OPENAI_API_KEY or None)
	elif provider == 'deepseek':
		return ChatDeepSeek(model=model, api_key=CONFIG.DEEPSEEK_API_KEY or None)

	raise ValueError(f"Unknown provider: '{provider}'. Available providers: {', '.join(AVAILABLE_PROVIDERS)}")


__all__ = ['ChatOpenAI', 'ChatDeepSeek', 'get_llm_by_name']
