import pytest
from pydantic import ValidationError

from browser_pilot.agent.memory import Memory, MemoryConfig
from browser_pilot.agent.message_manager.service import MessageManager
from browser_pilot.llm.messages import AssistantMessage, SystemMessage, UserMessage
from browser_pilot.tokens.service import TokenCost
from tests.ci.conftest import create_text_llm


def build_message_manager(conversation_turns: int) -> MessageManager:
	manager = MessageManager(task='Collect three prices', system_message=SystemMessage(content='system'))
	for turn in range(1, conversation_turns + 1):
		manager._add_message_with_type(UserMessage(content=f'state at step {turn}'), 'state')
		manager.state.history.remove_last_state_message()
		manager._add_message_with_type(AssistantMessage(content=f'{{"memory": "price {turn} found"}}'), 'model_output')
	return manager


def message_types(manager: MessageManager) -> list[str]:
	return [m.metadata.message_type for m in manager.state.history.messages]


class TestMemoryConfig:
	def test_defaults(self):
		config = MemoryConfig()

		assert config.memory_interval == 10
		assert config.keep_last_messages == 2
		assert config.llm_instance is None

	def test_interval_bounds(self):
		with pytest.raises(ValidationError):
			MemoryConfig(memory_interval=1)
		with pytest.raises(ValidationError):
			MemoryConfig(memory_interval=100)

	def test_assignment_is_validated(self):
		config = MemoryConfig()
		with pytest.raises(ValidationError):
			config.keep_last_messages = -1


class TestProceduralMemory:
	async def test_older_messages_are_summarized(self):
		manager = build_message_manager(4)
		llm = create_text_llm(['1. Found prices 1-3\n2. Next: compare them'])
		token_cost = TokenCost()
		memory = Memory(manager, llm, config=MemoryConfig(keep_last_messages=1), token_cost=token_cost)

		await memory.create_procedural_memory(current_step=5)

		assert message_types(manager) == ['init', 'init', 'memory', 'model_output']
		memory_text = manager.state.history.get_messages_of_type('memory')[0].text
		assert memory_text == '<procedural_memory>\n1. Found prices 1-3\n2. Next: compare them\n</procedural_memory>'
		assert manager.state.memory_summaries == 1
		assert token_cost.get_usage_summary().total_tokens == 15

	async def test_summary_prompt_contains_history(self):
		manager = build_message_manager(3)
		llm = create_text_llm(['summary'])
		memory = Memory(manager, llm, config=MemoryConfig(keep_last_messages=0))

		await memory.create_procedural_memory(current_step=4)

		sent_messages = llm.ainvoke.call_args.args[0]
		assert isinstance(sent_messages[0], SystemMessage)
		assert 'Agent history up to step 4' in sent_messages[1].text
		assert 'price 2 found' in sent_messages[1].text
		# the initial task is never summarized away
		assert 'Collect three prices' not in sent_messages[1].text

	async def test_existing_memory_is_not_resummarized(self):
		manager = build_message_manager(3)
		memory = Memory(manager, create_text_llm(['first', 'second']), config=MemoryConfig(keep_last_messages=0))

		await memory.create_procedural_memory(current_step=4)
		manager._add_message_with_type(AssistantMessage(content='{"memory": "price 4 found"}'), 'model_output')
		manager._add_message_with_type(AssistantMessage(content='{"memory": "price 5 found"}'), 'model_output')
		await memory.create_procedural_memory(current_step=6)

		assert message_types(manager) == ['init', 'init', 'memory', 'memory']
		assert manager.state.memory_summaries == 2

	async def test_too_few_messages(self):
		manager = build_message_manager(1)
		llm = create_text_llm(['never used'])
		memory = Memory(manager, llm, config=MemoryConfig(keep_last_messages=0))

		await memory.create_procedural_memory(current_step=2)

		llm.ainvoke.assert_not_called()
		assert 'memory' not in message_types(manager)

	async def test_llm_failure_keeps_history(self):
		manager = build_message_manager(4)
		memory = Memory(manager, create_text_llm([RuntimeError('provider down')]), config=MemoryConfig(keep_last_messages=0))

		await memory.create_procedural_memory(current_step=5)

		assert 'memory' not in message_types(manager)
		assert manager.state.memory_summaries == 0

	async def test_empty_summary_is_ignored(self):
		manager = build_message_manager(4)
		memory = Memory(manager, create_text_llm(['   ']), config=MemoryConfig(keep_last_messages=0))

		await memory.create_procedural_memory(current_step=5)

		assert 'memory' not in message_types(manager)

	async def test_config_llm_overrides_agent_llm(self):
		manager = build_message_manager(3)
		agent_llm = create_text_llm(['agent'])
		memory_llm = create_text_llm(['memory'])
		memory = Memory(manager, agent_llm, config=MemoryConfig(llm_instance=memory_llm, keep_last_messages=0))

		await memory.create_procedural_memory(current_step=4)

		memory_llm.ainvoke.assert_called_once()
		agent_llm.ainvoke.assert_not_called()

	async def test_secrets_masked_in_memory(self):
		manager = MessageManager(
			task='Log in',
			system_message=SystemMessage(content='system'),
			sensitive_data={'password': 'hunter2'},
		)
		for turn in range(3):
			manager._add_message_with_type(AssistantMessage(content=f'step {turn}'), 'model_output')
		memory = Memory(manager, create_text_llm(['typed hunter2 into the form']), config=MemoryConfig(keep_last_messages=0))

		await memory.create_procedural_memory(current_step=3)

		memory_text = manager.state.history.get_messages_of_type('memory')[0].text
		assert 'hunter2' not in memory_text
		assert '<secret>password</secret>' in memory_text


class TestTokenCost:
	def test_usage_summary_by_model(self):
		from browser_pilot.llm.views import ChatInvokeUsage

		token_cost = TokenCost()
		token_cost.add_usage('gpt-4.1-mini', ChatInvokeUsage(prompt_tokens=100, prompt_cached_tokens=20, completion_tokens=10, total_tokens=110))
		token_cost.add_usage('gpt-4.1-mini', ChatInvokeUsage(prompt_tokens=50, completion_tokens=10, total_tokens=60))
		token_cost.add_usage('deepseek-chat', ChatInvokeUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15))
		assert token_cost.add_usage('deepseek-chat', None) is None

		summary = token_cost.get_usage_summary()

		assert summary.entry_count == 3
		assert summary.total_tokens == 185
		assert summary.total_prompt_cached_tokens == 20
		assert summary.by_model['gpt-4.1-mini'].invocations == 2
		assert summary.by_model['gpt-4.1-mini'].average_tokens_per_invocation == 85
		assert token_cost.get_usage_summary(model='deepseek-chat').total_tokens == 15

	def test_empty_summary(self):
		token_cost = TokenCost()
		token_cost.log_usage_summary()

		assert token_cost.get_usage_summary().entry_count == 0
