"""
Agent loop tests against FakeBrowserSession and scripted models, no real browser involved.
"""

import asyncio
import json
from pathlib import Path

import pytest
from pydantic import BaseModel

from browser_pilot import Agent
from browser_pilot.agent.memory import MemoryConfig
from browser_pilot.agent.views import ActionResult, AgentHistoryList
from browser_pilot.controller.service import Controller
from browser_pilot.llm.exceptions import ModelRateLimitError
from tests.ci.conftest import FakeBrowserSession, create_mock_llm, create_text_llm, make_element, make_state


def agent_json(actions: list[dict], next_goal: str = 'Keep going') -> str:
	return json.dumps(
		{
			'thinking': None,
			'evaluation_previous_goal': 'Unknown',
			'memory': f'Working towards: {next_goal}',
			'next_goal': next_goal,
			'action': actions,
		}
	)


def note_action(text: str) -> dict:
	return {'note': {'text': text}}


def done_action(text: str = 'All done', success: bool = True) -> dict:
	return {'done': {'text': text, 'success': success}}


@pytest.fixture
def notes() -> list[str]:
	return []


@pytest.fixture
def controller(notes) -> Controller:
	controller = Controller()

	@controller.registry.action('Write down a short note')
	async def note(text: str):
		notes.append(text)
		return ActionResult(extracted_content=f'Noted: {text}', include_in_memory=True)

	return controller


def make_agent(llm, controller, browser_session=None, **kwargs) -> Agent:
	return Agent(
		task=kwargs.pop('task', 'Take notes about the page'),
		llm=llm,
		controller=controller,
		browser_session=browser_session or FakeBrowserSession(),
		enable_memory=kwargs.pop('enable_memory', False),
		**kwargs,
	)


class TestAgentRun:
	async def test_done_on_first_step(self, mock_llm, controller, fake_browser_session):
		agent = make_agent(mock_llm, controller, fake_browser_session)

		history = await agent.run(max_steps=5)

		assert history.is_done() is True
		assert history.is_successful() is True
		assert history.final_result() == 'Task completed successfully'
		assert len(history) == 1
		assert mock_llm.ainvoke.call_count == 1
		assert fake_browser_session.started is True
		# no keep_alive, the browser goes away with the agent
		assert fake_browser_session.killed is True

	async def test_history_records_state_and_screenshot(self, mock_llm, controller):
		session = FakeBrowserSession(states=[make_state(url='https://shop.test/', title='Shop')])
		agent = make_agent(mock_llm, controller, session)

		history = await agent.run(max_steps=3)

		item = history.history[0]
		assert item.state.url == 'https://shop.test/'
		assert item.state.title == 'Shop'
		assert item.metadata is not None
		assert item.metadata.step_number == 0
		assert item.state.screenshot_path is not None
		assert Path(item.state.screenshot_path).name == 'step_0.png'
		assert Path(item.state.screenshot_path).exists()
		assert history.usage is not None

	async def test_actions_run_in_order(self, controller, notes):
		llm = create_mock_llm([agent_json([note_action('first')]), agent_json([note_action('second')])])
		agent = make_agent(llm, controller)

		history = await agent.run(max_steps=5)

		assert notes == ['first', 'second']
		assert history.action_names() == ['note', 'note', 'done']
		assert history.extracted_content()[:2] == ['Noted: first', 'Noted: second']
		assert history.is_successful() is True

	async def test_multiple_actions_in_one_step(self, controller, notes):
		llm = create_mock_llm([agent_json([note_action('a'), note_action('b'), note_action('c')])])
		agent = make_agent(llm, controller)

		history = await agent.run(max_steps=3)

		assert notes == ['a', 'b', 'c']
		assert len(history.history[0].result) == 3

	async def test_max_actions_per_step(self, controller, notes):
		llm = create_mock_llm([agent_json([note_action('a'), note_action('b'), note_action('c')])])
		agent = make_agent(llm, controller, max_actions_per_step=2)

		await agent.run(max_steps=3)

		assert notes == ['a', 'b']

	async def test_done_must_be_alone(self, controller, notes):
		llm = create_mock_llm([agent_json([note_action('a'), done_action()])])
		agent = make_agent(llm, controller)

		history = await agent.run(max_steps=3)

		assert notes == ['a']
		assert len(history.history[0].result) == 1
		assert history.history[0].result[0].is_done is False

	async def test_empty_action_is_retried(self, controller):
		llm = create_mock_llm([agent_json([])])
		agent = make_agent(llm, controller)

		history = await agent.run(max_steps=3)

		assert llm.ainvoke.call_count == 2
		retry_messages = llm.ainvoke.call_args_list[1].args[0]
		assert 'You forgot to return an action' in retry_messages[-1].text
		assert history.is_done() is True

	async def test_empty_action_twice_becomes_failed_done(self, controller):
		llm = create_mock_llm([agent_json([]), agent_json([])])
		agent = make_agent(llm, controller)

		history = await agent.run(max_steps=3)

		assert llm.ainvoke.call_count == 2
		assert len(history) == 1
		result = history.history[0].result[0]
		assert result.error is None
		assert result.is_done is True
		assert result.success is False
		assert result.extracted_content == 'No next action returned by LLM!'
		assert history.history[0].model_output.action[0].model_dump(exclude_unset=True) == {
			'done': {'success': False, 'text': 'No next action returned by LLM!'}
		}
		assert agent.state.consecutive_failures == 0

	async def test_unknown_element_index_is_an_action_error(self, controller):
		session = FakeBrowserSession(states=[make_state(elements=[make_element(1, 'a', text='Home')])])
		llm = create_mock_llm([agent_json([{'click_element_by_index': {'index': 42}}])])
		agent = make_agent(llm, controller, session)

		history = await agent.run(max_steps=3)

		assert 'Element index 42 not found' in history.errors()[0]
		assert history.is_done() is True


class TestStepLimits:
	async def test_max_steps_reached(self, controller, notes):
		llm = create_mock_llm([agent_json([note_action(str(i))]) for i in range(5)])
		agent = make_agent(llm, controller)

		history = await agent.run(max_steps=2)

		# the last step only offers "done", a note answer fails validation
		assert notes == ['0']
		assert history.is_done() is False
		assert len(history) == 3
		assert history.history[1].model_output is None
		assert history.history[1].result[0].error is not None
		assert history.history[-1].result[0].error == 'Failed to complete task in maximum steps'

	async def test_last_step_asks_for_done(self, controller):
		llm = create_mock_llm([agent_json([note_action('0')])])
		agent = make_agent(llm, controller)

		await agent.run(max_steps=2)

		last_step_messages = llm.ainvoke.call_args_list[1].args[0]
		assert any('Now comes your last step' in message.text for message in last_step_messages)

	async def test_consecutive_failures_stop_the_run(self, controller):
		llm = create_mock_llm(['this is not json'] * 10)
		agent = make_agent(llm, controller, max_failures=2)

		history = await agent.run(max_steps=10)

		assert llm.ainvoke.call_count == 2
		assert agent.state.consecutive_failures == 2
		assert len(history) == 2
		assert all(item.result[0].error for item in history.history)
		assert history.is_done() is False

	async def test_success_resets_failure_counter(self, controller):
		llm = create_mock_llm(['this is not json', agent_json([note_action('recovered')]), 'still not json'])
		agent = make_agent(llm, controller, max_failures=2)

		history = await agent.run(max_steps=10)

		assert history.is_done() is True
		assert agent.state.consecutive_failures == 0



	async def test_rate_limit_waits_and_counts_as_failure(self, controller, monkeypatch):
		waits: list[float] = []
		real_sleep = asyncio.sleep

		async def recording_sleep(delay, *args, **kwargs):
			if delay == 7:
				waits.append(delay)
				delay = 0
			return await real_sleep(delay, *args, **kwargs)

		monkeypatch.setattr(asyncio, 'sleep', recording_sleep)
		llm = create_text_llm([ModelRateLimitError('Rate limit reached for gpt-4.1-mini')] * 5)
		agent = make_agent(llm, controller, max_failures=2, retry_delay=7)

		history = await agent.run(max_steps=10)

		assert waits == [7, 7]
		assert llm.ainvoke.call_count == 2
		assert agent.state.consecutive_failures == 2
		assert history.errors() == ['Rate limit reached. Waiting before retry.'] * 2
		assert history.is_done() is False

	async def test_rate_limit_then_recovery(self, controller, monkeypatch):
		real_sleep = asyncio.sleep

		async def no_wait(delay, *args, **kwargs):
			return await real_sleep(0 if delay == 7 else delay, *args, **kwargs)

		monkeypatch.setattr(asyncio, 'sleep', no_wait)
		llm = create_mock_llm()
		done_answer = llm.ainvoke.side_effect
		calls = 0

		async def rate_limited_once(*args, **kwargs):
			nonlocal calls
			calls += 1
			if calls == 1:
				raise ModelRateLimitError('Rate limit reached for gpt-4.1-mini')
			return await done_answer(*args, **kwargs)

		llm.ainvoke.side_effect = rate_limited_once
		agent = make_agent(llm, controller, max_failures=2, retry_delay=7)

		history = await agent.run(max_steps=5)

		assert history.errors() == ['Rate limit reached. Waiting before retry.', None]
		assert history.is_successful() is True
		assert agent.state.consecutive_failures == 0

	async def test_step_timeout_is_recorded_in_history(self, controller):
		llm = create_mock_llm()
		done_answer = llm.ainvoke.side_effect
		calls = 0

		async def slow_first_answer(*args, **kwargs):
			nonlocal calls
			calls += 1
			if calls == 1:
				await asyncio.sleep(5)
			return await done_answer(*args, **kwargs)

		llm.ainvoke.side_effect = slow_first_answer
		agent = make_agent(llm, controller, step_timeout=1, llm_timeout=30)

		history = await agent.run(max_steps=3)

		assert len(history) == 2
		timed_out = history.history[0]
		assert timed_out.model_output is None
		assert timed_out.result[0].error == 'Step 1 timed out after 1 seconds'
		assert timed_out.metadata is not None
		assert timed_out.metadata.step_number == 1
		assert history.history[1].metadata.step_number == 2
		assert history.errors() == ['Step 1 timed out after 1 seconds', None]
		assert history.is_done() is True

		# the next step tells the model what went wrong
		next_state_message = llm.ainvoke.call_args_list[1].args[0][-1].text
		assert 'Step 1 timed out after 1 seconds' in next_state_message
		assert 'right format' not in next_state_message

	async def test_llm_timeout_is_a_step_error(self, controller):
		llm = create_mock_llm()
		done_answer = llm.ainvoke.side_effect
		calls = 0

		async def slow_first_answer(*args, **kwargs):
			nonlocal calls
			calls += 1
			if calls == 1:
				await asyncio.sleep(5)
			return await done_answer(*args, **kwargs)

		llm.ainvoke.side_effect = slow_first_answer
		agent = make_agent(llm, controller, llm_timeout=1)

		history = await agent.run(max_steps=3)

		assert len(history) == 2
		assert 'LLM call timed out after 1 seconds' in history.errors()[0]
		assert history.history[0].state.url == 'https://example.com/'
		assert history.is_done() is True


class TestPlannerAndMemory:
	async def test_planner_runs_every_step(self, controller):
		planner_llm = create_text_llm(['{"next_steps": "take a note"}', '{"next_steps": "finish"}'])
		llm = create_mock_llm([agent_json([note_action('x')])])
		agent = make_agent(llm, controller, planner_llm=planner_llm, planner_interval=1)

		await agent.run(max_steps=5)

		assert planner_llm.ainvoke.call_count == 2
		assert agent.state.last_plan == '{"next_steps": "finish"}'
		planner_messages = planner_llm.ainvoke.call_args_list[0].args[0]
		assert '"next_steps"' in planner_messages[0].text

	async def test_planner_interval(self, controller):
		planner_llm = create_text_llm(['plan'])
		llm = create_mock_llm([agent_json([note_action(str(i))]) for i in range(3)])
		agent = make_agent(llm, controller, planner_llm=planner_llm, planner_interval=2)

		await agent.run(max_steps=10)

		# four steps, the planner runs when n_steps is 2 and 4
		assert planner_llm.ainvoke.call_count == 2

	async def test_planner_failure_does_not_break_the_step(self, controller):
		planner_llm = create_text_llm([RuntimeError('planner offline')])
		agent = make_agent(create_mock_llm(), controller, planner_llm=planner_llm)

		history = await agent.run(max_steps=3)

		assert history.is_successful() is True
		assert agent.state.last_plan is None

	async def test_reasoning_planner_think_tags_are_removed(self, controller):
		planner_llm = create_text_llm(['<think>private reasoning</think>{"next_steps": "go"}'])
		agent = make_agent(create_mock_llm(), controller, planner_llm=planner_llm, is_planner_reasoning=True)

		await agent.run(max_steps=3)

		assert agent.state.last_plan == '{"next_steps": "go"}'

	async def test_procedural_memory_interval(self, controller):
		memory_llm = create_text_llm(['1. Took notes a and b'])
		llm = create_mock_llm([agent_json([note_action('a')]), agent_json([note_action('b')])])
		agent = make_agent(
			llm,
			controller,
			enable_memory=True,
			memory_config=MemoryConfig(llm_instance=memory_llm, memory_interval=2, keep_last_messages=0),
		)

		await agent.run(max_steps=5)

		memory_llm.ainvoke.assert_called_once()
		assert agent.message_manager.state.memory_summaries == 1
		memory_messages = agent.message_manager.state.history.get_messages_of_type('memory')
		assert memory_messages[0].text.startswith('<procedural_memory>')

	async def test_memory_interval_argument_overrides_config(self, controller):
		agent = make_agent(create_mock_llm(), controller, enable_memory=True, memory_interval=4)

		assert agent.memory is not None
		assert agent.memory_config.memory_interval == 4
		assert agent.memory_config.llm_instance is agent.llm

	async def test_memory_disabled(self, controller):
		agent = make_agent(create_mock_llm(), controller, enable_memory=False)

		assert agent.memory is None


class TestCallbacksAndControl:
	async def test_step_and_done_callbacks(self, controller):
		seen_steps = []
		done_histories = []

		def on_new_step(browser_state_summary, model_output, step_number):
			seen_steps.append((browser_state_summary.url, model_output.action[0].action_name(), step_number))

		async def on_done(history):
			done_histories.append(history)

		llm = create_mock_llm([agent_json([note_action('x')])])
		agent = make_agent(llm, controller, register_new_step_callback=on_new_step, register_done_callback=on_done)

		history = await agent.run(max_steps=5)

		assert seen_steps == [('https://example.com/', 'note', 0), ('https://example.com/', 'done', 1)]
		assert done_histories == [history]

	async def test_step_hooks(self, controller):
		started, ended = [], []

		async def on_step_start(agent):
			started.append(agent.state.n_steps)

		async def on_step_end(agent):
			ended.append(agent.state.n_steps)

		llm = create_mock_llm([agent_json([note_action('x')])])
		agent = make_agent(llm, controller)

		await agent.run(max_steps=5, on_step_start=on_step_start, on_step_end=on_step_end)

		assert started == [0, 1]
		assert ended == [1, 2]

	async def test_stop_from_hook(self, controller):
		llm = create_mock_llm([agent_json([note_action(str(i))]) for i in range(10)])
		agent = make_agent(llm, controller)

		async def stop_after_first_step(agent):
			agent.stop()

		history = await agent.run(max_steps=10, on_step_end=stop_after_first_step)

		assert len(history) == 1
		assert agent.state.stopped is True
		assert history.is_done() is False

	async def test_external_status_interrupts_step(self, controller):
		async def should_stop():
			return True

		llm = create_mock_llm()
		agent = make_agent(llm, controller, register_external_agent_status_raise_error_callback=should_stop, max_failures=1)

		history = await agent.run(max_steps=3)

		llm.ainvoke.assert_not_called()
		# interrupted before a state was captured, nothing is recorded
		assert len(history) == 0
		assert agent.state.last_result[0].error == 'The agent was interrupted mid-step'

	async def test_keep_alive_session_survives(self, mock_llm, controller):
		session = FakeBrowserSession(keep_alive=True)
		agent = make_agent(mock_llm, controller, session)

		await agent.run(max_steps=3)

		assert session.killed is False

	async def test_pause_and_resume(self, mock_llm, controller):
		agent = make_agent(mock_llm, controller)

		agent.pause()
		assert agent.state.paused is True
		assert not agent._external_pause_event.is_set()

		agent.resume()
		assert agent.state.paused is False
		assert agent._external_pause_event.is_set()

	async def test_follow_up_task(self, controller):
		session = FakeBrowserSession(keep_alive=True)
		llm = create_mock_llm()
		agent = make_agent(llm, controller, session)

		await agent.run(max_steps=3)
		agent.add_new_task('Now count the notes')
		history = await agent.run(max_steps=3)

		assert agent.task == 'Now count the notes'
		assert len(history) == 2
		assert 'User updated <user_request> to: Now count the notes' in agent.message_manager.agent_history_description
		assert llm.ainvoke.call_count == 2


class TestInitialActionsAndPreload:
	async def test_initial_actions_run_before_first_step(self, controller, notes):
		agent = make_agent(create_mock_llm(), controller, initial_actions=[note_action('warm up')])

		await agent.run(max_steps=3)

		assert notes == ['warm up']

	def test_initial_actions_are_validated(self, controller):
		agent = make_agent(create_mock_llm(), controller, initial_actions=[note_action('x')])

		assert agent.initial_actions is not None
		assert agent.initial_actions[0].model_dump(exclude_unset=True) == {'note': {'text': 'x'}}

	def test_extract_url_from_task(self, mock_llm, controller):
		agent = make_agent(mock_llm, controller)

		assert agent._extract_url_from_task('Open https://example.com/docs and read it') == 'https://example.com/docs'
		assert agent._extract_url_from_task('Go to example.com.') == 'https://example.com'
		assert agent._extract_url_from_task('Check www.python.org/downloads for news') == 'https://www.python.org/downloads'
		assert agent._extract_url_from_task('Compare example.com with example.org') is None
		assert agent._extract_url_from_task('Write to jane@example.com') is None
		assert agent._extract_url_from_task('Say hello') is None
		# the same address twice is still one URL
		assert agent._extract_url_from_task('Open https://example.com, then reload https://example.com') == 'https://example.com'


class TestAgentSetup:
	def test_browser_and_browser_session_are_exclusive(self, mock_llm, controller):
		with pytest.raises(ValueError, match='Cannot specify both'):
			Agent(task='t', llm=mock_llm, controller=controller, browser=FakeBrowserSession(), browser_session=FakeBrowserSession())

	def test_invalid_llm(self, controller):
		with pytest.raises(ValueError, match='invalid llm'):
			Agent(task='t', llm=object(), controller=controller, browser_session=FakeBrowserSession())

	def test_page_extraction_llm_defaults_to_main_llm(self, mock_llm, controller):
		agent = make_agent(mock_llm, controller)

		assert agent.settings.page_extraction_llm is mock_llm

	def test_deepseek_disables_vision(self, controller):
		llm = create_mock_llm()
		llm.model = 'deepseek-chat'
		agent = make_agent(llm, controller)

		assert agent.settings.use_vision is False

	def test_system_prompt_lists_custom_actions(self, mock_llm, controller):
		agent = make_agent(mock_llm, controller, extend_system_message='Be terse.')

		system_text = agent.message_manager.get_messages()[0].text
		assert 'Write down a short note' in system_text
		assert system_text.endswith('Be terse.')


class TestStructuredOutput:
	async def test_output_model_schema(self, controller):
		class Answer(BaseModel):
			title: str
			count: int

		llm = create_mock_llm([agent_json([{'done': {'success': True, 'data': {'title': 'Mugs', 'count': 3}}}])])
		agent = make_agent(llm, controller, output_model_schema=Answer)

		history = await agent.run(max_steps=3)

		assert history.is_successful() is True
		assert json.loads(history.final_result()) == {'title': 'Mugs', 'count': 3}
		assert history.structured_output == Answer(title='Mugs', count=3)


class TestConversationAndHistoryFiles:
	async def test_save_conversation_path(self, controller, tmp_path):
		llm = create_mock_llm([agent_json([note_action('x')])])
		agent = make_agent(llm, controller, save_conversation_path=tmp_path / 'conversations')

		await agent.run(max_steps=5)

		saved = sorted(p.name for p in (tmp_path / 'conversations').iterdir())
		assert saved == [f'conversation_{agent.id}_0.txt', f'conversation_{agent.id}_1.txt']
		first = (tmp_path / 'conversations' / f'conversation_{agent.id}_0.txt').read_text()
		assert ' RESPONSE' in first
		assert '"note"' in first

	async def test_save_history_masks_secrets(self, controller, tmp_path):
		llm = create_mock_llm([agent_json([note_action('the password is hunter2')])])
		agent = make_agent(llm, controller, sensitive_data={'password': 'hunter2'})

		await agent.run(max_steps=5)
		agent.save_history(tmp_path / 'history.json')

		saved = (tmp_path / 'history.json').read_text()
		assert 'hunter2' not in saved
		assert '<secret>password</secret>' in saved

	async def test_rerun_history(self, controller, notes, tmp_path):
		llm = create_mock_llm([agent_json([note_action('one')]), agent_json([note_action('two')])])
		agent = make_agent(llm, controller)
		history = await agent.run(max_steps=5)
		history.save_to_file(tmp_path / 'history.json')
		notes.clear()

		replay_agent = make_agent(create_mock_llm(), controller)
		results = await replay_agent.load_and_rerun(tmp_path / 'history.json', delay_between_actions=0)

		assert notes == ['one', 'two']
		assert [r.extracted_content for r in results] == ['Noted: one', 'Noted: two', 'Task completed successfully']
		assert results[-1].is_done is True

	async def test_rerun_skips_steps_without_actions(self, controller):
		llm = create_mock_llm(['this is not json'])
		agent = make_agent(llm, controller)
		history = await agent.run(max_steps=3)

		replay_agent = make_agent(create_mock_llm(), controller)
		results = await replay_agent.rerun_history(AgentHistoryList(history=history.history[:1]), delay_between_actions=0)

		assert results[0].error == 'No action to replay'
