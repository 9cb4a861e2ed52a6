"""
Agents driving a real headless browser with scripted model answers.
"""

import asyncio
import gc
import json

import pytest

from browser_pilot import Agent, BrowserProfile, BrowserSession
from tests.ci.conftest import create_mock_llm


def answer(actions: list[dict], next_goal: str) -> str:
	return json.dumps(
		{
			'thinking': next_goal,
			'evaluation_previous_goal': 'Starting task',
			'memory': next_goal,
			'next_goal': next_goal,
			'action': actions,
		}
	)


@pytest.fixture
def pages(httpserver):
	for name in ('page1', 'page2', 'tab1', 'tab2'):
		httpserver.expect_request(f'/{name}').respond_with_data(
			f'<html><head><title>{name}</title></head><body><h1>{name}</h1></body></html>',
			content_type='text/html',
		)
	return httpserver


@pytest.fixture
async def shared_session():
	session = BrowserSession(browser_profile=BrowserProfile(keep_alive=True, headless=True, user_data_dir=None))
	await session.start()
	yield session
	await session.kill()


class TestSequentialAgents:
	async def test_agents_share_a_kept_alive_session(self, shared_session, pages):
		agent1 = Agent(
			task='Navigate to page 1',
			llm=create_mock_llm([answer([{'go_to_url': {'url': pages.url_for('/page1')}}], 'Open page 1')]),
			browser_session=shared_session,
			enable_memory=False,
		)
		history1 = await agent1.run(max_steps=2)

		assert history1.history[-1].state.url == pages.url_for('/page1')
		assert history1.is_done() is True

		del agent1
		gc.collect()
		await asyncio.sleep(0.1)

		# the session outlives the first agent
		assert await shared_session.get_current_page_url() == pages.url_for('/page1')

		agent2 = Agent(
			task='Navigate to page 2',
			llm=create_mock_llm([answer([{'go_to_url': {'url': pages.url_for('/page2')}}], 'Open page 2')]),
			browser_session=shared_session,
			enable_memory=False,
		)
		history2 = await agent2.run(max_steps=2)

		assert history2.history[-1].state.url == pages.url_for('/page2')
		assert history2.history[-1].state.title == 'page2'
		assert await shared_session.get_current_page_url() == pages.url_for('/page2')

	async def test_tabs_carry_over_between_agents(self, shared_session, pages):
		agent1 = Agent(
			task='Open two tabs',
			llm=create_mock_llm(
				[
					answer(
						[
							{'go_to_url': {'url': pages.url_for('/tab1'), 'new_tab': False}},
							{'go_to_url': {'url': pages.url_for('/tab2'), 'new_tab': True}},
						],
						'Open tab 1 and tab 2',
					)
				]
			),
			browser_session=shared_session,
			enable_memory=False,
		)
		await agent1.run(max_steps=2)

		tabs = await shared_session.get_tabs()
		assert len(tabs) == 2
		assert '/tab2' in await shared_session.get_current_page_url()

		first_tab_id = tabs[0].target_id[-4:]
		agent2 = Agent(
			task='Go back to the first tab',
			llm=create_mock_llm([answer([{'switch_tab': {'tab_id': first_tab_id}}], 'Switch to tab 1')]),
			browser_session=shared_session,
			enable_memory=False,
		)
		history2 = await agent2.run(max_steps=2)

		assert f'Switched to Tab with ID {first_tab_id}' in history2.extracted_content()
		assert '/tab1' in await shared_session.get_current_page_url()


class TestUrlPreload:
	async def test_url_in_task_is_opened_before_the_first_step(self, shared_session, pages):
		llm = create_mock_llm()
		agent = Agent(
			task=f'Read the heading on {pages.url_for("/page1")} and report it',
			llm=llm,
			browser_session=shared_session,
			enable_memory=False,
		)

		history = await agent.run(max_steps=2)

		assert history.history[0].state.url == pages.url_for('/page1')
		assert history.is_successful() is True
		assert llm.ainvoke.call_count == 1
