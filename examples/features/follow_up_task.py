import asyncio

from dotenv import load_dotenv

load_dotenv()

from browser_pilot import Agent, ChatOpenAI
from browser_pilot.browser import BrowserProfile, BrowserSession

browser_session = BrowserSession(browser_profile=BrowserProfile(keep_alive=True))

agent = Agent(
	task='Go to news.ycombinator.com and find the title of the top story',
	llm=ChatOpenAI(model='gpt-4.1-mini'),
	browser_session=browser_session,
)


async def main():
	await agent.run()

	agent.add_new_task('Open the comments of that story and summarize the top comment')
	history = await agent.run()
	print(history.final_result())

	await browser_session.kill()


asyncio.run(main())
