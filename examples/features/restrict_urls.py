import asyncio

from dotenv import load_dotenv

load_dotenv()

from browser_pilot import Agent, ChatOpenAI
from browser_pilot.browser import BrowserProfile, BrowserSession

llm = ChatOpenAI(model='gpt-4.1-mini')
task = 'Go to wikipedia.org, search for "Ada Lovelace", then try to open google.com. What happened?'

browser_session = BrowserSession(
	browser_profile=BrowserProfile(
		allowed_domains=['*.wikipedia.org'],
		keep_alive=True,
	),
)

agent = Agent(task=task, llm=llm, browser_session=browser_session)


async def main():
	await agent.run(max_steps=15)

	input('Press Enter to close the browser...')
	await browser_session.kill()


asyncio.run(main())
