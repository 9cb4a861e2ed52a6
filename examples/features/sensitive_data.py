"""
Credentials are shown to the model only as <secret>name</secret> placeholders,
the real values are filled in when the action runs.
"""

import asyncio

from dotenv import load_dotenv

load_dotenv()

from browser_pilot import Agent, ChatOpenAI
from browser_pilot.browser import BrowserProfile

sensitive_data = {
	'https://*.saucedemo.com': {
		'username': 'standard_user',
		'password': 'secret_sauce',
	},
}

agent = Agent(
	task='Log in to https://www.saucedemo.com with username and password, then tell me the first product name',
	llm=ChatOpenAI(model='gpt-4.1-mini'),
	sensitive_data=sensitive_data,
	browser_profile=BrowserProfile(allowed_domains=['https://*.saucedemo.com']),
)


async def main():
	history = await agent.run(max_steps=10)
	# secrets are masked again before they hit the disk
	agent.save_history('saucedemo_history.json')
	print(history.final_result())


asyncio.run(main())
