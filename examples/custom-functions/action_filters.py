"""
Actions registered with domains=[...] are only offered to the model on matching pages.
"""

import asyncio

from dotenv import load_dotenv

load_dotenv()

from browser_pilot import Agent, ChatOpenAI, Controller
from browser_pilot.agent.views import ActionResult
from browser_pilot.browser import BrowserSession

controller = Controller()


@controller.action('Highlight every heading on the page', domains=['*.wikipedia.org'])
async def highlight_headings(browser_session: BrowserSession):
	cdp_session = await browser_session.get_or_create_cdp_session()
	result = await cdp_session.cdp_client.send.Runtime.evaluate(
		params={
			'expression': """(() => {
				const headings = document.querySelectorAll('h1, h2, h3');
				headings.forEach(h => { h.style.background = 'yellow'; });
				return headings.length;
			})()""",
			'returnByValue': True,
		},
		session_id=cdp_session.session_id,
	)
	count = result.get('result', {}).get('value', 0)
	return ActionResult(extracted_content=f'Highlighted {count} headings', include_in_memory=True)


@controller.action('Save a quote for later')
def save_quote(quote: str, source: str):
	with open('quotes.txt', 'a', encoding='utf-8') as f:
		f.write(f'{quote} ({source})\n')
	return f'Saved quote from {source}'


async def main():
	agent = Agent(
		task='Open en.wikipedia.org/wiki/Grace_Hopper, highlight the headings and save her most famous quote',
		llm=ChatOpenAI(model='gpt-4.1-mini'),
		controller=controller,
	)
	await agent.run(max_steps=10)


asyncio.run(main())
