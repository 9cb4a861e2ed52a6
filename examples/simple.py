from browser_pilot import Agent, ChatOpenAI

agent = Agent(
	task='Find the number of stars of the cdp-use repo on github.com',
	llm=ChatOpenAI(model='gpt-4.1-mini'),
)

agent.run_sync()
