import asyncio

from dotenv import load_dotenv

load_dotenv()

from browser_pilot import Agent, ChatDeepSeek, ChatOpenAI
from browser_pilot.agent.memory import MemoryConfig

llm = ChatOpenAI(model='gpt-4.1-mini')

agent = Agent(
	task='Compare the prices of the three cheapest mechanical keyboards on amazon.com',
	llm=llm,
	# a cheaper model plans every 4 steps
	planner_llm=ChatDeepSeek(model='deepseek-chat'),
	planner_interval=4,
	use_vision_for_planner=False,
	memory_config=MemoryConfig(llm_instance=llm, memory_interval=8, keep_last_messages=2),
	generate_gif='keyboards.gif',
)


async def main():
	history = await agent.run(max_steps=40)
	print(history.final_result())
	print(f'Used {history.usage.total_tokens if history.usage else 0} tokens')


asyncio.run(main())
