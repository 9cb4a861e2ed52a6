import asyncio

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

from browser_pilot import Agent, ChatOpenAI


class Post(BaseModel):
	post_title: str
	post_url: str
	num_comments: int


class Posts(BaseModel):
	posts: list[Post]


agent = Agent(
	task='Go to news.ycombinator.com/show and list the first 5 posts',
	llm=ChatOpenAI(model='gpt-4.1-mini'),
	output_model_schema=Posts,
)


async def main():
	history = await agent.run(max_steps=10)

	parsed = history.structured_output
	if parsed is None:
		print('No structured result')
		return

	for post in parsed.posts:
		print(f'{post.post_title} ({post.num_comments} comments): {post.post_url}')


asyncio.run(main())
