"""
Chat model wrappers against a local OpenAI-compatible endpoint served by pytest-httpserver.
"""

import json

import pytest
from pydantic import BaseModel, Field

from browser_pilot.llm import ChatDeepSeek, ChatOpenAI
from browser_pilot.llm.deepseek.serializer import DeepSeekMessageSerializer
from browser_pilot.llm.exceptions import ModelProviderError, ModelRateLimitError
from browser_pilot.llm.messages import (
	AssistantMessage,
	ContentPartImageParam,
	ContentPartTextParam,
	Function,
	ImageURL,
	SystemMessage,
	ToolCall,
	UserMessage,
)
from browser_pilot.llm.models import get_llm_by_name
from browser_pilot.llm.openai.serializer import OpenAIMessageSerializer
from browser_pilot.llm.schema import SchemaOptimizer


class Price(BaseModel):
	amount: float = Field(description='Price in the page currency')
	currency: str = 'EUR'


class Product(BaseModel):
	name: str
	price: Price = Field(description='Current price')


def chat_completion(content: str | None = None, tool_arguments: str | None = None) -> dict:
	message: dict = {'role': 'assistant', 'content': content}
	if tool_arguments is not None:
		message['tool_calls'] = [
			{'id': 'call_1', 'type': 'function', 'function': {'name': 'Product', 'arguments': tool_arguments}}
		]
	return {
		'id': 'chatcmpl-1',
		'object': 'chat.completion',
		'created': 1700000000,
		'model': 'test-model',
		'choices': [{'index': 0, 'message': message, 'finish_reason': 'stop', 'logprobs': None}],
		'usage': {'prompt_tokens': 12, 'completion_tokens': 3, 'total_tokens': 15},
	}


MESSAGES = [
	SystemMessage(content='You read shop pages.'),
	UserMessage(
		content=[
			ContentPartTextParam(text='What does the blue mug cost?'),
			ContentPartImageParam(image_url=ImageURL(url='data:image/png;base64,AAAA', detail='low')),
		]
	),
]


class TestSerializers:
	def test_openai_keeps_images(self):
		serialized = OpenAIMessageSerializer.serialize_messages(MESSAGES)

		assert serialized[0] == {'role': 'system', 'content': 'You read shop pages.'}
		user_content = serialized[1]['content']
		assert user_content[0] == {'text': 'What does the blue mug cost?', 'type': 'text'}
		assert user_content[1]['image_url'] == {'url': 'data:image/png;base64,AAAA', 'detail': 'low'}

	def test_openai_tool_calls(self):
		message = AssistantMessage(
			content=None,
			tool_calls=[ToolCall(id='call_1', function=Function(name='done', arguments='{"text": "ok"}'))],
		)

		serialized = OpenAIMessageSerializer.serialize(message)

		assert serialized['role'] == 'assistant'
		assert 'content' not in serialized
		assert serialized['tool_calls'][0]['function'] == {'name': 'done', 'arguments': '{"text": "ok"}'}

	def test_deepseek_drops_images(self):
		serialized = DeepSeekMessageSerializer.serialize_messages(MESSAGES)

		assert serialized[1] == {'role': 'user', 'content': 'What does the blue mug cost?'}
		assert DeepSeekMessageSerializer.serialize(AssistantMessage(content=None)) == {'role': 'assistant', 'content': ''}


class TestSchemaOptimizer:
	def test_refs_are_flattened(self):
		schema = SchemaOptimizer.create_optimized_json_schema(Product)

		assert '$defs' not in json.dumps(schema)
		assert '$ref' not in json.dumps(schema)
		price = schema['properties']['price']
		assert price['description'] == 'Current price'
		assert price['properties']['amount']['description'] == 'Price in the page currency'

	def test_objects_are_strict(self):
		schema = SchemaOptimizer.create_optimized_json_schema(Product)

		assert schema['additionalProperties'] is False
		assert schema['required'] == ['name', 'price']
		# defaults are dropped, every property becomes required
		assert schema['properties']['price']['required'] == ['amount', 'currency']
		assert 'default' not in schema['properties']['price']['properties']['currency']


class TestModelFactory:
	def test_openai_names(self, monkeypatch):
		monkeypatch.setenv('OPENAI_API_KEY', 'sk-test')

		model = get_llm_by_name('openai_gpt_4_1_mini')

		assert isinstance(model, ChatOpenAI)
		assert model.model == 'gpt-4.1-mini'
		assert model.api_key == 'sk-test'

	def test_deepseek_names(self):
		model = get_llm_by_name('deepseek_chat')

		assert isinstance(model, ChatDeepSeek)
		assert model.model == 'deepseek-chat'

	@pytest.mark.parametrize('name', ['', 'gpt4', 'anthropic_claude'])
	def test_invalid_names(self, name):
		with pytest.raises(ValueError):
			get_llm_by_name(name)


class TestChatOpenAI:
	async def test_text_completion(self, httpserver):
		httpserver.expect_request('/v1/chat/completions', method='POST').respond_with_json(chat_completion('12 EUR'))
		llm = ChatOpenAI(model='gpt-4.1-mini', api_key='sk-test', base_url=httpserver.url_for('/v1'), max_retries=0)

		response = await llm.ainvoke(MESSAGES)

		assert response.completion == '12 EUR'
		assert response.usage is not None
		assert response.usage.total_tokens == 15
		sent = httpserver.log[0][0].get_json()
		assert sent['model'] == 'gpt-4.1-mini'
		assert sent['temperature'] == 0.2
		assert 'response_format' not in sent

	async def test_structured_completion(self, httpserver):
		answer = {'name': 'Blue mug', 'price': {'amount': 12.0, 'currency': 'EUR'}}
		httpserver.expect_request('/v1/chat/completions', method='POST').respond_with_json(chat_completion(json.dumps(answer)))
		llm = ChatOpenAI(model='gpt-4.1-mini', api_key='sk-test', base_url=httpserver.url_for('/v1'), max_retries=0)

		response = await llm.ainvoke(MESSAGES, output_format=Product)

		assert response.completion == Product(name='Blue mug', price=Price(amount=12.0))
		response_format = httpserver.log[0][0].get_json()['response_format']
		assert response_format['type'] == 'json_schema'
		assert response_format['json_schema']['strict'] is True

	async def test_reasoning_models_get_reasoning_effort(self, httpserver):
		httpserver.expect_request('/v1/chat/completions', method='POST').respond_with_json(chat_completion('ok'))
		llm = ChatOpenAI(model='o4-mini', api_key='sk-test', base_url=httpserver.url_for('/v1'), max_retries=0)

		await llm.ainvoke([UserMessage(content='hi')])

		sent = httpserver.log[0][0].get_json()
		assert sent['reasoning_effort'] == 'low'
		assert 'temperature' not in sent

	async def test_rate_limit(self, httpserver):
		httpserver.expect_request('/v1/chat/completions', method='POST').respond_with_json(
			{'error': {'message': 'Rate limit reached', 'type': 'requests'}}, status=429
		)
		llm = ChatOpenAI(model='gpt-4.1-mini', api_key='sk-test', base_url=httpserver.url_for('/v1'), max_retries=0)

		with pytest.raises(ModelRateLimitError) as exc_info:
			await llm.ainvoke(MESSAGES)
		assert exc_info.value.status_code == 429

	async def test_server_error(self, httpserver):
		httpserver.expect_request('/v1/chat/completions', method='POST').respond_with_json(
			{'error': {'message': 'upstream exploded', 'type': 'server_error'}}, status=500
		)
		llm = ChatOpenAI(model='gpt-4.1-mini', api_key='sk-test', base_url=httpserver.url_for('/v1'), max_retries=0)

		with pytest.raises(ModelProviderError) as exc_info:
			await llm.ainvoke(MESSAGES)
		assert exc_info.value.status_code == 500


class TestChatDeepSeek:
	async def test_structured_output_uses_a_forced_tool_call(self, httpserver):
		arguments = json.dumps({'name': 'Red mug', 'price': {'amount': 9.5, 'currency': 'USD'}})
		httpserver.expect_request('/v1/chat/completions', method='POST').respond_with_json(
			chat_completion(None, tool_arguments=arguments)
		)
		llm = ChatDeepSeek(api_key='sk-test', base_url=httpserver.url_for('/v1'), client_params={'max_retries': 0})

		response = await llm.ainvoke(MESSAGES, output_format=Product)

		assert response.completion.price.currency == 'USD'
		sent = httpserver.log[0][0].get_json()
		assert sent['tool_choice'] == {'type': 'function', 'function': {'name': 'Product'}}
		assert sent['messages'][1]['content'] == 'What does the blue mug cost?'

	async def test_missing_tool_call(self, httpserver):
		httpserver.expect_request('/v1/chat/completions', method='POST').respond_with_json(chat_completion('no tools'))
		llm = ChatDeepSeek(api_key='sk-test', base_url=httpserver.url_for('/v1'), client_params={'max_retries': 0})

		with pytest.raises(ModelProviderError, match='Expected tool_calls'):
			await llm.ainvoke(MESSAGES, output_format=Product)
