import sys
import pathlib

# Ensure the src directory is on the path for importing llm_gateway modules directly
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1] / 'src'))
from llm_gateway.adapters.openai import OpenAIResponseAdapter
from openai.types.chat.chat_completion_message import ChatCompletionMessage
from openai.types.chat.chat_completion import ChatCompletion, Choice
from openai.types.completion_usage import CompletionUsage


def _tool_call_completion(name: str, arguments: str) -> ChatCompletion:
    return ChatCompletion.model_validate(
        {
            'id': 'cmpl-1',
            'object': 'chat.completion',
            'created': 0,
            'model': 'gpt-4',
            'choices': [
                {
                    'index': 0,
                    'finish_reason': 'tool_calls',
                    'message': {
                        'role': 'assistant',
                        'content': None,
                        'tool_calls': [
                            {'id': 'id1', 'type': 'function', 'function': {'name': name, 'arguments': arguments}}
                        ],
                    },
                }
            ],
        }
    )


def test_invalid_tool_call_arguments_returns_empty_dict_instead_of_none():
    bad_json = '{not valid json'

    response = OpenAIResponseAdapter(_tool_call_completion('test', bad_json))
    tool_calls = response.get_tool_calls()

    assert tool_calls is not None
    assert len(tool_calls) == 1
    assert tool_calls[0].id == 'id1'
    assert tool_calls[0].name == 'test'
    assert tool_calls[0].arguments == {}


def test_text_and_usage_from_sdk_model():
    message = ChatCompletionMessage(role='assistant', content='Rome')
    choice = Choice(finish_reason='stop', index=0, message=message)
    completion = ChatCompletion(
        id='cmpl-2',
        choices=[choice],
        created=0,
        model='gpt-4',
        object='chat.completion',
        usage=CompletionUsage(prompt_tokens=12, completion_tokens=3, total_tokens=15),
    )

    response = OpenAIResponseAdapter(completion)

    assert response.get_id() == 'cmpl-2'
    assert response.get_model() == 'gpt-4'
    assert response.get_text() == 'Rome'
    assert response.has_tool_calls() is False
    assert response.get_usage().input_tokens == 12
    assert response.get_usage().output_tokens == 3
    assert response.get_original_response()['choices'][0]['message']['content'] == 'Rome'


def test_missing_choices_read_as_empty():
    response = OpenAIResponseAdapter({'id': 'cmpl-3', 'choices': []})

    assert response.get_text() == ''
    assert response.get_tool_calls() == []
    assert response.get_usage().input_tokens == 0


def test_refusal_response_keeps_envelope():
    response = OpenAIResponseAdapter(_tool_call_completion('delete_all', '{}'))

    refusal = response.to_refusal_response('blocked', 'Not allowed')

    assert refusal['id'] == 'cmpl-1'
    assert refusal['choices'][0]['message']['content'] == 'Not allowed'
    assert refusal['choices'][0]['finish_reason'] == 'stop'
    assert OpenAIResponseAdapter(refusal).has_tool_calls() is False
