import io
import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from agent_memory.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from agent_memory.utils.bedrock_llm import BedrockLLM, BedrockLLMError
from agent_memory.utils.config import BedrockEmbedConfig, BedrockLLMConfig


def throttled():
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'InvokeModel')


@pytest.fixture
def bedrock():
    client = MagicMock()
    with patch('boto3.client', return_value=client), patch('time.sleep'):
        yield client


def make_embedder(model_id='amazon.titan-embed-text-v2:0', dimension=3):
    return BedrockEmbed(BedrockEmbedConfig(region='us-east-1', model_id=model_id, dimension=dimension, retry_attempts=2,
                                           retry_delay=0.01))


def make_llm():
    return BedrockLLM(BedrockLLMConfig(region='us-east-1', model_id='model', max_tokens=100, temperature=0.5, retry_attempts=2,
                                       retry_delay=0.01))


def invoke_result(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode())}


def test_embed_empty_text_skips_service(bedrock):
    embedder = make_embedder()

    assert embedder.embed_document('  ') == []
    assert embedder.embed_query('') == []
    bedrock.invoke_model.assert_not_called()


def test_titan_payload(bedrock):
    bedrock.invoke_model.return_value = invoke_result({'embedding': [0.1, 0.2, 0.3]})
    embedder = make_embedder()

    assert embedder.embed_document('hello') == [0.1, 0.2, 0.3]
    body = json.loads(bedrock.invoke_model.call_args.kwargs['body'])
    assert body == {'inputText': 'hello', 'dimensions': 3}


def test_cohere_requires_1024_dimensions(bedrock):
    with pytest.raises(BedrockEmbedError):
        make_embedder(model_id='cohere.embed-english-v3', dimension=3).embed_query('hello')


def test_embed_retries_then_succeeds(bedrock):
    bedrock.invoke_model.side_effect = [throttled(), invoke_result({'embedding': [1.0]})]

    assert make_embedder().embed_query('hello') == [1.0]
    assert bedrock.invoke_model.call_count == 2


def test_embed_fails_after_retries(bedrock):
    bedrock.invoke_model.side_effect = throttled()

    with pytest.raises(BedrockEmbedError):
        make_embedder().embed_document('hello')
    assert bedrock.invoke_model.call_count == 2


def test_llm_assembles_stream(bedrock):
    bedrock.converse_stream.return_value = {
        'stream': [
            {'contentBlockDelta': {'delta': {'text': 'Hel'}}},
            {'contentBlockDelta': {'delta': {'text': 'lo'}}},
            {'metadata': {'usage': {'inputTokens': 3}, 'metrics': {'latencyMs': 10}}},
        ]
    }

    text = make_llm().generate_text('prompt', 'system', temperature=0)

    assert text == 'Hello'
    kwargs = bedrock.converse_stream.call_args.kwargs
    assert kwargs['inferenceConfig']['temperature'] == 0
    assert kwargs['system'] == [{'text': 'system'}]
    assert kwargs['messages'] == [{'role': 'user', 'content': [{'text': 'prompt'}]}]


def test_llm_uses_default_temperature(bedrock):
    bedrock.converse_stream.return_value = {'stream': []}

    assert make_llm().generate_text('prompt', 'system') == ''
    assert bedrock.converse_stream.call_args.kwargs['inferenceConfig']['temperature'] == 0.5


def test_llm_fails_after_retries(bedrock):
    bedrock.converse_stream.side_effect = throttled()

    with pytest.raises(BedrockLLMError):
        make_llm().generate_text('prompt', 'system')
    assert bedrock.converse_stream.call_count == 2


def test_llm_attempts_override(bedrock):
    bedrock.converse_stream.side_effect = throttled()

    with pytest.raises(BedrockLLMError):
        make_llm().generate_text('prompt', 'system', attempts=1)
    assert bedrock.converse_stream.call_count == 1
