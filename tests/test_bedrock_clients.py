"""
Tests for the Bedrock embedding and completion wrappers with boto3 mocked out.
"""

import io
import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from email_memory.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from email_memory.utils.bedrock_llm import BedrockLLM, BedrockLLMError
from email_memory.utils.config import BedrockEmbedConfig, BedrockLLMConfig

THROTTLED = ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'InvokeModel')


def invoke_response(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode())}


def make_embed(model_id='amazon.titan-embed-text-v2:0', dimension=3, retry_attempts=2):
    config = BedrockEmbedConfig(region='us-east-1',
                                model_id=model_id,
                                dimension=dimension,
                                retry_attempts=retry_attempts,
                                retry_delay=0.0)
    runtime = MagicMock()
    with patch('email_memory.utils.bedrock_embed.boto3.client', return_value=runtime):
        return BedrockEmbed(config), runtime


def make_llm(retry_attempts=2):
    config = BedrockLLMConfig(region='us-east-1',
                              model_id='anthropic.claude-3-haiku-20240307-v1:0',
                              max_tokens=100,
                              temperature=0.2,
                              retry_attempts=retry_attempts,
                              retry_delay=0.0)
    runtime = MagicMock()
    with patch('email_memory.utils.bedrock_llm.boto3.client', return_value=runtime):
        return BedrockLLM(config), runtime


@pytest.fixture(autouse=True)
def no_sleep():
    with patch('time.sleep'):
        yield


class TestBedrockEmbed:
    """Tests for BedrockEmbed."""

    def test_titan_request_and_vector(self):
        embed, runtime = make_embed()
        runtime.invoke_model.return_value = invoke_response({'embedding': [1, 0.5, 0]})

        assert embed.embed_document('hello') == [1.0, 0.5, 0.0]

        body = json.loads(runtime.invoke_model.call_args.kwargs['body'])
        assert body == {'inputText': 'hello', 'dimensions': 3, 'normalize': True}

    def test_cohere_uses_input_type(self):
        embed, runtime = make_embed(model_id='cohere.embed-english-v3', dimension=1024)
        runtime.invoke_model.return_value = invoke_response({'embeddings': [[0.1] * 1024]})

        assert len(embed.embed_query('hello')) == 1024

        body = json.loads(runtime.invoke_model.call_args.kwargs['body'])
        assert body == {'input_type': 'search_query', 'texts': ['hello']}

    def test_cohere_rejects_other_dimensions(self):
        embed, _ = make_embed(model_id='cohere.embed-english-v3', dimension=512)
        with pytest.raises(BedrockEmbedError, match='1024'):
            embed.embed_document('hello')

    def test_wrong_length_names_both_sizes(self):
        embed, runtime = make_embed()
        runtime.invoke_model.return_value = invoke_response({'embedding': [1, 2]})
        with pytest.raises(BedrockEmbedError, match='got 2, expected 3'):
            embed.embed_document('hello')

    def test_missing_vector(self):
        embed, runtime = make_embed()
        runtime.invoke_model.return_value = invoke_response({})
        with pytest.raises(BedrockEmbedError, match='No embedding'):
            embed.embed_document('hello')

    def test_empty_text_rejected_without_call(self):
        embed, runtime = make_embed()
        with pytest.raises(BedrockEmbedError):
            embed.embed_document('   ')
        runtime.invoke_model.assert_not_called()

    def test_retries_then_succeeds(self):
        embed, runtime = make_embed()
        runtime.invoke_model.side_effect = [THROTTLED, invoke_response({'embedding': [0, 0, 1]})]

        assert embed.embed_document('hello') == [0.0, 0.0, 1.0]
        assert runtime.invoke_model.call_count == 2

    def test_gives_up_after_retry_attempts(self):
        embed, runtime = make_embed(retry_attempts=3)
        runtime.invoke_model.side_effect = THROTTLED

        with pytest.raises(BedrockEmbedError, match='after 3 attempts'):
            embed.embed_document('hello')
        assert runtime.invoke_model.call_count == 3

    def test_health_check(self):
        embed, runtime = make_embed()
        runtime.invoke_model.return_value = invoke_response({'embedding': [1, 0, 0]})
        assert embed.health_check() is True

        runtime.invoke_model.side_effect = THROTTLED
        assert embed.health_check() is False


class TestBedrockLLM:
    """Tests for BedrockLLM."""

    def stream(self, *chunks, usage=None):
        events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
        if usage:
            events.append({'metadata': {'usage': usage, 'metrics': {'latencyMs': 12}}})
        return {'stream': events}

    def test_collects_streamed_text_and_metrics(self):
        llm, runtime = make_llm()
        runtime.converse_stream.return_value = self.stream('Hel', 'lo', usage={'inputTokens': 3})

        text, metrics = llm.generate_response([{'role': 'user', 'content': [{'text': 'hi'}]}], 'system')

        assert text == 'Hello'
        assert metrics == {'inputTokens': 3, 'latencyMs': 12}
        kwargs = runtime.converse_stream.call_args.kwargs
        assert kwargs['system'] == [{'text': 'system'}]
        assert kwargs['inferenceConfig'] == {'maxTokens': 100, 'temperature': 0.2, 'stopSequences': []}

    def test_explicit_zero_temperature_kept(self):
        llm, runtime = make_llm()
        runtime.converse_stream.return_value = self.stream('OK')

        llm.generate_response([], 'system', max_tokens=10, temperature=0.0)

        assert runtime.converse_stream.call_args.kwargs['inferenceConfig']['temperature'] == 0.0

    def test_complete_sends_single_user_turn(self):
        llm, runtime = make_llm()
        runtime.converse_stream.return_value = self.stream('Summary')

        assert llm.complete('system', 'summarize this') == 'Summary'
        assert runtime.converse_stream.call_args.kwargs['messages'] == [{
            'role': 'user',
            'content': [{'text': 'summarize this'}]
        }]

    def test_complete_rejects_empty_output(self):
        llm, runtime = make_llm()
        runtime.converse_stream.return_value = self.stream('  ')
        with pytest.raises(BedrockLLMError):
            llm.complete('system', 'prompt')

    def test_retries_exhausted(self):
        llm, runtime = make_llm(retry_attempts=2)
        runtime.converse_stream.side_effect = THROTTLED

        with pytest.raises(BedrockLLMError, match='after 2 attempts'):
            llm.complete('system', 'prompt')
        assert runtime.converse_stream.call_count == 2

    def test_health_check(self):
        llm, runtime = make_llm()
        runtime.converse_stream.return_value = self.stream('OK')
        assert llm.health_check() is True

        runtime.converse_stream.side_effect = THROTTLED
        assert llm.health_check() is False
