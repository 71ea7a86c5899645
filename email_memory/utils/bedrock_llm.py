"""
Completion provider backed by the Bedrock Converse streaming API.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig

from .config import BedrockLLMConfig
from .logging_config import get_logger
from .retry import RETRYABLE_ERRORS, call_with_backoff

logger = get_logger(__name__)

HEALTH_PROMPT = "Reply with the single word 'OK'."


class BedrockLLMError(Exception):
    """Raised when Bedrock cannot produce a completion."""
    pass


def user_turn(text: str) -> Dict[str, Any]:
    return {'role': 'user', 'content': [{'text': text}]}


class BedrockLLM:
    """Streams completions for email analysis from a Bedrock chat model."""

    def __init__(self, config: BedrockLLMConfig):
        self.config = config
        self.model_id = config.model_id

        # long reads for multi-email summaries; retries are done by call_with_backoff
        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=60,
                                                              read_timeout=600,
                                                              retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    @staticmethod
    def _collect_stream(events: Optional[Iterable[Dict[str, Any]]]) -> Tuple[str, Optional[Dict[str, Any]]]:
        chunks: List[str] = []
        usage = None
        for event in events or []:
            delta = event.get('contentBlockDelta', {}).get('delta', {})
            if 'text' in delta:
                chunks.append(delta['text'])
            if 'metadata' in event:
                usage = {**event['metadata'].get('usage', {}), **event['metadata'].get('metrics', {})}
        return ''.join(chunks), usage

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Run one Converse request and gather the streamed text.

        Args:
            messages: Conversation turns in Converse format
            system_prompt: System instructions
            max_tokens: Overrides the configured token limit
            temperature: Overrides the configured temperature; 0.0 is honoured
            stop_sequences: Optional stop sequences

        Returns:
            Tuple of (text, usage and latency metrics or None)

        Raises:
            BedrockLLMError: When every attempt fails
        """
        inference = {
            'maxTokens': self.config.max_tokens if max_tokens is None else max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': list(stop_sequences or []),
        }

        def converse() -> Tuple[str, Optional[Dict[str, Any]]]:
            response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                            messages=messages,
                                                            system=[{'text': system_prompt}],
                                                            inferenceConfig=inference)
            return self._collect_stream(response.get('stream'))

        text, usage = call_with_backoff(converse,
                                        attempts=self.config.retry_attempts,
                                        base_delay=self.config.retry_delay,
                                        error_cls=BedrockLLMError,
                                        label='Bedrock LLM',
                                        retry_on=RETRYABLE_ERRORS + (json.JSONDecodeError, ))
        logger.debug(f'Bedrock LLM returned {len(text)} characters')
        return text, usage

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Single user turn in, non-empty text out; raises BedrockLLMError otherwise."""
        text, _ = self.generate_response([user_turn(user_prompt)], system_prompt)
        if not text.strip():
            raise BedrockLLMError(f'{self.model_id} returned an empty completion')
        return text

    def health_check(self) -> bool:
        """True when a tiny prompt yields any text."""
        try:
            text, _ = self.generate_response([user_turn('ping')], HEALTH_PROMPT, max_tokens=10, temperature=0.0)
            return bool(text.strip())
        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
