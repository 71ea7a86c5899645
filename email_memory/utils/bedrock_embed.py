"""
Embedding provider backed by Bedrock Titan or Cohere embedding models.

Every returned vector is checked against the configured dimension so a
model/index mismatch fails loudly instead of corrupting the index.
"""

import json
from typing import Any, Dict, List

import boto3

from .config import BedrockEmbedConfig
from .logging_config import get_logger
from .retry import call_with_backoff

logger = get_logger(__name__)

DOCUMENT = 'search_document'
QUERY = 'search_query'
COHERE_DIMENSION = 1024


class BedrockEmbedError(Exception):
    """Raised when Bedrock cannot produce a usable embedding."""
    pass


class BedrockEmbed:
    """Turns email text and search queries into fixed-length vectors."""

    def __init__(self, config: BedrockEmbedConfig):
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension
        self.family = 'cohere' if 'cohere' in config.model_id.lower() else 'titan'

        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id} '
                    f'({self.output_embedding_length} dimensions)')

    def _request_body(self, text: str, input_type: str) -> Dict[str, Any]:
        if self.family == 'cohere':
            # Cohere v3 has no dimension parameter
            if self.output_embedding_length != COHERE_DIMENSION:
                raise BedrockEmbedError(f'Cohere models only produce {COHERE_DIMENSION} dimensions, '
                                        f'configured {self.output_embedding_length}')
            return {'texts': [text], 'input_type': input_type}
        if 'titan' not in self.model_id.lower():
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')
        return {'inputText': text, 'dimensions': self.output_embedding_length, 'normalize': True}

    def _extract_vector(self, payload: Dict[str, Any]) -> List[float]:
        if self.family == 'cohere':
            vector = (payload.get('embeddings') or [None])[0]
        else:
            vector = payload.get('embedding')

        if not vector:
            raise BedrockEmbedError(f'No embedding returned by {self.model_id}')
        if len(vector) != self.output_embedding_length:
            raise BedrockEmbedError(f'Embedding dimension mismatch from {self.model_id}: '
                                    f'got {len(vector)}, expected {self.output_embedding_length}')
        return [float(v) for v in vector]

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            raise BedrockEmbedError('Cannot embed empty text')

        body = json.dumps(self._request_body(text, input_type))

        def invoke() -> Dict[str, Any]:
            response = self.bedrock.invoke_model(body=body,
                                                 modelId=self.model_id,
                                                 accept='application/json',
                                                 contentType='application/json')
            return json.loads(response['body'].read())

        payload = call_with_backoff(invoke,
                                    attempts=self.config.retry_attempts,
                                    base_delay=self.config.retry_delay,
                                    error_cls=BedrockEmbedError,
                                    label='Bedrock Embed')
        return self._extract_vector(payload)

    def embed_document(self, text: str) -> List[float]:
        """Embed the derived text of a stored email.

        Raises:
            BedrockEmbedError: Provider failure, empty text or wrong-length vector
        """
        return self._embed(text, DOCUMENT)

    def embed_query(self, text: str) -> List[float]:
        """Embed a search query (Cohere distinguishes it from documents)."""
        return self._embed(text, QUERY)

    def health_check(self) -> bool:
        try:
            return len(self.embed_document('health check')) == self.output_embedding_length
        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
