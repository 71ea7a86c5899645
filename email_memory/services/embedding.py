"""
Embedding calls shared by the synchronizer and the search filter.
"""

from typing import List

from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.logging_config import get_logger
from .errors import EmbeddingError, ValidationError

logger = get_logger(__name__)


def check_dimensions(embed_dimension: int, index_dimension: int) -> None:
    """Reject a deployment whose embedding model and vector index disagree on dimension."""
    if embed_dimension != index_dimension:
        raise ValidationError(f'Embedding dimension {embed_dimension} does not match '
                              f'vector index dimension {index_dimension}')


def embed_text(embed: BedrockEmbed, text: str, expected_dimension: int, query: bool = False) -> List[float]:
    """Embed ``text`` and verify the vector length.

    Args:
        embed: Embedding provider
        text: Text to embed
        expected_dimension: Dimension of the vector index
        query: Use the query-side embedding instead of the document side

    Returns:
        Vector of exactly ``expected_dimension`` floats

    Raises:
        EmbeddingError: On provider failure, an empty vector or a wrong length
    """
    try:
        vector = embed.embed_query(text) if query else embed.embed_document(text)
    except BedrockEmbedError as e:
        logger.error(f'Embedding provider failed: {e}')
        raise EmbeddingError(f'Failed to generate embedding: {e}')

    if not vector:
        raise EmbeddingError('Embedding provider returned no vector')
    if len(vector) != expected_dimension:
        raise EmbeddingError(f'Embedding dimension mismatch: observed {len(vector)}, expected {expected_dimension}')
    return list(vector)
