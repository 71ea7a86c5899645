"""
Similarity Search Filter: nearest-neighbour queries with metadata predicates applied afterwards.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import SearchFilters, SearchResult
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import parse_iso, within
from .embedding import check_dimensions, embed_text
from .errors import NotFoundError, StorageError, ValidationError

logger = get_logger(__name__)


def _date_bounds(filters: SearchFilters) -> Optional[Tuple[datetime, datetime]]:
    if not filters.start_date and not filters.end_date:
        return None
    if not filters.start_date or not filters.end_date:
        raise ValidationError('start_date and end_date must be supplied together')

    start, end = parse_iso(filters.start_date), parse_iso(filters.end_date)
    if start is None or end is None:
        raise ValidationError(f'Invalid date range: {filters.start_date!r} - {filters.end_date!r}')
    return start, end


def apply_filters(matches: List[SearchResult], filters: SearchFilters) -> List[SearchResult]:
    """Keep matches that satisfy every supplied filter.

    Order of checks: sender, thread, inclusive date range, attachments. A match
    whose date_sent cannot be parsed fails the date range.
    """
    if filters.is_empty():
        return list(matches)
    bounds = _date_bounds(filters)

    def keep(match: SearchResult) -> bool:
        meta = match.metadata
        if filters.sender_email and meta.get('sender_email') != filters.sender_email:
            return False
        if filters.thread_id and meta.get('thread_id') != filters.thread_id:
            return False
        if bounds is not None and not within(meta.get('date_sent'), *bounds):
            return False
        if filters.has_attachments and not meta.get('attachments'):
            return False
        return True

    return [match for match in matches if keep(match)]


class SimilaritySearchService:
    """Semantic search over one owner's emails."""

    def __init__(self, vectors: Optional[OpenSearchClient] = None, embed: Optional[BedrockEmbed] = None):
        """Initialize the search service; collaborators default to the configured AWS clients."""
        self.vectors = vectors or OpenSearchClient(config.opensearch)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.min_score = config.memory.min_similarity_score

        check_dimensions(self.embed.output_embedding_length, self.vectors.dimension)

        logger.info('Initialized SimilaritySearchService')

    def _query(self, vector: List[float], owner: str, top_k: int) -> List[Dict[str, Any]]:
        try:
            return self.vectors.query(vector, owner, top_k)
        except OpenSearchError as e:
            raise StorageError(f'Vector query failed: {e}')

    def search(self,
               query_text: str,
               owner: str,
               filters: Optional[SearchFilters] = None,
               top_k: Optional[int] = None) -> List[SearchResult]:
        """Semantic search with optional conjunctive filters.

        Args:
            query_text: Natural-language query
            owner: Owner namespace
            filters: Post-query predicates
            top_k: Neighbours fetched from the index (default from config, 20)

        Returns:
            Every match that passed the score threshold and filters, best first

        Raises:
            ValidationError: Empty query/owner, bad top_k or bad date range
            EmbeddingError: Provider failure or dimension mismatch
            StorageError: Vector query failed
        """
        top_k = config.memory.search_top_k if top_k is None else top_k
        filters = filters or SearchFilters()
        if not query_text or not query_text.strip():
            raise ValidationError('query is required')
        if not owner or not owner.strip():
            raise ValidationError('owner is required')
        if top_k <= 0:
            raise ValidationError(f'top_k must be positive, got {top_k}')
        _date_bounds(filters)

        logger.debug(f'Searching email memories for owner {owner} with query: "{query_text}"')
        vector = embed_text(self.embed, query_text, self.vectors.dimension, query=True)
        raw = self._query(vector, owner, top_k)
        if not raw:
            logger.debug(f'No vector matches found for owner {owner}')
            return []

        matches = [
            SearchResult(id=m['id'], score=m.get('score') or 0.0, metadata=m.get('metadata') or {})
            for m in raw
            if (m.get('score') or 0.0) >= self.min_score
        ]
        matches = apply_filters(matches, filters)
        # sorted() is stable, so index order breaks score ties
        matches = sorted(matches, key=lambda m: m.score, reverse=True)

        logger.debug(f'Returning {len(matches)} of {len(raw)} matches after filtering')
        return matches

    def find_similar(self, item_id: str, owner: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """Emails nearest to a stored email, excluding the email itself.

        Raises:
            NotFoundError: No vector entry for this id in the owner's namespace
            StorageError: Vector read or query failed
        """
        top_k = config.memory.similar_top_k if top_k is None else top_k
        if top_k <= 0:
            raise ValidationError(f'top_k must be positive, got {top_k}')

        try:
            entries = self.vectors.get_by_ids([item_id], owner)
        except OpenSearchError as e:
            raise StorageError(f'Failed to read vector for email {item_id}: {e}')
        if not entries or not entries[0].get('vector'):
            raise NotFoundError(f'Email {item_id} not found in vector store')

        # one extra neighbour because the email matches itself
        raw = self._query(entries[0]['vector'], owner, top_k + 1)
        similar = [
            SearchResult(id=m['id'], score=m.get('score') or 0.0, metadata=m.get('metadata') or {})
            for m in raw
            if m['id'] != item_id
        ]
        return similar[:top_k]
