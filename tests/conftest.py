"""
Shared fixtures: in-memory SQLite store plus in-process stand-ins for the
vector index and the embedding provider.
"""

import math
import re
from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from email_memory.services.record_sync import RecordSyncService
from email_memory.services.similarity_search import SimilaritySearchService
from email_memory.utils.bedrock_embed import BedrockEmbedError
from email_memory.utils.config import DatabaseConfig
from email_memory.utils.opensearch_client import OpenSearchError
from email_memory.utils.relational_store import RelationalStore

DIMENSION = 256
OWNER = 'owner-1'


class BagOfWordsEmbed:
    """Deterministic embedder: each distinct token gets its own axis."""

    def __init__(self, dimension: int = DIMENSION):
        self.output_embedding_length = dimension
        self.vocab: Dict[str, int] = {}
        self.calls: List[str] = []
        self.fail = False
        self.length_override = None

    def _vector(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise BedrockEmbedError('provider unreachable')
        vector = [0.0] * self.output_embedding_length
        for token in re.findall(r'[a-z0-9]+', text.lower()):
            index = self.vocab.setdefault(token, len(self.vocab) % self.output_embedding_length)
            vector[index] += 1.0
        if self.length_override is not None:
            vector = vector[:self.length_override] + [0.0] * max(0, self.length_override - len(vector))
        return vector

    def embed_document(self, text: str) -> List[float]:
        return self._vector(text)

    def embed_query(self, text: str) -> List[float]:
        return self._vector(text)


def cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorIndex:
    """Brute-force cosine index with the OpenSearchClient method surface."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.entries: Dict[str, Dict[str, Any]] = {}
        self.failing: set = set()
        self.queries: List[Dict[str, Any]] = []

    def _check(self, op: str) -> None:
        if op in self.failing:
            raise OpenSearchError(f'{op} failed')

    def upsert(self, item_id, vector, namespace, metadata):
        self._check('upsert')
        self.entries[item_id] = {'namespace': namespace, 'vector': list(vector), 'metadata': dict(metadata)}
        return True

    def query(self, vector, namespace, top_k=20):
        self._check('query')
        self.queries.append({'namespace': namespace, 'top_k': top_k})
        scored = [{
            'id': item_id,
            'score': cosine(vector, entry['vector']),
            'metadata': dict(entry['metadata'])
        } for item_id, entry in self.entries.items() if entry['namespace'] == namespace]
        return sorted(scored, key=lambda m: m['score'], reverse=True)[:top_k]

    def get_by_ids(self, ids, namespace):
        self._check('get_by_ids')
        return [{
            'id': item_id,
            'vector': list(self.entries[item_id]['vector']),
            'metadata': dict(self.entries[item_id]['metadata'])
        } for item_id in ids if item_id in self.entries and self.entries[item_id]['namespace'] == namespace]

    def delete_by_ids(self, ids):
        self._check('delete_by_ids')
        deleted = 0
        for item_id in ids:
            if self.entries.pop(item_id, None) is not None:
                deleted += 1
        return deleted


@pytest.fixture
def store():
    engine = create_engine('sqlite://', poolclass=StaticPool, connect_args={'check_same_thread': False})
    relational = RelationalStore(DatabaseConfig(url='sqlite://', echo=False), engine=engine)
    relational.ensure_schema()
    return relational


@pytest.fixture
def vectors():
    return InMemoryVectorIndex()


@pytest.fixture
def embed():
    return BagOfWordsEmbed()


@pytest.fixture
def records(store, vectors, embed):
    return RecordSyncService(store=store, vectors=vectors, embed=embed)


@pytest.fixture
def search(vectors, embed):
    return SimilaritySearchService(vectors=vectors, embed=embed)
