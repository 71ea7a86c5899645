"""
OpenSearch client wrapper for the email vector index.

Every document carries an ``owner`` keyword that acts as the namespace; all
reads are filtered on it.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError as OpenSearchNotFound
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

VECTOR_FIELD = 'embedding'
NAMESPACE_FIELD = 'owner'
_RESERVED_FIELDS = ('id', NAMESPACE_FIELD, VECTOR_FIELD)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built opensearch-py client (skips AWS auth setup)
        """
        self.config = config
        self.index_name = config.index_name
        self.dimension = config.dimension

        if client is None:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def _index_body(self) -> Dict[str, Any]:
        keyword = {'type': 'keyword'}
        text = {'type': 'text'}
        return {
            'mappings': {
                'properties': {
                    'id': keyword,
                    NAMESPACE_FIELD: keyword,
                    'sender_email': keyword,
                    'sender_name': text,
                    'subject': text,
                    'body': text,
                    'attachments': text,
                    'date_sent': keyword,
                    'thread_id': keyword,
                    'conversation_id': keyword,
                    'email_type': keyword,
                    VECTOR_FIELD: {
                        'type': 'knn_vector',
                        'dimension': self.dimension,
                        'method': {
                            'name': 'hnsw',
                            'space_type': 'cosinesimil',
                            'engine': 'nmslib'
                        }
                    }
                }
            },
            'settings': {
                'index': {
                    'knn': True,
                    'knn.algo_param.ef_search': 100
                }
            }
        }

    def create_index_if_not_exists(self, wait_seconds: float = 15.0) -> str:
        """
        Create the email index if it doesn't exist.

        Args:
            wait_seconds: Pause after creation so a serverless collection can sync

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=self.index_name, body=self._index_body())
            logger.info(f'Created index {self.index_name}')
            if not response.get('acknowledged', False):
                return 'failed'
            if wait_seconds:
                logger.info(f'Waiting {wait_seconds:.0f}s for index {self.index_name} sync-up...')
                time.sleep(wait_seconds)
            return 'created'
        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    @staticmethod
    def _split_source(hit: Dict[str, Any]) -> Dict[str, Any]:
        source = hit.get('_source') or {}
        metadata = {k: v for k, v in source.items() if k not in _RESERVED_FIELDS}
        return {'id': source.get('id') or hit['_id'], 'vector': source.get(VECTOR_FIELD), 'metadata': metadata}

    def upsert(self, item_id: str, vector: List[float], namespace: str, metadata: Dict[str, Any]) -> bool:
        """
        Insert or replace the vector entry for ``item_id``.

        Args:
            item_id: Entry id, also used as the document id
            vector: Embedding values
            namespace: Owner namespace
            metadata: Structured fields stored next to the vector

        Returns:
            True if the index reported created/updated
        """
        if len(vector) != self.dimension:
            raise OpenSearchError(f'Vector dimension mismatch for {item_id}: got {len(vector)}, expected {self.dimension}')

        document = {**metadata, 'id': item_id, NAMESPACE_FIELD: namespace, VECTOR_FIELD: vector}
        try:
            response = self.client.index(index=self.index_name, id=item_id, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Upserted vector {item_id} in namespace {namespace}')
            else:
                logger.warning(f'Unexpected result upserting vector {item_id}: {response}')
            return success

        except OpenSearchException as e:
            logger.error(f'Error upserting vector {item_id}: {e}')
            raise OpenSearchError(f'Failed to upsert vector: {e}')
        except Exception as e:
            logger.error(f'Unexpected error upserting vector {item_id}: {e}')
            raise OpenSearchError(f'Unexpected error upserting vector: {e}')

    def query(self, vector: List[float], namespace: str, top_k: int = 20) -> List[Dict[str, Any]]:
        """
        Perform k-NN similarity search inside one namespace.

        Args:
            vector: Query vector
            namespace: Owner namespace to search in
            top_k: Number of neighbours to request

        Returns:
            Matches in index order as ``{'id', 'score', 'metadata'}`` dicts
        """
        if len(vector) != self.dimension:
            raise OpenSearchError(f'Query vector dimension mismatch: got {len(vector)}, expected {self.dimension}')

        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            VECTOR_FIELD: {
                                'vector': vector,
                                'k': top_k
                            }
                        }
                    }],
                    'filter': [{
                        'term': {
                            NAMESPACE_FIELD: namespace
                        }
                    }]
                }
            },
            '_source': {
                'excludes': [VECTOR_FIELD]
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)

            matches = []
            for hit in response['hits']['hits']:
                entry = self._split_source(hit)
                matches.append({'id': entry['id'], 'score': hit.get('_score') or 0.0, 'metadata': entry['metadata']})

            logger.debug(f'Vector query returned {len(matches)} matches in namespace {namespace}')
            return matches

        except OpenSearchException as e:
            logger.error(f'Error performing vector query: {e}')
            raise OpenSearchError(f'Vector query failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector query: {e}')
            raise OpenSearchError(f'Unexpected error in vector query: {e}')

    def get_by_ids(self, ids: List[str], namespace: str) -> List[Dict[str, Any]]:
        """
        Fetch stored entries by id, restricted to one namespace.

        Args:
            ids: Entry ids
            namespace: Owner namespace

        Returns:
            ``{'id', 'vector', 'metadata'}`` dicts for the ids that exist
        """
        if not ids:
            return []

        search_body = {
            'size': len(ids),
            'query': {
                'bool': {
                    'filter': [{
                        'terms': {
                            'id': list(ids)
                        }
                    }, {
                        'term': {
                            NAMESPACE_FIELD: namespace
                        }
                    }]
                }
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)
            return [self._split_source(hit) for hit in response['hits']['hits']]

        except OpenSearchException as e:
            logger.error(f'Error fetching vectors {ids} in namespace {namespace}: {e}')
            raise OpenSearchError(f'Failed to fetch vectors: {e}')
        except Exception as e:
            logger.error(f'Unexpected error fetching vectors {ids}: {e}')
            raise OpenSearchError(f'Unexpected error fetching vectors: {e}')

    def delete_by_ids(self, ids: List[str]) -> int:
        """
        Delete entries by id.

        Args:
            ids: Entry ids

        Returns:
            Number of entries actually deleted (missing ids are skipped)
        """
        deleted = 0
        for item_id in ids:
            try:
                response = self.client.delete(index=self.index_name, id=item_id)
                if response.get('result') == 'deleted':
                    deleted += 1
                    logger.debug(f'Deleted vector {item_id} from {self.index_name}')
                else:
                    logger.warning(f'Vector {item_id} not found for deletion')

            except OpenSearchNotFound:
                logger.warning(f'Vector {item_id} not found for deletion')
            except OpenSearchException as e:
                logger.error(f'Error deleting vector {item_id}: {e}')
                raise OpenSearchError(f'Failed to delete vector: {e}')
            except Exception as e:
                logger.error(f'Unexpected error deleting vector {item_id}: {e}')
                raise OpenSearchError(f'Unexpected error deleting vector: {e}')
        return deleted

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
