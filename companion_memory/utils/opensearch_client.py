"""
OpenSearch client wrapper for vector memory, transcript entries and namespace markers.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import ConflictError, NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

INDEX_TYPES = ('memory', 'history', 'namespace')


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def _knn_vector(dimension: int) -> Dict[str, Any]:
    return {
        'type': 'knn_vector',
        'dimension': dimension,
        'method': {
            'name': 'hnsw',
            'space_type': 'cosinesimil',
            'engine': 'nmslib'
        }
    }


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config

        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)

        endpoint = config.endpoint
        if '://' in endpoint:
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_for(self, index_type: str) -> str:
        """Physical index name for one of ``INDEX_TYPES``."""
        if index_type not in INDEX_TYPES:
            raise ValueError(f'Unknown index type: {index_type}')
        return f'{self.config.index_name}_{index_type}'

    def _mapping(self, index_type: str) -> Dict[str, Any]:
        if index_type == 'memory':
            return {
                'mappings': {
                    'properties': {
                        'embedding_id': {'type': 'keyword'},
                        'namespace': {'type': 'keyword'},
                        'text': {'type': 'text'},
                        'embedding': _knn_vector(self.config.dimension),
                        'created_at': {'type': 'date'}
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }
        if index_type == 'history':
            return {
                'mappings': {
                    'properties': {
                        'namespace': {'type': 'keyword'},
                        'sequence': {'type': 'long'},
                        'speaker': {'type': 'keyword'},
                        'text': {'type': 'text', 'index': False},
                        'created_at': {'type': 'date'}
                    }
                }
            }
        return {
            'mappings': {
                'properties': {
                    'namespace': {'type': 'keyword'},
                    'seeded_at': {'type': 'date'},
                    'last_active': {'type': 'date'}
                }
            }
        }

    def create_index_if_not_exists(self, index_type: str = 'memory') -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_type: One of memory, history or namespace

        Returns:
            'exists', 'created' or 'failed'

        Raises:
            OpenSearchError: If the index cannot be created
        """
        index_name = self.index_for(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._mapping(index_type))
            logger.info(f'Created index {index_name}')
            if not response.get('acknowledged', False):
                return 'failed'

            if self.config.index_sync_delay > 0:
                logger.info(f'Waiting {self.config.index_sync_delay}s for index {index_name} sync-up...')
                time.sleep(self.config.index_sync_delay)
            return 'created'

        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def index_document(self,
                       document: Dict[str, Any],
                       index_type: str = 'memory',
                       doc_id: Optional[str] = None,
                       refresh: Optional[str] = None) -> bool:
        """
        Index (insert or overwrite) a document.

        Args:
            document: Document body
            index_type: Target index type
            doc_id: Explicit document id, generated by OpenSearch if None
            refresh: Refresh policy passed through to OpenSearch

        Returns:
            True if the document was created or updated

        Raises:
            OpenSearchError: If indexing fails
        """
        index_name = self.index_for(index_type)
        params = {'refresh': refresh} if refresh else {}

        try:
            response = self.client.index(index=index_name, body=document, id=doc_id, params=params)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Indexed document in {index_name}')
            else:
                logger.warning(f'Unexpected result indexing document: {response}')
            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing document: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing document: {e}')
            raise OpenSearchError(f'Unexpected error indexing document: {e}')

    def create_document(self,
                        document: Dict[str, Any],
                        doc_id: str,
                        index_type: str,
                        refresh: Optional[str] = 'wait_for') -> bool:
        """
        Create a document only if ``doc_id`` is not taken yet.

        Args:
            document: Document body
            doc_id: Document id that must not exist
            index_type: Target index type
            refresh: Refresh policy, 'wait_for' so later searches see the write

        Returns:
            True if created, False if a document with that id already exists

        Raises:
            OpenSearchError: If the write fails for any other reason
        """
        index_name = self.index_for(index_type)
        params = {'refresh': refresh} if refresh else {}

        try:
            self.client.create(index=index_name, id=doc_id, body=document, params=params)
            logger.debug(f'Created document {doc_id} in {index_name}')
            return True

        except ConflictError:
            logger.debug(f'Document {doc_id} already exists in {index_name}')
            return False
        except OpenSearchException as e:
            logger.error(f'Error creating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to create document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error creating document: {e}')

    def update_document(self, doc_id: str, fields: Dict[str, Any], index_type: str) -> bool:
        """
        Partially update an existing document.

        Returns:
            True if updated, False if the document does not exist
        """
        index_name = self.index_for(index_type)

        try:
            self.client.update(index=index_name, id=doc_id, body={'doc': fields})
            return True

        except NotFoundError:
            logger.debug(f'Document {doc_id} not found in {index_name} for update')
            return False
        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')

    def document_exists(self, doc_id: str, index_type: str) -> bool:
        """Return True if ``doc_id`` exists in the given index."""
        index_name = self.index_for(index_type)

        try:
            return bool(self.client.exists(index=index_name, id=doc_id))

        except OpenSearchException as e:
            logger.error(f'Error checking document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to check document: {e}')

    def vector_search(self,
                      query_vector: List[float],
                      namespace: str,
                      top_k: int = 3,
                      index_type: str = 'memory') -> List[Dict[str, Any]]:
        """
        Perform vector similarity search scoped to one namespace.

        Args:
            query_vector: Query vector for similarity search
            namespace: Conversation namespace used as a term filter
            top_k: Number of results to return
            index_type: Type of index

        Returns:
            List of results with 'id', 'score' and 'document', best first

        Raises:
            OpenSearchError: If the search fails
        """
        index_name = self.index_for(index_type)

        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            'embedding': {
                                'vector': query_vector,
                                'k': top_k
                            }
                        }
                    }],
                    'filter': [{
                        'term': {
                            'namespace': namespace
                        }
                    }]
                }
            },
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            response = self.client.search(index=index_name, body=search_body)

            results = [{
                'id': hit['_id'],
                'score': hit['_score'],
                'document': hit['_source']
            } for hit in response['hits']['hits']]

            logger.debug(f'Vector search returned {len(results)} results for namespace {namespace}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

    def namespace_documents(self,
                            namespace: str,
                            index_type: str = 'history',
                            size: int = 30,
                            sort_field: str = 'sequence',
                            descending: bool = True) -> List[Dict[str, Any]]:
        """
        Fetch documents of one namespace ordered by ``sort_field``.

        Returns:
            List of document sources in the requested order

        Raises:
            OpenSearchError: If the search fails
        """
        index_name = self.index_for(index_type)

        search_body = {
            'size': size,
            'query': {
                'bool': {
                    'filter': [{
                        'term': {
                            'namespace': namespace
                        }
                    }]
                }
            },
            'sort': [{
                sort_field: {
                    'order': 'desc' if descending else 'asc'
                }
            }]
        }

        try:
            response = self.client.search(index=index_name, body=search_body)
            return [hit['_source'] for hit in response['hits']['hits']]

        except NotFoundError:
            # Index not created yet: the namespace simply has no documents.
            return []
        except OpenSearchException as e:
            logger.error(f'Error reading namespace {namespace} from {index_name}: {e}')
            raise OpenSearchError(f'Namespace read failed: {e}')

    def stale_namespaces(self, before: str, size: int = 500) -> List[str]:
        """
        List namespaces whose ``last_active`` is older than ``before`` (ISO timestamp).

        Raises:
            OpenSearchError: If the search fails
        """
        search_body = {
            'size': size,
            'query': {
                'range': {
                    'last_active': {
                        'lt': before
                    }
                }
            },
            '_source': ['namespace']
        }

        try:
            response = self.client.search(index=self.index_for('namespace'), body=search_body)
            return [hit['_source']['namespace'] for hit in response['hits']['hits']]

        except OpenSearchException as e:
            logger.error(f'Error listing stale namespaces: {e}')
            raise OpenSearchError(f'Stale namespace search failed: {e}')

    def delete_namespace(self, namespace: str, index_type: str) -> int:
        """
        Delete every document of ``namespace`` from one index.

        Returns:
            Number of deleted documents

        Raises:
            OpenSearchError: If the deletion fails
        """
        index_name = self.index_for(index_type)
        query = {'query': {'term': {'namespace': namespace}}}

        try:
            response = self.client.delete_by_query(index=index_name, body=query, params={'refresh': 'true'})
            deleted = int(response.get('deleted', 0))
            logger.debug(f'Deleted {deleted} documents of {namespace} from {index_name}')
            return deleted

        except OpenSearchException as e:
            logger.error(f'Error deleting namespace {namespace} from {index_name}: {e}')
            raise OpenSearchError(f'Failed to delete namespace: {e}')

    def cleanup(self) -> bool:
        """
        Drop every index owned by this client.

        Returns:
            True if cleanup was successful

        Raises:
            OpenSearchError: If an index cannot be deleted
        """
        try:
            for index_type in INDEX_TYPES:
                index_name = self.index_for(index_type)
                if self.client.indices.exists(index=index_name):
                    self.client.indices.delete(index=index_name)
                    logger.info(f'Deleted {index_type} index: {index_name}')
                else:
                    logger.info(f'{index_type} index {index_name} does not exist')
            return True

        except OpenSearchException as e:
            logger.error(f'Error during OpenSearch cleanup: {e}')
            raise OpenSearchError(f'Failed to cleanup OpenSearch: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_for('memory'))
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
