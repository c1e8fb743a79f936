"""
Long-term semantic memory: embed, upsert and namespace-scoped similarity search.
"""

import uuid
from typing import List, Optional

from ..models.core import VectorRecord
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)


class VectorMemoryStore:
    """Stores transcript passages as vectors and retrieves the nearest ones per namespace.

    Retrieval only enriches a turn, so embedding or search failures are logged
    and reported as an empty result instead of being raised.
    """

    def __init__(self, embedder: BedrockEmbed, index: OpenSearchClient):
        """
        Initialize the vector memory store.

        Args:
            embedder: Embedding client for passages and queries
            index: OpenSearch client holding the memory index
        """
        self.embedder = embedder
        self.index = index

        try:
            self.index.create_index_if_not_exists(index_type='memory')
        except OpenSearchError as e:
            logger.warning(f'Failed to create memory index: {e}')

        logger.info('Initialized VectorMemoryStore')

    def upsert(self, namespace: str, text: str, embedding: Optional[List[float]] = None) -> Optional[str]:
        """
        Store ``text`` as a long-term memory of ``namespace``.

        Args:
            namespace: Conversation namespace the record belongs to
            text: Passage to remember
            embedding: Precomputed embedding, computed from ``text`` if None

        Returns:
            The new record's embedding id, or None if nothing was stored
        """
        if not text or not text.strip():
            logger.debug('Empty text provided for memory upsert')
            return None

        record = VectorRecord(embedding_id=str(uuid.uuid4()), text=text, source_namespace=namespace)

        try:
            vector = embedding if embedding is not None else self.embedder.embed_document(text)
            document = {
                'embedding_id': record.embedding_id,
                'namespace': record.source_namespace,
                'text': record.text,
                'embedding': vector,
                'created_at': record.created_at.isoformat()
            }
            # OpenSearch assigns the document id; serverless vector collections reject custom ones.
            stored = self.index.index_document(document, index_type='memory')

        except (BedrockEmbedError, OpenSearchError) as e:
            logger.warning(f'Memory upsert skipped for {namespace}, upstream unavailable: {e}')
            return None

        return record.embedding_id if stored else None

    def search(self, query_text: str, namespace: str, k: int = 3) -> List[str]:
        """
        Find the passages of ``namespace`` most similar to ``query_text``.

        Args:
            query_text: Text to embed as the query
            namespace: Only records of this namespace are eligible
            k: Maximum number of passages

        Returns:
            Passage texts ordered by decreasing similarity, empty on upstream failure
        """
        if k < 1 or not query_text or not query_text.strip():
            return []

        try:
            query_vector = self.embedder.embed_query(query_text)
            hits = self.index.vector_search(query_vector, namespace=namespace, top_k=k, index_type='memory')

        except (BedrockEmbedError, OpenSearchError) as e:
            logger.warning(f'Memory search degraded to empty result for {namespace}: {e}')
            return []

        hits = [hit for hit in hits if hit['document'].get('namespace') == namespace]
        hits.sort(key=lambda hit: hit['score'], reverse=True)

        passages = [hit['document'].get('text', '') for hit in hits[:k]]
        logger.debug(f'Retrieved {len(passages)} passages for {namespace}')
        return [passage for passage in passages if passage]
