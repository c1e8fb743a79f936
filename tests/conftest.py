"""
Shared pytest fixtures and in-process doubles for the memory orchestration tests.

The doubles stand in for Amazon Bedrock and OpenSearch so the orchestration
logic can be exercised without network access.
"""

import math
import re
import threading
from typing import Any, Dict, List, Optional

import pytest

from companion_memory.models.core import CompanionProfile, IdentityKey
from companion_memory.services.companion_catalog import InMemoryCompanionCatalog
from companion_memory.services.history_store import HistoryStore
from companion_memory.services.orchestrator import MemoryOrchestrator
from companion_memory.services.rate_limiter import FixedWindowRateLimiter
from companion_memory.services.transcript_backends import InMemoryTranscriptBackend
from companion_memory.services.vector_memory import VectorMemoryStore
from companion_memory.utils.bedrock_embed import BedrockEmbedError
from companion_memory.utils.bedrock_llm import BedrockLLMError
from companion_memory.utils.opensearch_client import OpenSearchError

DIMENSION = 512


# =============================================================================
# DOUBLES
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbedder:
    """Bag-of-words embedder over a growing vocabulary: shared words mean similar vectors."""

    def __init__(self):
        self._vocabulary: Dict[str, int] = {}
        self._vocabulary_lock = threading.Lock()
        self.fail = False
        self.documents: List[str] = []
        self.queries: List[str] = []

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * DIMENSION
        for word in re.findall(r'\w+', text.lower()):
            with self._vocabulary_lock:
                bucket = self._vocabulary.setdefault(word, len(self._vocabulary)) % DIMENSION
            vector[bucket] += 1.0
        return vector

    def embed_document(self, text: str) -> List[float]:
        if self.fail:
            raise BedrockEmbedError('embedding backend unreachable')
        self.documents.append(text)
        return self._vector(text)

    def embed_query(self, text: str) -> List[float]:
        if self.fail:
            raise BedrockEmbedError('embedding backend unreachable')
        self.queries.append(text)
        return self._vector(text)


def _cosine(a: List[float], b: List[float]) -> float:
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if not norm:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / norm


class FakeVectorIndex:
    """k-NN index with the same call surface VectorMemoryStore uses on OpenSearchClient."""

    def __init__(self):
        self.fail = False
        self.documents: List[Dict[str, Any]] = []
        self.doc_ids: List[Optional[str]] = []

    def create_index_if_not_exists(self, index_type: str = 'memory') -> str:
        return 'exists'

    def index_document(self, document: Dict[str, Any], index_type: str = 'memory', doc_id: Optional[str] = None,
                       refresh: Optional[str] = None) -> bool:
        if self.fail:
            raise OpenSearchError('index unreachable')
        self.documents.append(dict(document))
        self.doc_ids.append(doc_id)
        return True

    def vector_search(self, query_vector: List[float], namespace: str, top_k: int = 3,
                      index_type: str = 'memory') -> List[Dict[str, Any]]:
        if self.fail:
            raise OpenSearchError('index unreachable')
        hits = [{
            'id': doc['embedding_id'],
            'score': _cosine(query_vector, doc['embedding']),
            'document': {k: v for k, v in doc.items() if k != 'embedding'}
        } for doc in self.documents if doc['namespace'] == namespace]
        hits.sort(key=lambda hit: hit['score'], reverse=True)
        return hits[:top_k]

    def health_check(self) -> bool:
        return not self.fail


class FakeCompletion:
    """Completion collaborator returning canned replies."""

    def __init__(self, reply: str = "That's a great question!"):
        self.reply = reply
        self.fail = False
        self.prompts: List[str] = []
        self.stop_sequences: Optional[List[str]] = None

    def complete(self, prompt: str, stop_sequences: Optional[List[str]] = None) -> str:
        self.prompts.append(prompt)
        self.stop_sequences = stop_sequences
        if self.fail:
            raise BedrockLLMError('model unavailable')
        return self.reply


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> InMemoryTranscriptBackend:
    return InMemoryTranscriptBackend()


@pytest.fixture
def history(backend) -> HistoryStore:
    return HistoryStore(backend)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vector_index() -> FakeVectorIndex:
    return FakeVectorIndex()


@pytest.fixture
def vector_memory(embedder, vector_index) -> VectorMemoryStore:
    return VectorMemoryStore(embedder, vector_index)


@pytest.fixture
def companion() -> CompanionProfile:
    return CompanionProfile(companion_id='c1',
                            name='Elon',
                            instructions='You are a visionary entrepreneur.',
                            seed='Hi: A\nHi: B')


@pytest.fixture
def catalog(companion) -> InMemoryCompanionCatalog:
    return InMemoryCompanionCatalog([companion])


@pytest.fixture
def rate_limiter(clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(max_requests=100, window_seconds=10, clock=clock)


@pytest.fixture
def orchestrator(rate_limiter, history, vector_memory, catalog) -> MemoryOrchestrator:
    return MemoryOrchestrator(rate_limiter=rate_limiter,
                              history=history,
                              vector_memory=vector_memory,
                              catalog=catalog,
                              seed_delimiter='\n',
                              recent_window=30,
                              search_top_k=3,
                              min_reply_length=3)


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def identity() -> IdentityKey:
    return IdentityKey(companion_id='c1', model_name='llama2-13b', user_id='u1')
