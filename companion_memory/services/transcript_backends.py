"""
Storage backends for the short-term transcript.

A backend only stores and returns entries; sequencing, seeding and per-namespace
write serialization live in HistoryStore.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

from ..models.core import HistoryEntry, Role
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from .errors import SequenceConflictError, TranscriptBackendError

logger = get_logger(__name__)

# Upper bound for an unbounded range read against OpenSearch (index.max_result_window).
MAX_RANGE = 10000


class TranscriptBackend(ABC):
    """Append-only transcript storage keyed by namespace."""

    @abstractmethod
    def is_seeded(self, namespace: str) -> bool:
        """True once a seed marker or any entry exists for ``namespace``."""

    @abstractmethod
    def mark_seeded(self, namespace: str) -> bool:
        """Persist the seed marker. Returns False if it was already set."""

    @abstractmethod
    def last_sequence(self, namespace: str) -> int:
        """Highest stored sequence number, 0 for an empty namespace."""

    @abstractmethod
    def insert(self, namespace: str, entry: HistoryEntry) -> None:
        """Store ``entry``; raise SequenceConflictError if its sequence is taken."""

    @abstractmethod
    def recent(self, namespace: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Newest ``limit`` entries (all if None) in ascending sequence order."""

    @abstractmethod
    def clear(self, namespace: str) -> None:
        """Remove every entry and the seed marker of ``namespace``."""

    @abstractmethod
    def cleanup_expired(self, ttl_seconds: int) -> List[str]:
        """Reclaim namespaces idle for longer than ``ttl_seconds``; return their names."""


class InMemoryTranscriptBackend(TranscriptBackend):
    """Process-local backend for development and tests.

    A single re-entrant lock guards the maps, so readers always get a copy that
    reflects whole appends only. With ``ttl_seconds`` set, a namespace that has
    not been touched for that long is dropped on its next access and reported
    by the next cleanup_expired call. Sequences must be contiguous, so a writer
    holding a stale sequence for a dropped namespace gets a conflict.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.time
        self._lock = threading.RLock()
        self._entries: Dict[str, List[HistoryEntry]] = {}
        self._seeded: Set[str] = set()
        self._last_active: Dict[str, float] = {}
        # Namespaces dropped on access since the last cleanup_expired call.
        self._reclaimed: Set[str] = set()

    def _drop(self, namespace: str) -> None:
        self._entries.pop(namespace, None)
        self._seeded.discard(namespace)
        self._last_active.pop(namespace, None)

    def _expire_if_idle(self, namespace: str) -> None:
        if self.ttl_seconds is None:
            return
        last_active = self._last_active.get(namespace)
        if last_active is not None and self._clock() - last_active > self.ttl_seconds:
            logger.info(f'Reclaiming idle namespace {namespace}')
            self._drop(namespace)
            self._reclaimed.add(namespace)

    def _touch(self, namespace: str) -> None:
        self._last_active[namespace] = self._clock()

    def is_seeded(self, namespace: str) -> bool:
        with self._lock:
            self._expire_if_idle(namespace)
            return namespace in self._seeded or bool(self._entries.get(namespace))

    def mark_seeded(self, namespace: str) -> bool:
        with self._lock:
            self._expire_if_idle(namespace)
            if namespace in self._seeded:
                return False
            self._seeded.add(namespace)
            self._touch(namespace)
            return True

    def last_sequence(self, namespace: str) -> int:
        with self._lock:
            self._expire_if_idle(namespace)
            entries = self._entries.get(namespace)
            return entries[-1].sequence if entries else 0

    def insert(self, namespace: str, entry: HistoryEntry) -> None:
        with self._lock:
            self._expire_if_idle(namespace)
            entries = self._entries.setdefault(namespace, [])
            expected = entries[-1].sequence + 1 if entries else 1
            if entry.sequence != expected:
                raise SequenceConflictError(f'Sequence {entry.sequence} rejected in {namespace}, next is {expected}')
            entries.append(entry)
            self._touch(namespace)

    def recent(self, namespace: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        with self._lock:
            self._expire_if_idle(namespace)
            entries = self._entries.get(namespace, [])
            if entries:
                self._touch(namespace)
            if limit is None:
                return list(entries)
            return list(entries[-limit:]) if limit > 0 else []

    def clear(self, namespace: str) -> None:
        with self._lock:
            self._drop(namespace)

    def cleanup_expired(self, ttl_seconds: int) -> List[str]:
        with self._lock:
            cutoff = self._clock() - ttl_seconds
            stale = [ns for ns, last_active in self._last_active.items() if last_active < cutoff]
            for namespace in stale:
                self._drop(namespace)
            reclaimed = sorted(self._reclaimed.union(stale))
            self._reclaimed.clear()
            return reclaimed


def _entry_id(namespace: str, sequence: int) -> str:
    return f'{namespace}#{sequence:012d}'


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class OpenSearchTranscriptBackend(TranscriptBackend):
    """Durable transcript storage on OpenSearch.

    Entries go to the ``history`` index with id ``<namespace>#<sequence>`` and
    are created with ``op_type=create``; a conflict means another process holds
    that sequence slot. The seed marker is a create-only document in the
    ``namespace`` index, which also tracks ``last_active`` for TTL cleanup.
    """

    def __init__(self, client: OpenSearchClient):
        self.client = client

        try:
            self.client.create_index_if_not_exists(index_type='history')
            self.client.create_index_if_not_exists(index_type='namespace')
        except OpenSearchError as e:
            logger.warning(f'Failed to create transcript indexes: {e}')

        logger.info('Initialized OpenSearchTranscriptBackend')

    def is_seeded(self, namespace: str) -> bool:
        try:
            if self.client.document_exists(namespace, index_type='namespace'):
                return True
        except OpenSearchError as e:
            raise TranscriptBackendError(f'Seed marker lookup failed: {e}')
        return self.last_sequence(namespace) > 0

    def mark_seeded(self, namespace: str) -> bool:
        now = _now_iso()
        marker = {'namespace': namespace, 'seeded_at': now, 'last_active': now}
        try:
            return self.client.create_document(marker, doc_id=namespace, index_type='namespace')
        except OpenSearchError as e:
            raise TranscriptBackendError(f'Seed marker write failed: {e}')

    def last_sequence(self, namespace: str) -> int:
        try:
            newest = self.client.namespace_documents(namespace, index_type='history', size=1)
        except OpenSearchError as e:
            raise TranscriptBackendError(f'Sequence lookup failed: {e}')
        return int(newest[0]['sequence']) if newest else 0

    def insert(self, namespace: str, entry: HistoryEntry) -> None:
        document = {
            'namespace': namespace,
            'sequence': entry.sequence,
            'speaker': entry.speaker.value,
            'text': entry.text,
            'created_at': entry.created_at.isoformat()
        }

        try:
            created = self.client.create_document(document,
                                                  doc_id=_entry_id(namespace, entry.sequence),
                                                  index_type='history')
        except OpenSearchError as e:
            raise TranscriptBackendError(f'Transcript append failed: {e}')

        if not created:
            raise SequenceConflictError(f'Sequence {entry.sequence} already used in {namespace}')

        try:
            self.client.update_document(namespace, {'last_active': _now_iso()}, index_type='namespace')
        except OpenSearchError as e:
            # The entry is durable; only idle tracking is behind.
            logger.warning(f'Failed to refresh last_active for {namespace}: {e}')

    def recent(self, namespace: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        try:
            documents = self.client.namespace_documents(namespace,
                                                        index_type='history',
                                                        size=MAX_RANGE if limit is None else max(limit, 0))
        except OpenSearchError as e:
            raise TranscriptBackendError(f'Transcript read failed: {e}')

        return [
            HistoryEntry(speaker=Role(doc['speaker']),
                         text=doc['text'],
                         sequence=int(doc['sequence']),
                         created_at=datetime.fromisoformat(doc['created_at'])) for doc in reversed(documents)
        ]

    def clear(self, namespace: str) -> None:
        try:
            self.client.delete_namespace(namespace, index_type='history')
            self.client.delete_namespace(namespace, index_type='namespace')
        except OpenSearchError as e:
            raise TranscriptBackendError(f'Clearing {namespace} failed: {e}')

    def cleanup_expired(self, ttl_seconds: int) -> List[str]:
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=ttl_seconds)).isoformat()

        try:
            stale = self.client.stale_namespaces(before=cutoff)
        except OpenSearchError as e:
            raise TranscriptBackendError(f'Transcript cleanup failed: {e}')

        for namespace in stale:
            self.clear(namespace)

        if stale:
            logger.info(f'Reclaimed {len(stale)} idle namespaces')
        return stale
