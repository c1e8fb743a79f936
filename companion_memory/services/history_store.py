"""
Short-term transcript buffer with seed-once and single-writer guarantees.
"""

from typing import Dict, List, Optional

from ..models.core import HistoryEntry, NamespaceState, Role
from ..utils.config import HistoryConfig
from ..utils.keyed_lock import KeyedLock
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from .errors import SequenceConflictError, StoreWriteError, TranscriptBackendError
from .transcript_backends import InMemoryTranscriptBackend, OpenSearchTranscriptBackend, TranscriptBackend

logger = get_logger(__name__)

# Attempts to find a free sequence slot when other processes keep winning it.
MAX_SEQUENCE_RETRIES = 5


def split_seed(seed_text: str, delimiter: str) -> List[str]:
    """Split canonical seed material into ordered, non-blank turns."""
    if not delimiter:
        raise ValueError('Seed delimiter must not be empty')
    return [turn.strip() for turn in seed_text.split(delimiter) if turn.strip()]


class HistoryStore:
    """Append-only transcript per namespace.

    Seeding and appending for a namespace happen under that namespace's lock,
    so sequence numbers are assigned one writer at a time and the seed check
    and the seed write cannot interleave with another turn. Reads never take
    the lock; the backend hands out copies of fully written entries.
    """

    def __init__(self, backend: TranscriptBackend, ttl_seconds: Optional[int] = None):
        """
        Initialize the history store.

        Args:
            backend: Storage backend for transcript entries
            ttl_seconds: Idle time after which cleanup_expired reclaims a namespace
        """
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self._locks = KeyedLock()
        # Highest sequence written per namespace; only touched under that namespace's lock.
        self._sequences: Dict[str, int] = {}

    @classmethod
    def from_config(cls, config: HistoryConfig, opensearch: Optional[OpenSearchClient] = None) -> 'HistoryStore':
        if config.backend == 'memory':
            backend = InMemoryTranscriptBackend(ttl_seconds=config.ttl_seconds)
        elif config.backend == 'opensearch':
            if opensearch is None:
                raise ValueError('OpenSearch history backend requires an OpenSearchClient')
            # Serverless collections reject custom document ids, op_type=create and refresh.
            if opensearch.config.service != 'es':
                raise ValueError(f'OpenSearch history backend needs a managed domain (service "es"), '
                                 f'got "{opensearch.config.service}"')
            backend = OpenSearchTranscriptBackend(opensearch)
        else:
            raise ValueError(f'Unknown history backend: {config.backend}')
        return cls(backend, ttl_seconds=config.ttl_seconds)

    def state(self, namespace: str) -> NamespaceState:
        return NamespaceState.SEEDED if self.is_seeded(namespace) else NamespaceState.UNSEEDED

    def is_seeded(self, namespace: str) -> bool:
        try:
            return self.backend.is_seeded(namespace)
        except TranscriptBackendError as e:
            logger.error(f'Seed state lookup failed for {namespace}: {e}')
            raise StoreWriteError(f'Cannot determine seed state of {namespace}: {e}')

    def seed(self, namespace: str, seed_text: str, delimiter: str) -> bool:
        """
        Write the companion's opening material as the first entries of a namespace.

        Args:
            namespace: Conversation namespace
            seed_text: Canonical seed material
            delimiter: Separator between seed turns

        Returns:
            True if this call seeded the namespace, False if it was already seeded
            (including by a concurrent writer that won the seed marker)

        Raises:
            StoreWriteError: If the marker or a seed entry cannot be written. A partial
                seed is rolled back, leaving the namespace unseeded
        """
        turns = split_seed(seed_text, delimiter)

        with self._locks.hold(namespace):
            try:
                if self.backend.is_seeded(namespace):
                    logger.debug(f'Namespace {namespace} already seeded')
                    return False

                if not self.backend.mark_seeded(namespace):
                    logger.warning(f'Seed conflict on {namespace}: another writer seeded it first')
                    return False
            except TranscriptBackendError as e:
                logger.error(f'Seeding {namespace} failed: {e}')
                raise StoreWriteError(f'Seeding {namespace} failed: {e}')

            try:
                for turn in turns:
                    self._append_locked(namespace, Role.COMPANION, turn)
            except StoreWriteError:
                self._rollback_seed(namespace)
                raise

        logger.info(f'Seeded namespace {namespace} with {len(turns)} turns')
        return True

    def _rollback_seed(self, namespace: str) -> None:
        # Called under the namespace lock: return the namespace to unseeded so the next turn seeds it again.
        self._sequences.pop(namespace, None)
        try:
            self.backend.clear(namespace)
            logger.warning(f'Rolled back partial seed of {namespace}')
        except TranscriptBackendError as e:
            logger.error(f'Rollback of partial seed of {namespace} failed: {e}')

    def append(self, namespace: str, speaker: Role, text: str) -> HistoryEntry:
        """
        Append one entry with the next sequence number.

        Returns:
            The stored entry

        Raises:
            StoreWriteError: If the entry could not be stored durably
        """
        with self._locks.hold(namespace):
            return self._append_locked(namespace, speaker, text)

    def _next_sequence(self, namespace: str) -> int:
        if namespace not in self._sequences:
            self._sequences[namespace] = self.backend.last_sequence(namespace)
        return self._sequences[namespace] + 1

    def _append_locked(self, namespace: str, speaker: Role, text: str) -> HistoryEntry:
        for attempt in range(MAX_SEQUENCE_RETRIES):
            try:
                entry = HistoryEntry(speaker=speaker, text=text, sequence=self._next_sequence(namespace))
                self.backend.insert(namespace, entry)
            except SequenceConflictError as e:
                logger.warning(f'Sequence conflict on {namespace} (attempt {attempt + 1}/{MAX_SEQUENCE_RETRIES}): {e}')
                self._sequences.pop(namespace, None)
                continue
            except TranscriptBackendError as e:
                self._sequences.pop(namespace, None)
                logger.error(f'Transcript append failed for {namespace}: {e}')
                raise StoreWriteError(f'Append to {namespace} failed: {e}')

            self._sequences[namespace] = entry.sequence
            return entry

        raise StoreWriteError(f'Append to {namespace} failed after {MAX_SEQUENCE_RETRIES} sequence conflicts')

    def read_recent(self,
                    namespace: str,
                    limit: Optional[int] = None,
                    max_chars: Optional[int] = None) -> List[HistoryEntry]:
        """
        Read the newest entries of a namespace, oldest first.

        Args:
            namespace: Conversation namespace
            limit: Keep at most this many of the newest entries
            max_chars: Drop the oldest entries until the rendered lines fit; the
                newest entry is always kept

        Returns:
            Entries in ascending sequence order

        Raises:
            TranscriptBackendError: If the backend cannot be read
        """
        entries = self.backend.recent(namespace, limit)

        if max_chars is not None:
            total = sum(len(entry.as_line()) + 1 for entry in entries)
            while len(entries) > 1 and total > max_chars:
                total -= len(entries[0].as_line()) + 1
                entries = entries[1:]

        return entries

    def cleanup_expired(self) -> int:
        """Reclaim idle namespaces according to the configured TTL. Returns how many were reclaimed."""
        if self.ttl_seconds is None:
            return 0

        reclaimed = self.backend.cleanup_expired(self.ttl_seconds)
        for namespace in reclaimed:
            with self._locks.hold(namespace):
                self._sequences.pop(namespace, None)
        return len(reclaimed)

    def cached_namespaces(self) -> int:
        """Number of namespaces whose last sequence is cached."""
        return len(self._sequences)
