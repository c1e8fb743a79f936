"""
Exceptions raised by the memory orchestration services.

Retrieval-path failures (embedding or vector search) are not represented here:
they are absorbed by VectorMemoryStore and degrade to an empty result.
"""


class TranscriptBackendError(Exception):
    """Custom exception for transcript backend failures."""
    pass


class SequenceConflictError(TranscriptBackendError):
    """Another writer already stored an entry with this sequence number."""
    pass


class StoreWriteError(Exception):
    """A transcript write did not become durable; the turn must not proceed."""
    pass


class CatalogError(Exception):
    """Custom exception for companion catalog errors."""
    pass


class ChatServiceError(Exception):
    """Custom exception for chat turn failures outside the memory layer."""
    pass
