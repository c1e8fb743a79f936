"""
Core data models for the companion memory orchestration layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from urllib.parse import quote


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode(component: str) -> str:
    # Percent-encoding every reserved character keeps the joined key injective.
    return quote(component, safe='')


class Role(str, Enum):
    """Speaker of a transcript entry."""
    USER = 'user'
    COMPANION = 'companion'


class NamespaceState(str, Enum):
    """Seeding state of a conversation namespace."""
    UNSEEDED = 'unseeded'
    SEEDED = 'seeded'


class Admission(str, Enum):
    """Rate limiter decision."""
    ALLOWED = 'allowed'
    THROTTLED = 'throttled'


class TurnStatus(str, Enum):
    """Outcome of preparing a conversational turn."""
    OK = 'ok'
    THROTTLED = 'throttled'
    NOT_FOUND = 'not_found'


@dataclass(frozen=True)
class IdentityKey:
    """Identifies one (companion, model, user) conversation.

    The namespace derived from the key partitions both the transcript store and
    the vector memory, so a companion's memories never reach another companion
    and one user's turns never reach another user.
    """
    companion_id: str
    model_name: str
    user_id: str

    def __post_init__(self):
        for name in ('companion_id', 'model_name', 'user_id'):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f'{name} is required')

    @property
    def namespace(self) -> str:
        return ':'.join(_encode(part) for part in (self.companion_id, self.model_name, self.user_id))

    @property
    def rate_limit_key(self) -> str:
        # quote() leaves '-' alone but always escapes '/', so only '/' is a safe separator.
        return f'{_encode(self.user_id)}/{_encode(self.companion_id)}'


@dataclass(frozen=True)
class HistoryEntry:
    """One transcript turn. Entries are never updated once written."""
    speaker: Role
    text: str
    sequence: int
    created_at: datetime = field(default_factory=_utcnow)

    def as_line(self) -> str:
        """Render the entry as a transcript line.

        Seed turns already carry their speaker label ("Name: ..."), and replies
        are written without one, so only user turns get a prefix.
        """
        if self.speaker == Role.USER:
            return f'{Role.USER.value}: {self.text}'
        return self.text


@dataclass(frozen=True)
class VectorRecord:
    """A passage stored in long-term memory."""
    embedding_id: str
    text: str
    source_namespace: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ConversationContext:
    """Context assembled for a single turn; never shared between turns."""
    recent_history: List[HistoryEntry] = field(default_factory=list)
    retrieved_passages: List[str] = field(default_factory=list)

    def transcript(self) -> str:
        return '\n'.join(entry.as_line() for entry in self.recent_history)


@dataclass
class TurnResult:
    """Result of MemoryOrchestrator.prepare_turn."""
    status: TurnStatus
    context: Optional[ConversationContext] = None

    @property
    def ok(self) -> bool:
        return self.status == TurnStatus.OK


@dataclass(frozen=True)
class CompanionProfile:
    """Persona fields supplied by the companion metadata collaborator."""
    companion_id: str
    name: str
    instructions: str
    seed: str
