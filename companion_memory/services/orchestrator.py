"""
Memory Orchestrator: admission, seed-once, transcript append and context assembly per turn.
"""

from typing import Optional

from ..models.core import Admission, ConversationContext, IdentityKey, Role, TurnResult, TurnStatus
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import AppConfig
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from .companion_catalog import CompanionCatalog, JsonCompanionCatalog
from .history_store import HistoryStore
from .rate_limiter import FixedWindowRateLimiter
from .vector_memory import VectorMemoryStore

logger = get_logger(__name__)


class MemoryOrchestrator:
    """Coordinates the rate limiter, transcript and long-term memory for each turn.

    A namespace moves from unseeded to seeded exactly once, on its first
    admitted turn. Writes happen first, under the namespace lock held by the
    HistoryStore; embedding and vector search run afterwards against the
    snapshot that was read back. The orchestrator keeps no state of its own and
    can be shared by all request handlers.
    """

    def __init__(self,
                 rate_limiter: FixedWindowRateLimiter,
                 history: HistoryStore,
                 vector_memory: VectorMemoryStore,
                 catalog: CompanionCatalog,
                 seed_delimiter: str = '\n\n',
                 recent_window: int = 30,
                 max_history_chars: Optional[int] = None,
                 search_top_k: int = 3,
                 min_reply_length: int = 3):
        """
        Initialize the orchestrator with its collaborators.

        Args:
            rate_limiter: Admission control per identity
            history: Short-term transcript store
            vector_memory: Long-term semantic memory
            catalog: Source of companion seed material
            seed_delimiter: Separator between seed turns
            recent_window: Number of newest entries included in the context
            max_history_chars: Character budget for the recent window (None = unbounded)
            search_top_k: Passages retrieved from long-term memory per turn
            min_reply_length: Replies shorter than this are not committed
        """
        self.rate_limiter = rate_limiter
        self.history = history
        self.vector_memory = vector_memory
        self.catalog = catalog
        self.seed_delimiter = seed_delimiter
        self.recent_window = recent_window
        self.max_history_chars = max_history_chars
        self.search_top_k = search_top_k
        self.min_reply_length = min_reply_length

    @classmethod
    def from_config(cls, config: AppConfig, catalog: Optional[CompanionCatalog] = None) -> 'MemoryOrchestrator':
        """Wire an orchestrator and its stores from application configuration."""
        opensearch = OpenSearchClient(config.opensearch)
        vector_memory = VectorMemoryStore(BedrockEmbed(config.bedrock_embed), opensearch)
        history = HistoryStore.from_config(config.history, opensearch=opensearch)

        return cls(rate_limiter=FixedWindowRateLimiter.from_config(config.rate_limit),
                   history=history,
                   vector_memory=vector_memory,
                   catalog=catalog or JsonCompanionCatalog(config.catalog.path),
                   seed_delimiter=config.history.seed_delimiter,
                   recent_window=config.history.recent_window,
                   max_history_chars=config.history.max_chars,
                   search_top_k=config.memory.search_top_k,
                   min_reply_length=config.memory.min_reply_length)

    def prepare_turn(self, identity: IdentityKey, user_utterance: str) -> TurnResult:
        """
        Record a user utterance and assemble the context for answering it.

        Args:
            identity: Conversation identity
            user_utterance: The new user message

        Returns:
            TurnResult with status OK and a ConversationContext, THROTTLED, or
            NOT_FOUND when the companion has no seed material

        Raises:
            ValueError: If the utterance is blank
            StoreWriteError: If the transcript could not be written
        """
        if not user_utterance or not user_utterance.strip():
            raise ValueError('User utterance is required')

        if self.rate_limiter.admit(identity.rate_limit_key) == Admission.THROTTLED:
            return TurnResult(status=TurnStatus.THROTTLED)

        namespace = identity.namespace

        if not self.history.is_seeded(namespace):
            companion = self.catalog.get(identity.companion_id)
            if companion is None or not companion.seed.strip():
                logger.warning(f'No seed material for companion {identity.companion_id}')
                return TurnResult(status=TurnStatus.NOT_FOUND)
            # A False return means a concurrent turn seeded first; continue as a normal append.
            self.history.seed(namespace, companion.seed, self.seed_delimiter)

        self.history.append(namespace, Role.USER, user_utterance.strip())

        recent = self.history.read_recent(namespace, limit=self.recent_window, max_chars=self.max_history_chars)
        context = ConversationContext(recent_history=recent)
        context.retrieved_passages = self.vector_memory.search(context.transcript(), namespace, self.search_top_k)

        logger.debug(f'Prepared turn for {namespace}: {len(recent)} recent entries, '
                     f'{len(context.retrieved_passages)} retrieved passages')
        return TurnResult(status=TurnStatus.OK, context=context)

    def commit_reply(self, identity: IdentityKey, reply_text: str) -> bool:
        """
        Persist the companion's reply to the transcript and long-term memory.

        Args:
            identity: Conversation identity
            reply_text: Completion returned by the model

        Returns:
            True if the reply was committed, False if it was too short

        Raises:
            StoreWriteError: If the transcript could not be written
        """
        reply = (reply_text or '').strip()
        if len(reply) < self.min_reply_length:
            logger.info(f'Discarding degenerate reply of length {len(reply)} for {identity.namespace}')
            return False

        namespace = identity.namespace
        self.history.append(namespace, Role.COMPANION, reply)
        self.vector_memory.upsert(namespace, reply)
        return True
