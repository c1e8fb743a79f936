"""
End-to-end chat turn: prepare context, prompt the model, commit the reply.
"""

from dataclasses import dataclass
from typing import Optional

from ..models.core import IdentityKey, TurnStatus
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import AppConfig
from ..utils.logging_config import get_logger
from .errors import ChatServiceError
from .orchestrator import MemoryOrchestrator
from .prompt_builder import build_prompt

logger = get_logger(__name__)

# Keeps the model from writing the user's next line of the transcript.
TRANSCRIPT_USER_CUE = '\nuser:'


@dataclass
class ChatResult:
    """Outcome of one chat turn."""
    status: TurnStatus
    reply: Optional[str] = None
    committed: bool = False


class CompanionChatService:
    """Drives a full turn for the chat endpoint."""

    def __init__(self, orchestrator: MemoryOrchestrator, completion: BedrockLLM, model_name: str):
        """
        Initialize the chat service.

        Args:
            orchestrator: Memory orchestrator shared by all handlers
            completion: Completion collaborator exposing complete(prompt, stop_sequences) -> str
            model_name: Model name used in every IdentityKey
        """
        self.orchestrator = orchestrator
        self.completion = completion
        self.model_name = model_name

    @classmethod
    def from_config(cls, config: AppConfig) -> 'CompanionChatService':
        return cls(orchestrator=MemoryOrchestrator.from_config(config),
                   completion=BedrockLLM(config.bedrock_llm),
                   model_name=config.memory.model_name)

    def identity(self, user_id: str, companion_id: str) -> IdentityKey:
        return IdentityKey(companion_id=companion_id, model_name=self.model_name, user_id=user_id)

    def chat(self, user_id: str, companion_id: str, message: str, user_name: str = 'User') -> ChatResult:
        """
        Answer ``message`` as the companion.

        Args:
            user_id: Authenticated user id
            companion_id: Companion being talked to
            message: User message
            user_name: Display name used in the persona line

        Returns:
            ChatResult; THROTTLED and NOT_FOUND carry no reply

        Raises:
            ChatServiceError: If the completion model fails
            StoreWriteError: If the transcript could not be written
        """
        identity = self.identity(user_id, companion_id)

        turn = self.orchestrator.prepare_turn(identity, message)
        if not turn.ok:
            return ChatResult(status=turn.status)

        companion = self.orchestrator.catalog.get(companion_id)
        if companion is None:
            logger.warning(f'Companion {companion_id} disappeared after its namespace was seeded')
            return ChatResult(status=TurnStatus.NOT_FOUND)

        prompt = build_prompt(turn.context, companion, user_name=user_name)

        try:
            reply = self.completion.complete(prompt, stop_sequences=[TRANSCRIPT_USER_CUE])
        except BedrockLLMError as e:
            # The user utterance stays recorded; the next turn resumes from it.
            logger.error(f'Completion failed for {identity.namespace}: {e}')
            raise ChatServiceError(f'Completion failed: {e}')

        committed = self.orchestrator.commit_reply(identity, reply)
        return ChatResult(status=TurnStatus.OK, reply=reply.strip(), committed=committed)
