"""
MCP interface exposing companion chat turns through fastmcp.
"""

from typing import Any, Dict

from fastmcp import FastMCP

from companion_memory.services.chat_service import CompanionChatService
from companion_memory.services.errors import ChatServiceError, StoreWriteError
from companion_memory.utils.config import config
from companion_memory.utils.health_check import get_health_status
from companion_memory.utils.logging_config import get_logger

logger = get_logger(__name__)

mcp = FastMCP('Companion Memory')
chat_service = CompanionChatService.from_config(config)


@mcp.tool()
def chat(user_id: str, companion_id: str, message: str, user_name: str = 'User') -> Dict[str, Any]:
    """Send a message to a companion and get its reply.

    Args:
        user_id: Authenticated user id
        companion_id: Companion to talk to
        message: User message
        user_name: Display name of the user

    Returns:
        Dict with 'status' (ok, throttled, not_found) and 'reply' when status is ok

    Raises:
        Exception: If the turn fails
    """
    if not user_id or not user_id.strip():
        raise ValueError('User ID is required')
    if not companion_id or not companion_id.strip():
        raise ValueError('Companion ID is required')

    try:
        result = chat_service.chat(user_id, companion_id, message, user_name=user_name)
    except (ChatServiceError, StoreWriteError) as e:
        logger.error(f'Chat turn failed for user {user_id}, companion {companion_id}: {e}')
        raise Exception(f'Chat failed: {e}')

    response = {'status': result.status.value}
    if result.reply is not None:
        response['reply'] = result.reply
    return response


@mcp.tool()
def health_status() -> Dict[str, Any]:
    """Report the health of the embedding model, completion model and OpenSearch."""
    orchestrator = chat_service.orchestrator
    return get_health_status(embed=orchestrator.vector_memory.embedder,
                             llm=chat_service.completion,
                             opensearch=orchestrator.vector_memory.index)


@mcp.tool()
def cleanup_expired_history() -> int:
    """Reclaim conversation transcripts idle longer than HISTORY_TTL_SECONDS. Returns the count."""
    return chat_service.orchestrator.history.cleanup_expired()


if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
