"""
Health check utilities for the memory layer's upstream services.
"""

from typing import Any, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import AppConfig
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def get_health_status(embed: Optional[BedrockEmbed] = None,
                      llm: Optional[BedrockLLM] = None,
                      opensearch: Optional[OpenSearchClient] = None) -> Dict[str, Dict[str, Any]]:
    """Probe each supplied component.

    Args:
        embed: Embedding client
        llm: Completion client
        opensearch: OpenSearch client

    Returns:
        Dictionary with health status of each component that was supplied
    """
    components = {
        'bedrock_embed': (embed, 'Amazon Bedrock Embed'),
        'bedrock_llm': (llm, 'Amazon Bedrock LLM'),
        'opensearch': (opensearch, 'Amazon OpenSearch'),
    }

    health_status = {}
    for key, (component, service) in components.items():
        if component is None:
            continue
        try:
            health_status[key] = {'healthy': bool(component.health_check()), 'service': service}
        except Exception as e:
            health_status[key] = {'healthy': False, 'service': service, 'error': str(e)}

    return health_status


def check_health(config: AppConfig) -> bool:
    """Check every upstream service named in ``config``.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(embed=BedrockEmbed(config.bedrock_embed),
                                          llm=BedrockLLM(config.bedrock_llm),
                                          opensearch=OpenSearchClient(config.opensearch))
    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False

    all_healthy = all(status.get('healthy', False) for status in health_status.values())
    if all_healthy:
        logger.info('All upstream components are healthy')
    else:
        logger.warning('Some upstream components are unhealthy')
    return all_healthy
