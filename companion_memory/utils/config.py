"""
Configuration management for AWS services, stores and memory orchestration settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for the Amazon Bedrock completion model."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for the Amazon Bedrock embedding model."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch (vector memory and durable transcripts)."""
    endpoint: str
    port: int
    region: str
    service: str
    index_name: str
    dimension: int
    index_sync_delay: float


@dataclass
class RateLimitConfig:
    """Fixed-window admission budget per identity."""
    max_requests: int
    window_seconds: float


@dataclass
class HistoryConfig:
    """Configuration for the short-term transcript store."""
    backend: str  # 'memory', or 'opensearch' on a managed domain (service 'es')
    recent_window: int
    max_chars: Optional[int]
    seed_delimiter: str
    ttl_seconds: Optional[int]


@dataclass
class MemoryConfig:
    """Configuration for context assembly and long-term memory."""
    model_name: str
    search_top_k: int
    min_reply_length: int


@dataclass
class CatalogConfig:
    """Location of the companion profile catalog."""
    path: str


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    rate_limit: RateLimitConfig
    history: HistoryConfig
    memory: MemoryConfig
    catalog: CatalogConfig
    mcp: MCPConfig


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, '').strip()
    return int(value) if value else None


def _decode_escapes(value: str) -> str:
    # Lets .env files spell the delimiter as a literal "\n\n".
    return value.replace('\\n', '\n').replace('\\t', '\t')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '1024')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'companion_memory'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         index_sync_delay=float(os.getenv('OPENSEARCH_INDEX_SYNC_DELAY', '15')))

    rate_limit_config = RateLimitConfig(max_requests=int(os.getenv('RATE_LIMIT_MAX_REQUESTS', '10')),
                                        window_seconds=float(os.getenv('RATE_LIMIT_WINDOW_SECONDS', '10')))

    history_config = HistoryConfig(backend=os.getenv('HISTORY_BACKEND', 'memory').lower(),
                                   recent_window=int(os.getenv('HISTORY_RECENT_WINDOW', '30')),
                                   max_chars=_optional_int('HISTORY_MAX_CHARS'),
                                   seed_delimiter=_decode_escapes(os.getenv('HISTORY_SEED_DELIMITER', '\\n\\n')),
                                   ttl_seconds=_optional_int('HISTORY_TTL_SECONDS'))

    memory_config = MemoryConfig(model_name=os.getenv('MEMORY_MODEL_NAME', 'llama2-13b'),
                                 search_top_k=int(os.getenv('MEMORY_SEARCH_TOP_K', '3')),
                                 min_reply_length=int(os.getenv('MEMORY_MIN_REPLY_LENGTH', '3')))

    catalog_config = CatalogConfig(path=os.getenv('COMPANION_CATALOG_PATH', 'companions.json'))

    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     rate_limit=rate_limit_config,
                     history=history_config,
                     memory=memory_config,
                     catalog=catalog_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
