"""
Settings for Bedrock, OpenSearch, the relational store and the MCP server.

Values come from the environment (a ``.env`` file is honoured); every section
has a default that works for local development except the AWS endpoints.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _aws_region(prefix: str) -> str:
    return _env(f'{prefix}_AWS_REGION', _env('AWS_REGION', 'us-east-1'))


@dataclass
class BedrockLLMConfig:
    """Completion model used by the analysis tools."""
    region: str
    model_id: str
    max_tokens: int = 4000
    temperature: float = 0.2
    retry_attempts: int = 3
    retry_delay: float = 1.0

    @classmethod
    def from_env(cls) -> 'BedrockLLMConfig':
        return cls(region=_aws_region('BEDROCK_LLM'),
                   model_id=_env('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                   max_tokens=_env_int('BEDROCK_LLM_MAX_TOKENS', cls.max_tokens),
                   temperature=_env_float('BEDROCK_LLM_TEMPERATURE', cls.temperature),
                   retry_attempts=_env_int('BEDROCK_LLM_RETRY_ATTEMPTS', cls.retry_attempts),
                   retry_delay=_env_float('BEDROCK_LLM_RETRY_DELAY', cls.retry_delay))


@dataclass
class BedrockEmbedConfig:
    """Embedding model; ``dimension`` must equal the vector index dimension."""
    region: str
    model_id: str
    dimension: int = 1024
    retry_attempts: int = 3
    retry_delay: float = 1.0

    @classmethod
    def from_env(cls) -> 'BedrockEmbedConfig':
        return cls(region=_aws_region('BEDROCK_EMBED'),
                   model_id=_env('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                   dimension=_env_int('BEDROCK_EMBED_DIMENSION', cls.dimension),
                   retry_attempts=_env_int('BEDROCK_EMBED_RETRY_ATTEMPTS', cls.retry_attempts),
                   retry_delay=_env_float('BEDROCK_EMBED_RETRY_DELAY', cls.retry_delay))


@dataclass
class OpenSearchConfig:
    """OpenSearch Serverless collection holding the email vectors."""
    endpoint: str
    port: int = 443
    region: str = 'us-east-1'
    index_name: str = 'email_memories'
    dimension: int = 1024

    @classmethod
    def from_env(cls) -> 'OpenSearchConfig':
        return cls(endpoint=_env('OPENSEARCH_ENDPOINT', 'localhost'),
                   port=_env_int('OPENSEARCH_PORT', cls.port),
                   region=_aws_region('OPENSEARCH'),
                   index_name=_env('OPENSEARCH_INDEX', cls.index_name),
                   dimension=_env_int('OPENSEARCH_DIMENSION', cls.dimension))


@dataclass
class DatabaseConfig:
    """SQLAlchemy URL of the relational store."""
    url: str = 'sqlite:///email_memory.db'
    echo: bool = False

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        return cls(url=_env('DATABASE_URL', cls.url), echo=_env_flag('DATABASE_ECHO'))


@dataclass
class MemoryConfig:
    """Owner and result-size defaults for the email memory services."""
    default_owner: str = 'default'
    min_similarity_score: float = 0.0
    search_top_k: int = 20
    similar_top_k: int = 5
    summary_limit: int = 10
    suggestion_limit: int = 20

    @classmethod
    def from_env(cls) -> 'MemoryConfig':
        return cls(default_owner=_env('MEMORY_DEFAULT_OWNER', cls.default_owner),
                   min_similarity_score=_env_float('MEMORY_MIN_SIMILARITY_SCORE', cls.min_similarity_score),
                   search_top_k=_env_int('MEMORY_SEARCH_TOP_K', cls.search_top_k),
                   similar_top_k=_env_int('MEMORY_SIMILAR_TOP_K', cls.similar_top_k),
                   summary_limit=_env_int('MEMORY_SUMMARY_LIMIT', cls.summary_limit),
                   suggestion_limit=_env_int('MEMORY_SUGGESTION_LIMIT', cls.suggestion_limit))


@dataclass
class MCPConfig:
    """Transport for the MCP server: stdio, sse or streamable-http."""
    transport: str = 'sse'
    host: str = '127.0.0.1'
    port: int = 8000

    @classmethod
    def from_env(cls) -> 'MCPConfig':
        return cls(transport=_env('MCP_TRANSPORT', cls.transport),
                   host=_env('MCP_HOST', cls.host),
                   port=_env_int('MCP_PORT', cls.port))


@dataclass
class AppConfig:
    """All settings of one email memory deployment."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    database: DatabaseConfig
    memory: MemoryConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Build the configuration from the current environment."""
    return AppConfig(environment=_env('ENVIRONMENT', 'development'),
                     log_level=_env('LOG_LEVEL', 'INFO'),
                     bedrock_llm=BedrockLLMConfig.from_env(),
                     bedrock_embed=BedrockEmbedConfig.from_env(),
                     opensearch=OpenSearchConfig.from_env(),
                     database=DatabaseConfig.from_env(),
                     memory=MemoryConfig.from_env(),
                     mcp=MCPConfig.from_env())


config = load_config()
