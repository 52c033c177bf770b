"""
Configuration management for AWS services, storage backends and memory engine settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database (openCypher HTTPS endpoint)."""
    endpoint: str
    port: int
    region: str
    iam_auth: bool
    use_ssl: bool
    timeout_seconds: float


@dataclass
class DatabaseConfig:
    """Configuration for the relational store holding canonical memory rows."""
    url: str
    echo: bool


@dataclass
class MemoryConfig:
    """Configuration for memory ingestion and retrieval."""
    default_query_limit: int
    summary_max_length: int
    default_day_window: int
    min_activity_ms: int


@dataclass
class ProfileConfig:
    """Configuration for behavioral profile distillation."""
    llm_enabled: bool
    primary_window_days: int
    extended_window_days: int
    fetch_limit: int
    expected_sources: int
    collaboration_ratio: float


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    database: DatabaseConfig
    memory: MemoryConfig
    profile: ProfileConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'),
                                   iam_auth=_env_bool('NEPTUNE_IAM_AUTH', 'true'),
                                   use_ssl=_env_bool('NEPTUNE_USE_SSL', 'true'),
                                   timeout_seconds=float(os.getenv('NEPTUNE_TIMEOUT_SECONDS', '30')))

    # Relational store configuration
    database_config = DatabaseConfig(url=os.getenv('DATABASE_URL', 'sqlite:///data/agent_memory.db'),
                                     echo=_env_bool('DATABASE_ECHO', 'false'))

    # Memory configuration
    memory_config = MemoryConfig(default_query_limit=int(os.getenv('MEMORY_DEFAULT_QUERY_LIMIT', '20')),
                                 summary_max_length=int(os.getenv('MEMORY_SUMMARY_MAX_LENGTH', '160')),
                                 default_day_window=int(os.getenv('MEMORY_DEFAULT_DAY_WINDOW', '14')),
                                 min_activity_ms=int(os.getenv('MEMORY_MIN_ACTIVITY_MS', '10000')))

    # Profile distillation configuration
    profile_config = ProfileConfig(llm_enabled=_env_bool('PROFILE_LLM_ENABLED', 'true'),
                                   primary_window_days=int(os.getenv('PROFILE_PRIMARY_WINDOW_DAYS', '90')),
                                   extended_window_days=int(os.getenv('PROFILE_EXTENDED_WINDOW_DAYS', '365')),
                                   fetch_limit=int(os.getenv('PROFILE_FETCH_LIMIT', '400')),
                                   expected_sources=int(os.getenv('PROFILE_EXPECTED_SOURCES', '8')),
                                   collaboration_ratio=float(os.getenv('PROFILE_COLLABORATION_RATIO', '0.2')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     database=database_config,
                     memory=memory_config,
                     profile=profile_config)


# Global configuration instance
config = load_config()
