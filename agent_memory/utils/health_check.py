"""
Health check utilities for the memory engine backends.
"""

from typing import Any, Dict

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .database_client import DatabaseClient
from .logging_config import get_logger
from .neptune_client import NeptuneClient

logger = get_logger(__name__)


def check_health() -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status()

    all_healthy = all(status.get('healthy', False) for status in health_status.values())
    if all_healthy:
        logger.info('All system components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')

    return all_healthy


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check Bedrock LLM (only when profile refinement uses it)
    if config.profile.llm_enabled:
        try:
            llm = BedrockLLM(config.bedrock_llm)
            health_status['bedrock_llm'] = {
                'healthy': llm.health_check(),
                'service': 'Amazon Bedrock LLM',
                'model': config.bedrock_llm.model_id
            }
        except Exception as e:
            health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check Bedrock Embed
    try:
        embed = BedrockEmbed(config.bedrock_embed)
        health_status['bedrock_embed'] = {
            'healthy': embed.health_check(),
            'service': 'Amazon Bedrock Embed',
            'model': config.bedrock_embed.model_id
        }
    except Exception as e:
        health_status['bedrock_embed'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    # Check Neptune
    try:
        neptune = NeptuneClient(config.neptune)
        health_status['neptune'] = {
            'healthy': neptune.health_check(),
            'service': 'Amazon Neptune',
            'endpoint': config.neptune.endpoint
        }
    except Exception as e:
        health_status['neptune'] = {'healthy': False, 'service': 'Amazon Neptune', 'error': str(e)}

    # Check relational store
    try:
        database = DatabaseClient(config.database)
        health_status['database'] = {
            'healthy': database.health_check(),
            'service': 'Relational store',
            'dialect': database.engine.dialect.name
        }
    except Exception as e:
        health_status['database'] = {'healthy': False, 'service': 'Relational store', 'error': str(e)}

    return health_status


def get_system_info() -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'workspace-agent-memory',
        'version': '0.1.0',
        'environment': config.environment,
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'profile_refinement_enabled': config.profile.llm_enabled,
            'default_query_limit': config.memory.default_query_limit,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status()
    }
