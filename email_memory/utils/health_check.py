"""
Health check utilities for the email memory service.
"""

from typing import Any, Callable, Dict

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient
from .relational_store import RelationalStore

logger = get_logger(__name__)


def _component_status(service: str, detail: Dict[str, Any], factory: Callable[[], Any]) -> Dict[str, Any]:
    try:
        healthy = factory().health_check()
        return {'healthy': healthy, 'service': service, **detail}
    except Exception as e:
        logger.warning(f'{service} health check raised: {e}')
        return {'healthy': False, 'service': service, 'error': str(e)}


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    return {
        'bedrock_llm': _component_status('Amazon Bedrock LLM', {'model': config.bedrock_llm.model_id},
                              lambda: BedrockLLM(config.bedrock_llm)),
        'bedrock_embed': _component_status('Amazon Bedrock Embed', {'model': config.bedrock_embed.model_id},
                                lambda: BedrockEmbed(config.bedrock_embed)),
        'opensearch': _component_status('Amazon OpenSearch', {'endpoint': config.opensearch.endpoint},
                             lambda: OpenSearchClient(config.opensearch)),
        'relational_store': _component_status('Relational store', {'driver': config.database.url.split(':', 1)[0]},
                                   lambda: RelationalStore(config.database)),
    }


def check_health() -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status()
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            unhealthy = [name for name, status in health_status.items() if not status.get('healthy')]
            logger.warning(f'Unhealthy components: {unhealthy}')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_system_info() -> Dict[str, Any]:
    """Get system information and configuration."""
    return {
        'service_name': 'email-memory',
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'embedding_dimension': config.bedrock_embed.dimension,
            'vector_index': config.opensearch.index_name,
            'default_owner': config.memory.default_owner,
        },
        'health_status': get_health_status()
    }
