from unittest.mock import MagicMock, patch

from agent_memory.utils import health_check


def healthy_client(result=True):
    client = MagicMock()
    client.health_check.return_value = result
    return client


def test_all_components_healthy():
    with patch.object(health_check, 'BedrockEmbed', return_value=healthy_client()), \
            patch.object(health_check, 'NeptuneClient', return_value=healthy_client()), \
            patch.object(health_check, 'DatabaseClient', return_value=healthy_client()):
        status = health_check.get_health_status()
        healthy = health_check.check_health()

    assert set(status) == {'bedrock_embed', 'neptune', 'database'}
    assert healthy


def test_unhealthy_component():
    with patch.object(health_check, 'BedrockEmbed', side_effect=RuntimeError('no credentials')), \
            patch.object(health_check, 'NeptuneClient', return_value=healthy_client(False)), \
            patch.object(health_check, 'DatabaseClient', return_value=healthy_client()):
        status = health_check.get_health_status()

    assert status['bedrock_embed'] == {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': 'no credentials'}
    assert status['neptune']['healthy'] is False
    assert status['database']['healthy'] is True
