from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.credentials import Credentials

from agent_memory.utils.config import NeptuneConfig
from agent_memory.utils.neptune_client import NeptuneClient, NeptuneError


def make_client(iam_auth=False, endpoint='neptune.example.com'):
    return NeptuneClient(NeptuneConfig(endpoint=endpoint, port=8182, region='eu-west-1', iam_auth=iam_auth, use_ssl=True,
                                       timeout_seconds=5))


def response(status_code=200, payload=None, text=''):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = payload if payload is not None else {'results': []}
    return resp


def test_url_strips_scheme():
    assert make_client().url == 'https://neptune.example.com:8182/openCypher'
    assert make_client(endpoint='https://neptune.example.com').url == 'https://neptune.example.com:8182/openCypher'


def test_run_returns_results():
    session = make_client().session()
    with patch.object(session.http, 'post', return_value=response(payload={'results': [{'ok': 1}]})) as post:
        rows = session.run('RETURN 1 AS ok', {'a': 1})

    assert rows == [{'ok': 1}]
    _, kwargs = post.call_args
    assert 'query=RETURN+1+AS+ok' in kwargs['data']
    assert kwargs['headers'] == {'Content-Type': 'application/x-www-form-urlencoded'}
    assert kwargs['timeout'] == 5


def test_run_raises_on_error_status():
    session = make_client().session()
    with patch.object(session.http, 'post', return_value=response(status_code=500, text='boom')):
        with pytest.raises(NeptuneError, match='500'):
            session.run('RETURN 1')


def test_run_raises_on_request_failure():
    session = make_client().session()
    with patch.object(session.http, 'post', side_effect=requests.ConnectionError('refused')):
        with pytest.raises(NeptuneError):
            session.run('RETURN 1')


def test_run_raises_on_closed_session():
    session = make_client().session()
    session.close()
    session.close()

    with pytest.raises(NeptuneError, match='closed'):
        session.run('RETURN 1')


def test_sign_with_iam_auth():
    client = make_client(iam_auth=True)
    aws_session = MagicMock()
    aws_session.get_credentials.return_value = Credentials('AKIDEXAMPLE', 'secret')
    aws_session.region_name = None

    with patch('agent_memory.utils.neptune_client.Session', return_value=aws_session):
        headers = client.sign('query=RETURN+1')

    assert headers['Authorization'].startswith('AWS4-HMAC-SHA256')
    assert 'eu-west-1/neptune-db/aws4_request' in headers['Authorization']


def test_sign_without_credentials():
    client = make_client(iam_auth=True)
    aws_session = MagicMock()
    aws_session.get_credentials.return_value = None

    with patch('agent_memory.utils.neptune_client.Session', return_value=aws_session):
        with pytest.raises(NeptuneError):
            client.sign('query=RETURN+1')


def test_health_check_failure():
    client = make_client()
    with patch('agent_memory.utils.neptune_client.requests.Session.post', side_effect=requests.ConnectionError('down')):
        assert client.health_check() is False
