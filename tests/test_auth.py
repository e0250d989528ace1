from unittest import mock

import pytest

from awsiot_mqtt.auth import AuthMode, build_connection
from awsiot_mqtt.config import ClientConfig, ConnectionSettings
from awsiot_mqtt.exceptions import ConfigError

from .conftest import ENDPOINT


@pytest.fixture
def connection_cls():
    with mock.patch('awsiot_mqtt.auth.IotMqttConnection') as cls:
        yield cls


def wss_config(**kwargs):
    return ClientConfig(client_endpoint=ENDPOINT, client_id='client-1',
                        access_key_id='AKIDEXAMPLE', secret_access_key='secret', **kwargs)


def test_wss_with_session_token(connection_cls):
    settings = ConnectionSettings(max_offline_queue_size=8)
    connection = build_connection('wss', wss_config(session_token='token'), settings)

    assert connection is connection_cls.return_value
    connection_cls.assert_called_once_with(
        ENDPOINT, 'client-1', access_key_id='AKIDEXAMPLE', secret_access_key='secret',
        session_token='token', port=None, region=None, settings=settings,
    )


def test_wss_without_session_token(connection_cls):
    build_connection(AuthMode.WSS, wss_config(port=8443))
    connection_cls.assert_called_once_with(
        ENDPOINT, 'client-1', access_key_id='AKIDEXAMPLE', secret_access_key='secret',
        port=8443, region=None, settings=None,
    )


def test_session_token_does_not_leak_between_clients(connection_cls):
    build_connection('wss', wss_config(session_token='token'))
    build_connection('wss', wss_config())
    first, second = connection_cls.call_args_list
    assert first.kwargs['session_token'] == 'token'
    assert 'session_token' not in second.kwargs


def test_tls(connection_cls, credential_bundle):
    config = ClientConfig(client_endpoint=ENDPOINT, client_id='client-1',
                          credential_bundle=credential_bundle, key_passphrase='')
    build_connection('tls', config)
    connection_cls.assert_called_once_with(
        ENDPOINT, 'client-1', credential_bundle=credential_bundle, key_passphrase='',
        port=None, region=None, settings=None,
    )


@pytest.mark.parametrize('overrides, message', [
    ({'credential_bundle': None}, 'credential_bundle'),
    ({'credential_bundle': 'device.p12'}, 'opened credential_bundle'),
    ({'key_passphrase': None}, 'key_passphrase'),
    ({'client_id': None}, 'client_id'),
])
def test_tls_incomplete(connection_cls, credential_bundle, overrides, message):
    values = dict(client_endpoint=ENDPOINT, client_id='client-1',
                  credential_bundle=credential_bundle, key_passphrase='secret')
    values.update(overrides)
    with pytest.raises(ConfigError, match=message):
        build_connection('tls', ClientConfig(**values))
    connection_cls.assert_not_called()


@pytest.mark.parametrize('config', [
    ClientConfig(client_endpoint=ENDPOINT, client_id='client-1', access_key_id='AKIDEXAMPLE'),
    ClientConfig(client_endpoint=ENDPOINT, client_id='client-1', secret_access_key='secret'),
    ClientConfig(client_id='client-1', access_key_id='AKIDEXAMPLE', secret_access_key='secret'),
])
def test_wss_incomplete(connection_cls, config):
    with pytest.raises(ConfigError, match='unsupported or incomplete configuration'):
        build_connection('wss', config)
    connection_cls.assert_not_called()


@pytest.mark.parametrize('mode', ['mqtt', 'TLS', None, 42])
def test_unknown_mode(connection_cls, mode):
    with pytest.raises(ConfigError, match='unknown authentication mode'):
        build_connection(mode, wss_config())
    connection_cls.assert_not_called()
