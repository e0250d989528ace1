from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from awsiot_mqtt.sigv4 import presign_websocket_path, region_from_endpoint

SIGNED_AT = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
HOST = 'an-endpoint-ats.iot.us-east-1.amazonaws.com'


def presign(**kwargs):
    args = dict(host=HOST, region='us-east-1', access_key_id='AKIDEXAMPLE',
                secret_access_key='wJalrXUtnFEMI/K7MDENG', now=SIGNED_AT)
    args.update(kwargs)
    return presign_websocket_path(**args)


def test_path_structure():
    parts = urlsplit(presign())
    query = parse_qs(parts.query)
    assert parts.path == '/mqtt'
    assert query['X-Amz-Algorithm'] == ['AWS4-HMAC-SHA256']
    assert query['X-Amz-Credential'] == ['AKIDEXAMPLE/20240501/us-east-1/iotdevicegateway/aws4_request']
    assert query['X-Amz-Date'] == ['20240501T123000Z']
    assert query['X-Amz-SignedHeaders'] == ['host']
    assert len(query['X-Amz-Signature'][0]) == 64
    assert 'X-Amz-Security-Token' not in query


def test_known_signature():
    query = parse_qs(urlsplit(presign()).query)
    assert query['X-Amz-Signature'] == [
        'fb14439592ea3e76c5f2de3684e06b51218604bd6e87a7f47c67e96c2a68f8e1'
    ]


def test_signature_is_deterministic():
    assert presign() == presign()
    assert presign() != presign(secret_access_key='another-secret')
    assert presign() != presign(region='eu-west-1')


def test_session_token_is_appended_unsigned():
    with_token = presign(session_token='token/with+special=chars')
    without = presign()
    assert with_token.startswith(without + '&X-Amz-Security-Token=')
    assert parse_qs(urlsplit(with_token).query)['X-Amz-Security-Token'] == ['token/with+special=chars']


@pytest.mark.parametrize('endpoint, region', [
    ('an-endpoint-ats.iot.us-east-1.amazonaws.com', 'us-east-1'),
    ('AN-ENDPOINT.IOT.EU-CENTRAL-1.AMAZONAWS.COM', 'eu-central-1'),
    ('an-endpoint.iot.cn-north-1.amazonaws.com.cn', 'cn-north-1'),
    ('localhost', None),
])
def test_region_from_endpoint(endpoint, region):
    assert region_from_endpoint(endpoint) == region
