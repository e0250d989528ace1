from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID

from awsiot_mqtt.credentials import CredentialBundle

ENDPOINT = 'an-endpoint.iot.us-east-1.amazonaws.com'
KEYSTORE_PASSWORD = 'keystore-secret'


@pytest.fixture(scope='session')
def device_identity():
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'test-device')])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def keystore_file(tmp_path, device_identity):
    key, cert = device_identity
    data = pkcs12.serialize_key_and_certificates(
        b'test-device', key, cert, None, BestAvailableEncryption(KEYSTORE_PASSWORD.encode())
    )
    path = tmp_path / 'device.p12'
    path.write_bytes(data)
    return path


@pytest.fixture
def credential_bundle(device_identity):
    key, cert = device_identity
    return CredentialBundle(key, cert)


@pytest.fixture
def paho_client():
    """The paho Client instance created by IotMqttConnection, replaced by a mock."""
    with mock.patch('awsiot_mqtt.connection.mqtt.Client') as client_cls:
        yield client_cls.return_value


@pytest.fixture
def drain():
    """Wait until every callback queued on a connection's worker pool has run."""
    def wait(connection):
        connection.execution_service.submit(lambda: None).result(timeout=5)
    return wait
