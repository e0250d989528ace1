import ssl

import pytest
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption, Encoding, NoEncryption, PrivateFormat,
)

from awsiot_mqtt.credentials import CredentialBundle, load_credentials, load_pem_credentials
from awsiot_mqtt.exceptions import CredentialError

from .conftest import KEYSTORE_PASSWORD


def test_load_keystore(keystore_file):
    bundle = load_credentials(keystore_file, KEYSTORE_PASSWORD)
    assert isinstance(bundle, CredentialBundle)
    assert 'CN=test-device' in bundle.subject
    assert bundle.additional_certificates == []


def test_load_keystore_accepts_bytes_passphrase(keystore_file):
    bundle = load_credentials(str(keystore_file), KEYSTORE_PASSWORD.encode())
    assert 'test-device' in bundle.subject


def test_wrong_passphrase(keystore_file):
    with pytest.raises(CredentialError, match='wrong passphrase'):
        load_credentials(keystore_file, 'not-the-password')


def test_missing_keystore(tmp_path):
    with pytest.raises(CredentialError, match='not found'):
        load_credentials(tmp_path / 'absent.p12', KEYSTORE_PASSWORD)


def test_corrupt_keystore(tmp_path):
    path = tmp_path / 'corrupt.p12'
    path.write_bytes(b'this is not a keystore')
    with pytest.raises(CredentialError):
        load_credentials(path, KEYSTORE_PASSWORD)


def test_chain_pem_starts_with_device_certificate(credential_bundle, device_identity):
    _, cert = device_identity
    assert credential_bundle.chain_pem() == cert.public_bytes(Encoding.PEM)


@pytest.mark.parametrize('passphrase', [None, '', 'key-secret'])
def test_ssl_context(credential_bundle, passphrase):
    context = credential_bundle.ssl_context(passphrase)
    assert isinstance(context, ssl.SSLContext)
    assert context.verify_mode == ssl.CERT_REQUIRED


def test_load_pem_credentials(tmp_path, device_identity):
    key, cert = device_identity
    cert_file = tmp_path / 'certificate.pem.crt'
    key_file = tmp_path / 'private.pem.key'
    cert_file.write_bytes(cert.public_bytes(Encoding.PEM))
    key_file.write_bytes(key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, BestAvailableEncryption(b'pem-secret')
    ))

    bundle = load_pem_credentials(cert_file, key_file, 'pem-secret')
    assert bundle.certificate == cert
    assert 'test-device' in bundle.subject


def test_load_pem_credentials_errors(tmp_path, device_identity):
    key, cert = device_identity
    cert_file = tmp_path / 'certificate.pem.crt'
    key_file = tmp_path / 'private.pem.key'
    cert_file.write_bytes(cert.public_bytes(Encoding.PEM))
    key_file.write_bytes(key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()))

    with pytest.raises(CredentialError, match='not found'):
        load_pem_credentials(tmp_path / 'missing.crt', key_file)
    with pytest.raises(CredentialError):
        load_pem_credentials(cert_file, key_file, 'unexpected-passphrase')
