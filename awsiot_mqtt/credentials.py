"""
Credential loading for mutual-TLS connections.

A device's private key and certificate usually ship as a PKCS#12 keystore
protected by a passphrase. ``load_credentials`` opens it once; the resulting
CredentialBundle is what the TLS authentication mode expects.
"""

import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    load_pem_private_key,
    pkcs12,
)

from .exceptions import CredentialError
from .logging_config import get_logger

logger = get_logger('credentials')


def _password_bytes(passphrase: str | bytes | None) -> Optional[bytes]:
    if passphrase is None or passphrase in ('', b''):
        return None
    if isinstance(passphrase, bytes):
        return passphrase
    return passphrase.encode('utf-8')


@dataclass
class CredentialBundle:
    """Opened client key with its certificate chain."""
    private_key: object
    certificate: x509.Certificate
    additional_certificates: list = field(default_factory=list)

    @property
    def subject(self) -> str:
        """RFC 4514 subject of the device certificate."""
        return self.certificate.subject.rfc4514_string()

    def chain_pem(self) -> bytes:
        """Device certificate followed by any intermediates, PEM encoded."""
        certs = [self.certificate, *self.additional_certificates]
        return b''.join(cert.public_bytes(Encoding.PEM) for cert in certs)

    def ssl_context(self, key_passphrase: str | None = None,
                    ca_file: str | Path | None = None) -> ssl.SSLContext:
        """
        Build a client SSL context presenting this bundle.

        The ssl module only loads key material from files, so the key and chain
        are written to a private temporary directory for the duration of the load.
        The key is written encrypted with ``key_passphrase`` when one is given.

        Args:
            key_passphrase: Passphrase protecting the private key
            ca_file: Extra trust anchors; system roots are always trusted

        Returns:
            Configured ssl.SSLContext
        """
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=ca_file)
        password = _password_bytes(key_passphrase)
        encryption = BestAvailableEncryption(password) if password else NoEncryption()

        with tempfile.TemporaryDirectory(prefix='awsiot-') as tmp:
            cert_path = Path(tmp) / 'certificate.pem'
            key_path = Path(tmp) / 'private.key'
            cert_path.write_bytes(self.chain_pem())
            key_path.write_bytes(self.private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, encryption
            ))
            try:
                context.load_cert_chain(cert_path, key_path, password=password)
            except ssl.SSLError as e:
                raise CredentialError(f"Cannot use credentials for {self.subject}: {e}") from e

        logger.debug(f"Built SSL context for {self.subject}")
        return context


def load_credentials(source: str | Path, passphrase: str | bytes | None) -> CredentialBundle:
    """
    Load a PKCS#12 keystore.

    Args:
        source: Path to the .p12/.pfx file
        passphrase: Keystore passphrase (None or empty for an unprotected store)

    Returns:
        CredentialBundle

    Raises:
        CredentialError: If the file is missing, the passphrase is wrong or the
            store has no key/certificate pair
    """
    path = Path(source)
    try:
        data = path.read_bytes()
    except FileNotFoundError as e:
        raise CredentialError(f"Keystore not found: {source}") from e
    except OSError as e:
        raise CredentialError(f"Cannot read keystore {source}: {e}") from e

    try:
        key, cert, extra = pkcs12.load_key_and_certificates(data, _password_bytes(passphrase))
    except ValueError as e:
        raise CredentialError(f"Cannot open keystore {source}: wrong passphrase or corrupt file") from e

    if key is None or cert is None:
        raise CredentialError(f"Keystore {source} does not hold a key and certificate")

    bundle = CredentialBundle(key, cert, list(extra or []))
    logger.info(f"Loaded credentials for {bundle.subject} from {source}")
    return bundle


def load_pem_credentials(cert_file: str | Path, key_file: str | Path,
                         passphrase: str | bytes | None = None) -> CredentialBundle:
    """
    Load a PEM certificate (optionally followed by its chain) and private key.

    This is the layout the AWS IoT console hands out for new things.
    """
    try:
        certs = x509.load_pem_x509_certificates(Path(cert_file).read_bytes())
        key = load_pem_private_key(Path(key_file).read_bytes(), _password_bytes(passphrase))
    except FileNotFoundError as e:
        raise CredentialError(f"Credential file not found: {e.filename}") from e
    except (ValueError, TypeError) as e:
        raise CredentialError(f"Cannot load PEM credentials: {e}") from e

    return CredentialBundle(key, certs[0], certs[1:])
