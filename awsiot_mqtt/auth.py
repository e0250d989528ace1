"""
Authentication mode resolution.

Picks the connection constructor arguments matching an authentication mode,
rejecting incomplete configurations before any connection object exists.
"""

from enum import Enum
from typing import Optional

from .config import ClientConfig, ConnectionSettings
from .connection import IotMqttConnection
from .credentials import CredentialBundle
from .exceptions import ConfigError
from .logging_config import get_logger

logger = get_logger('auth')


class AuthMode(str, Enum):
    """Supported authentication methods."""
    TLS = 'tls'
    WSS = 'wss'


def _parse_mode(mode) -> Optional[AuthMode]:
    try:
        return AuthMode(mode)
    except ValueError:
        return None


def _require(config: ClientConfig, mode: AuthMode, *names: str):
    missing = [name for name in names if getattr(config, name) in (None, '')]
    if missing:
        raise ConfigError(
            f"unsupported or incomplete configuration: {mode.value} requires {', '.join(missing)}"
        )


def build_connection(mode: AuthMode | str, config: ClientConfig,
                     settings: Optional[ConnectionSettings] = None) -> IotMqttConnection:
    """
    Build a connection for an authentication mode.

    - ``wss`` with a session token: temporary credentials over WebSocket
    - ``wss`` without one: long-lived access key pair over WebSocket
    - ``tls``: client certificate from an opened CredentialBundle

    Args:
        mode: AuthMode or its tag ('tls', 'wss')
        config: Client configuration
        settings: Connection tunables (defaults apply when None)

    Returns:
        Unconnected IotMqttConnection

    Raises:
        ConfigError: If the mode is unknown or required fields are missing
    """
    auth_mode = _parse_mode(mode)
    extra = dict(port=config.port, region=config.region, settings=settings)

    if auth_mode is AuthMode.WSS and config.session_token:
        _require(config, auth_mode, 'client_endpoint', 'client_id', 'access_key_id', 'secret_access_key')
        logger.debug(f"Using temporary WebSocket credentials for {config.client_id}")
        return IotMqttConnection(
            config.client_endpoint, config.client_id,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            session_token=config.session_token,
            **extra,
        )

    if auth_mode is AuthMode.WSS:
        _require(config, auth_mode, 'client_endpoint', 'client_id', 'access_key_id', 'secret_access_key')
        logger.debug(f"Using WebSocket access key for {config.client_id}")
        return IotMqttConnection(
            config.client_endpoint, config.client_id,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            **extra,
        )

    if auth_mode is AuthMode.TLS:
        _require(config, auth_mode, 'client_endpoint', 'client_id', 'credential_bundle')
        if not isinstance(config.credential_bundle, CredentialBundle):
            raise ConfigError(
                "unsupported or incomplete configuration: tls requires an opened credential_bundle, "
                f"got {type(config.credential_bundle).__name__}"
            )
        if config.key_passphrase is None:
            raise ConfigError("unsupported or incomplete configuration: tls requires key_passphrase")
        logger.debug(f"Using client certificate {config.credential_bundle.subject} for {config.client_id}")
        return IotMqttConnection(
            config.client_endpoint, config.client_id,
            credential_bundle=config.credential_bundle,
            key_passphrase=config.key_passphrase,
            **extra,
        )

    raise ConfigError(f"unsupported or incomplete configuration: unknown authentication mode {mode!r}")
