"""
Configuration dataclasses for AWS IoT MQTT clients.
"""

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigError


def _read_json(path: str | Path) -> dict:
    """Read a JSON config file, dropping ``_``-prefixed comment keys."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return {k: v for k, v in data.items() if not k.startswith('_')}


@dataclass
class ClientConfig:
    """
    Connection parameters for one client.

    Which fields are required depends on the authentication mode:

    - ``tls``: client_endpoint, client_id, credential_bundle, key_passphrase
    - ``wss``: client_endpoint, client_id, access_key_id, secret_access_key,
      and optionally session_token

    ``credential_bundle`` must be an opened bundle (see
    ``awsiot_mqtt.credentials.load_credentials``), never a file path.
    """
    client_endpoint: Optional[str] = None
    client_id: Optional[str] = None
    credential_bundle: Any = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    key_passphrase: Optional[str] = None
    port: Optional[int] = None
    region: Optional[str] = None

    @classmethod
    def from_json(cls, path: str | Path) -> 'ClientConfig':
        """Load ClientConfig from JSON file (credential bundles are attached separately)."""
        data = _read_json(path)
        if 'credential_bundle' in data:
            raise ConfigError(
                f"{path}: credential_bundle cannot be read from JSON, load it with load_credentials()"
            )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown client config keys in {path}: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_env(cls) -> 'ClientConfig':
        """
        Create configuration from environment variables.

        Environment variables:
            AWS_IOT_ENDPOINT: Broker endpoint
            AWS_IOT_CLIENT_ID: MQTT client id
            AWS_IOT_PORT: Port override
            AWS_REGION: SigV4 region override
            AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_SESSION_TOKEN: WebSocket credentials
        """
        port = os.getenv('AWS_IOT_PORT')
        return cls(
            client_endpoint=os.getenv('AWS_IOT_ENDPOINT'),
            client_id=os.getenv('AWS_IOT_CLIENT_ID'),
            access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
            secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
            session_token=os.getenv('AWS_SESSION_TOKEN'),
            port=int(port) if port else None,
            region=os.getenv('AWS_REGION'),
        )


@dataclass(frozen=True)
class ConnectionSettings:
    """Connection tunables. All durations are in milliseconds."""
    base_retry_delay: int = 3000
    max_retry_delay: int = 30000
    max_connection_retries: int = 5
    connection_timeout: int = 30000
    keep_alive_interval: int = 600000
    max_offline_queue_size: int = 64
    num_of_client_threads: int = 1
    server_ack_timeout: int = 3000

    def validate(self) -> 'ConnectionSettings':
        """Check value ranges, returning self so it can be chained."""
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"{f.name} must be a non-negative integer, got {value!r}")
        if self.num_of_client_threads < 1:
            raise ConfigError("num_of_client_threads must be at least 1")
        if self.max_retry_delay < self.base_retry_delay:
            raise ConfigError("max_retry_delay must not be smaller than base_retry_delay")
        return self

    def updated(self, **changes) -> 'ConnectionSettings':
        """Return a validated copy with ``changes`` applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigError(f"Unknown connection settings: {', '.join(unknown)}")
        return replace(self, **changes).validate()

    @classmethod
    def from_json(cls, path: str | Path) -> 'ConnectionSettings':
        """Load ConnectionSettings from JSON file, defaults for missing keys."""
        try:
            data = _read_json(path)
        except ConfigError as e:
            if isinstance(e.__cause__, FileNotFoundError):
                return cls()
            raise
        return cls().updated(**data)
