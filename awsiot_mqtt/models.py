"""
Protocol enumerations and plain data models.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional


class QoS(IntEnum):
    """MQTT quality of service levels supported by AWS IoT."""
    QOS0 = 0
    QOS1 = 1


class ConnectionStatus(Enum):
    """Lifecycle status of an MQTT connection."""
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    RECONNECTING = 'reconnecting'


class ConnectionType(Enum):
    """Transport used to reach the broker."""
    MQTT_OVER_TLS = 'tls'
    MQTT_OVER_WEBSOCKET = 'wss'


@dataclass(frozen=True)
class WillMessage:
    """
    Last will message as seen by callers.

    ``qos`` is a symbolic tag such as ``'qos1'``; None means the broker default.
    """
    topic: str
    qos: Optional[str] = None
    payload: bytes | str | None = None
