"""
AWS IoT MQTT Client Package

Lightweight Python bindings for AWS IoT over MQTT, built on paho-mqtt.
"""

from .auth import AuthMode, build_connection
from .client import IotClient, mqtt_client
from .codec import EnumMapping, build_mapping, QOS_TAGS, CONNECTION_STATUS_TAGS, CONNECTION_TYPE_TAGS
from .config import ClientConfig, ConnectionSettings
from .connection import IotMqttConnection, RoutineTask
from .credentials import CredentialBundle, load_credentials, load_pem_credentials
from .messages import IotMessage, IotTopic, CallbackMessage, CallbackTopic, make_publisher, make_subscription
from .models import QoS, ConnectionStatus, ConnectionType, WillMessage
from .exceptions import (
    IotClientError, ConfigError, CredentialError, IotConnectionError,
    PublishError, PublishTimeoutError, SubscribeError,
)
from .logging_config import LoggingManager, setup_logging, get_logger

__all__ = [
    # Main client
    'IotClient',
    'mqtt_client',
    'build_connection',
    'AuthMode',
    'IotMqttConnection',
    'RoutineTask',
    # Configuration
    'ClientConfig',
    'ConnectionSettings',
    # Credentials
    'CredentialBundle',
    'load_credentials',
    'load_pem_credentials',
    # Messages and subscriptions
    'IotMessage',
    'IotTopic',
    'CallbackMessage',
    'CallbackTopic',
    'make_publisher',
    'make_subscription',
    'WillMessage',
    # Enumerations and tags
    'QoS',
    'ConnectionStatus',
    'ConnectionType',
    'EnumMapping',
    'build_mapping',
    'QOS_TAGS',
    'CONNECTION_STATUS_TAGS',
    'CONNECTION_TYPE_TAGS',
    # Exceptions
    'IotClientError',
    'ConfigError',
    'CredentialError',
    'IotConnectionError',
    'PublishError',
    'PublishTimeoutError',
    'SubscribeError',
    # Logging
    'LoggingManager',
    'setup_logging',
    'get_logger',
]

__version__ = '0.1.0'
