"""
Chainable client facade over an IotMqttConnection.

Two conventions hold for every method:

- Anything that changes client state returns the client, so calls chain:
  ``client.set_will_message(will).connect().subscribe(sub)``.
- Enumerated values cross this boundary as symbolic tags (``'qos1'``,
  ``'connected'``, ``'mqtt-over-tls'``), never as enum members.
"""

from typing import Callable, Optional

from .auth import AuthMode, build_connection
from .codec import QOS_TAGS, CONNECTION_STATUS_TAGS, CONNECTION_TYPE_TAGS
from .config import ClientConfig, ConnectionSettings
from .connection import IotMqttConnection
from .logging_config import get_logger
from .messages import IotMessage, IotTopic
from .models import WillMessage

logger = get_logger('client')


class IotClient:
    """AWS IoT MQTT client with chainable mutations and tag-valued getters."""

    def __init__(self, connection: IotMqttConnection):
        self._connection = connection

    @property
    def connection(self) -> IotMqttConnection:
        """The wrapped connection."""
        return self._connection

    # Lifecycle

    def connect(self, timeout: Optional[int] = None) -> 'IotClient':
        if timeout is None:
            self._connection.connect()
        else:
            self._connection.connect(timeout=timeout)
        return self

    def disconnect(self) -> 'IotClient':
        self._connection.disconnect()
        return self

    def configure(self, **settings) -> 'IotClient':
        """Change connection tunables, e.g. ``configure(keep_alive_interval=30000)``."""
        self._connection.update_settings(**settings)
        return self

    # Publishing

    def publish_blocking(self, topic: str, payload: bytes | str, qos: Optional[str] = None,
                         timeout: Optional[int] = None) -> 'IotClient':
        """
        Publish and wait for the acknowledgement.

        Args:
            topic: Topic to publish to
            payload: Message body
            qos: QoS tag; an unknown tag is treated as absent
            timeout: Milliseconds to wait

        Raises:
            PublishError: Rejected by the connection
            PublishTimeoutError: Not acknowledged within ``timeout``
        """
        qos_value = QOS_TAGS.value_of(qos)
        if qos is not None and qos_value is None:
            logger.warning(f"Unknown QoS tag {qos!r}, publishing with the default QoS")

        if qos_value is not None and timeout is not None:
            self._connection.publish(topic, payload, qos=qos_value, timeout=timeout)
        elif qos_value is not None:
            self._connection.publish(topic, payload, qos=qos_value)
        elif timeout is not None:
            self._connection.publish(topic, payload, timeout=timeout)
        else:
            self._connection.publish(topic, payload)
        return self

    def publish_async(self, message: IotMessage, timeout: Optional[int] = None) -> 'IotClient':
        """
        Publish a message built by a publisher from ``make_publisher``.

        Returns immediately; completion is reported through the message's callbacks.
        """
        if timeout is None:
            self._connection.publish_message(message)
        else:
            self._connection.publish_message(message, timeout=timeout)
        return self

    # Last will

    def set_will_message(self, message: Optional[WillMessage]) -> 'IotClient':
        """
        Set the will message, or clear it with None.

        Set it before connect(); later changes only apply to the next connection.
        """
        if message is None:
            self._connection.set_will_message(None)
        else:
            self._connection.set_will_message(
                IotMessage(message.topic, QOS_TAGS.value_of(message.qos), message.payload)
            )
        return self

    def get_will_message(self) -> Optional[WillMessage]:
        will = self._connection.will_message
        if will is None:
            return None
        return WillMessage(will.topic, QOS_TAGS.tag_of(will.qos), will.payload)

    # Subscriptions

    def subscribe(self, subscription: IotTopic) -> 'IotClient':
        """Activate a subscription built by ``make_subscription``."""
        self._connection.subscribe(subscription)
        return self

    def unsubscribe(self, topic: str) -> 'IotClient':
        self._connection.unsubscribe(topic)
        return self

    # Devices

    def attach(self, device) -> 'IotClient':
        self._connection.attach(device)
        return self

    def detach(self, device) -> 'IotClient':
        self._connection.detach(device)
        return self

    # Scheduling

    def schedule_routine_task(self, fn: Callable[[], None], initial_delay: int, period: int) -> 'IotClient':
        self._connection.schedule_routine_task(fn, initial_delay, period)
        return self

    def schedule_timeout_task(self, fn: Callable[[], None], timeout: int) -> 'IotClient':
        self._connection.schedule_timeout_task(fn, timeout)
        return self

    # Introspection

    def get_connection_status(self) -> Optional[str]:
        return CONNECTION_STATUS_TAGS.tag_of(self._connection.connection_status)

    def get_connection_type(self) -> Optional[str]:
        return CONNECTION_TYPE_TAGS.tag_of(self._connection.connection_type)

    def get_base_retry_delay(self) -> int:
        return self._connection.settings.base_retry_delay

    def get_connection_timeout(self) -> int:
        return self._connection.settings.connection_timeout

    def get_keep_alive_interval(self) -> int:
        return self._connection.settings.keep_alive_interval

    def get_max_connection_retries(self) -> int:
        return self._connection.settings.max_connection_retries

    def get_max_offline_queue_size(self) -> int:
        return self._connection.settings.max_offline_queue_size

    def get_max_retry_delay(self) -> int:
        return self._connection.settings.max_retry_delay

    def get_num_of_client_threads(self) -> int:
        return self._connection.settings.num_of_client_threads

    def get_server_ack_timeout(self) -> int:
        return self._connection.settings.server_ack_timeout

    def get_client_endpoint(self) -> str:
        return self._connection.client_endpoint

    def get_client_id(self) -> str:
        return self._connection.client_id

    def get_connection(self):
        """The raw paho client behind the connection."""
        return self._connection.mqtt_client

    def get_devices(self) -> list:
        return self._connection.devices

    def get_execution_service(self):
        return self._connection.execution_service

    def get_subscriptions(self) -> dict[str, IotTopic]:
        return self._connection.subscriptions

    def __repr__(self):
        return f"IotClient({self._connection!r})"


def mqtt_client(mode: AuthMode | str, config: ClientConfig,
                settings: Optional[ConnectionSettings] = None) -> IotClient:
    """
    Create a client for an AWS IoT endpoint.

    ``tls`` requires client_endpoint, client_id, credential_bundle and
    key_passphrase. ``wss`` requires client_endpoint, client_id, access_key_id,
    secret_access_key and optionally session_token.

    Raises:
        ConfigError: If the configuration does not fit the mode
    """
    return IotClient(build_connection(mode, config, settings))
