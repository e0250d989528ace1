"""
MQTT connection to AWS IoT, driven through paho-mqtt.

paho owns the socket, the TLS/WebSocket handshake, keep-alive, reconnect
backoff and the offline queue. This module configures it, tracks the
connection status, and runs every user callback on a worker pool so that slow
handlers never stall paho's network thread.
"""

import ssl
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from .config import ConnectionSettings
from .credentials import CredentialBundle
from .exceptions import ConfigError, IotConnectionError, PublishError, PublishTimeoutError, SubscribeError
from .logging_config import get_logger
from .messages import IotMessage, IotTopic
from .models import ConnectionStatus, ConnectionType, QoS
from .sigv4 import presign_websocket_path, region_from_endpoint

logger = get_logger('connection')

TLS_PORT = 8883
WEBSOCKET_PORT = 443


def _seconds(milliseconds: Optional[int]) -> Optional[float]:
    """Convert a millisecond duration to seconds; None or 0 means no limit."""
    if not milliseconds:
        return None
    return milliseconds / 1000.0


def _qos_of(value) -> Optional[QoS]:
    return QoS(value) if value in (QoS.QOS0, QoS.QOS1) else None


class RoutineTask:
    """Periodic task started by IotMqttConnection.schedule_routine_task."""

    def __init__(self, fn: Callable[[], None], initial_delay: int, period: int):
        self._fn = fn
        self._initial_delay = _seconds(initial_delay) or 0.0
        self._period = _seconds(period)
        if self._period is None:
            raise ValueError("period must be a positive number of milliseconds")
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"routine-{getattr(fn, '__name__', 'task')}",
                                        daemon=True)

    def start(self) -> 'RoutineTask':
        self._thread.start()
        return self

    def _run(self):
        if self._stop_event.wait(self._initial_delay):
            return
        while True:
            try:
                self._fn()
            except Exception:
                logger.exception(f"Routine task {self._fn!r} failed")
            if self._stop_event.wait(self._period):
                return

    def cancel(self):
        """Stop the task; a run already in progress is not interrupted."""
        self._stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()


class IotMqttConnection:
    """
    A single MQTT session with an AWS IoT endpoint.

    The transport follows from the credentials given: a CredentialBundle selects
    mutual TLS, an access key pair selects MQTT over a SigV4-signed WebSocket.
    Construction only configures the underlying paho client; nothing touches the
    network until connect().
    """

    def __init__(self, client_endpoint: str, client_id: str, *,
                 credential_bundle: Optional[CredentialBundle] = None,
                 key_passphrase: Optional[str] = None,
                 access_key_id: Optional[str] = None,
                 secret_access_key: Optional[str] = None,
                 session_token: Optional[str] = None,
                 port: Optional[int] = None,
                 region: Optional[str] = None,
                 settings: Optional[ConnectionSettings] = None):
        if not client_endpoint or not client_id:
            raise ConfigError("client_endpoint and client_id are required")

        if credential_bundle is not None:
            if not isinstance(credential_bundle, CredentialBundle):
                raise ConfigError("credential_bundle must be a CredentialBundle, see load_credentials()")
            self._connection_type = ConnectionType.MQTT_OVER_TLS
        elif access_key_id and secret_access_key:
            self._connection_type = ConnectionType.MQTT_OVER_WEBSOCKET
            region = region or region_from_endpoint(client_endpoint)
            if not region:
                raise ConfigError(f"Cannot derive AWS region from endpoint '{client_endpoint}', set region")
        else:
            raise ConfigError("Either a credential bundle or an access key pair is required")

        self._endpoint = client_endpoint
        self._client_id = client_id
        self._port = port or (TLS_PORT if self._connection_type is ConnectionType.MQTT_OVER_TLS
                              else WEBSOCKET_PORT)
        self._region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._session_token = session_token
        self._settings = (settings or ConnectionSettings()).validate()

        self._lock = threading.RLock()
        self._status = ConnectionStatus.DISCONNECTED
        self._connected_event = threading.Event()
        self._connect_error: Optional[str] = None
        self._user_disconnect = False
        self._retries = 0
        self._pending: dict[int, tuple[IotMessage, Optional[threading.Timer]]] = {}
        self._early_acks: set[int] = set()
        self._abandoned: set[int] = set()
        # mid -> SUBACK reason codes, None while a subscribe() call waits for them
        self._subacks: dict[int, Optional[list]] = {}
        self._suback_arrived = threading.Condition(threading.Lock())
        self._subscriptions: dict[str, IotTopic] = {}
        self._devices: list = []
        self._will_message: Optional[IotMessage] = None
        self._executor: Optional[ThreadPoolExecutor] = None

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
            transport='websockets' if self.is_websocket else 'tcp',
        )
        if self.is_websocket:
            self._client.tls_set_context(ssl.create_default_context())
            self._sign_websocket_path()
        else:
            self._client.tls_set_context(credential_bundle.ssl_context(key_passphrase))

        self._client.on_connect = self._on_connect
        self._client.on_connect_fail = self._on_connect_fail
        self._client.on_disconnect = self._on_disconnect
        self._client.on_publish = self._on_publish
        self._client.on_subscribe = self._on_subscribe
        self._client.on_message = self._on_unmatched_message
        self._apply_settings()

        logger.info(f"Created {self._connection_type.name} connection for {client_id} -> "
                    f"{client_endpoint}:{self._port}")

    # Introspection ------------------------------------------------------

    @property
    def is_websocket(self) -> bool:
        return self._connection_type is ConnectionType.MQTT_OVER_WEBSOCKET

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def connection_type(self) -> ConnectionType:
        return self._connection_type

    @property
    def client_endpoint(self) -> str:
        return self._endpoint

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def port(self) -> int:
        return self._port

    @property
    def region(self) -> Optional[str]:
        return self._region

    @property
    def settings(self) -> ConnectionSettings:
        return self._settings

    @property
    def mqtt_client(self) -> mqtt.Client:
        """The underlying paho client."""
        return self._client

    @property
    def devices(self) -> list:
        with self._lock:
            return list(self._devices)

    @property
    def subscriptions(self) -> dict[str, IotTopic]:
        with self._lock:
            return dict(self._subscriptions)

    @property
    def will_message(self) -> Optional[IotMessage]:
        return self._will_message

    @property
    def execution_service(self) -> ThreadPoolExecutor:
        """Worker pool running user callbacks, created on first use."""
        return self._ensure_executor()

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._settings.num_of_client_threads,
                    thread_name_prefix=f"awsiot-{self._client_id}",
                )
            return self._executor

    # Configuration ------------------------------------------------------

    def update_settings(self, **changes) -> None:
        """
        Change connection tunables.

        Retry delays, queue size and connection timeout apply to the next
        connection attempt. The worker thread count only applies if the worker
        pool has not been created yet.
        """
        with self._lock:
            self._settings = self._settings.updated(**changes)
            if 'num_of_client_threads' in changes and self._executor is not None:
                logger.warning("Worker pool already running, num_of_client_threads change ignored")
        self._apply_settings()

    def _apply_settings(self):
        s = self._settings
        self._client.reconnect_delay_set(
            min_delay=max(1, s.base_retry_delay // 1000),
            max_delay=max(1, s.max_retry_delay // 1000),
        )
        self._client.max_queued_messages_set(s.max_offline_queue_size)
        if s.connection_timeout:
            self._client.connect_timeout = _seconds(s.connection_timeout)

    def _sign_websocket_path(self):
        path = presign_websocket_path(
            self._endpoint, self._region, self._access_key_id,
            self._secret_access_key, self._session_token,
        )
        self._client.ws_set_options(path=path)

    # Lifecycle ----------------------------------------------------------

    def connect(self, timeout: Optional[int] = None) -> None:
        """
        Connect and block until the broker acknowledges the session.

        Args:
            timeout: Milliseconds to wait (defaults to the connection_timeout setting)

        Raises:
            IotConnectionError: If the broker refuses the connection, retries run
                out, or no acknowledgement arrives in time
        """
        timeout = self._settings.connection_timeout if timeout is None else timeout
        with self._lock:
            if self._status is ConnectionStatus.CONNECTED:
                return
            self._status = ConnectionStatus.CONNECTING
            self._user_disconnect = False
            self._retries = 0
            self._connect_error = None
            self._connected_event.clear()

        if self.is_websocket:
            self._sign_websocket_path()
        self._ensure_executor()

        logger.info(f"Connecting to {self._endpoint}:{self._port} as {self._client_id}")
        self._client.loop_stop()
        self._client.connect_async(self._endpoint, self._port,
                                   keepalive=self._settings.keep_alive_interval // 1000)
        self._client.loop_start()

        if not self._connected_event.wait(_seconds(timeout)):
            error = f"no CONNACK within {timeout} ms"
        else:
            with self._lock:
                error = self._connect_error
                if error is None and self._status is not ConnectionStatus.CONNECTED:
                    error = "connection retries exhausted"

        if error:
            self._shutdown_loop()
            raise IotConnectionError(f"Cannot connect to {self._endpoint}:{self._port}: {error}")

    def disconnect(self) -> None:
        """Close the session; the will message is not sent."""
        logger.info(f"Disconnecting {self._client_id} from {self._endpoint}")
        self._shutdown_loop()

    def _shutdown_loop(self):
        with self._lock:
            self._user_disconnect = True
        self._client.disconnect()
        self._client.loop_stop()
        with self._lock:
            self._status = ConnectionStatus.DISCONNECTED

    def _on_connect(self, client, userdata, connect_flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"Connection refused by {self._endpoint}: {reason_code}")
            with self._lock:
                self._connect_error = f"refused ({reason_code})"
            self._connected_event.set()
            return

        with self._lock:
            self._status = ConnectionStatus.CONNECTED
            self._retries = 0
            self._connect_error = None
            subscriptions = list(self._subscriptions.values())
        logger.info(f"Connected to {self._endpoint}:{self._port}")

        for topic in subscriptions:
            self._client.subscribe(topic.topic, qos=int(topic.qos or QoS.QOS0))
            logger.debug(f"Re-subscribed to {topic.topic}")
        self._connected_event.set()

    def _on_connect_fail(self, client, userdata):
        logger.warning(f"Connection attempt to {self._endpoint}:{self._port} failed")
        self._handle_connection_loss()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        with self._lock:
            if self._user_disconnect:
                self._status = ConnectionStatus.DISCONNECTED
                return
        logger.warning(f"Lost connection to {self._endpoint}: {reason_code}")
        self._handle_connection_loss()

    def _handle_connection_loss(self):
        with self._lock:
            if self._user_disconnect or self._status is ConnectionStatus.DISCONNECTED:
                return
            self._retries += 1
            exhausted = self._retries > self._settings.max_connection_retries
            if exhausted:
                self._status = ConnectionStatus.DISCONNECTED
                self._user_disconnect = True
            elif self._status is not ConnectionStatus.CONNECTING:
                self._status = ConnectionStatus.RECONNECTING

        if exhausted:
            logger.error(f"Giving up on {self._endpoint} after "
                         f"{self._settings.max_connection_retries} retries")
            self._client.disconnect()
            self._client.loop_stop()
            self._connected_event.set()
            return

        if self.is_websocket:
            # Signatures expire, paho's next attempt needs a fresh one.
            self._sign_websocket_path()

    # Publishing ---------------------------------------------------------

    def publish(self, topic: str, payload: bytes | str, qos: Optional[QoS] = None,
                timeout: Optional[int] = None) -> None:
        """
        Publish and block until the message is acknowledged (QoS1) or sent (QoS0).

        Args:
            topic: Topic to publish to
            payload: Message body
            qos: QoS level (defaults to QOS0)
            timeout: Milliseconds to wait, None or 0 to wait indefinitely

        Raises:
            PublishError: If paho rejects the message
            PublishTimeoutError: If the message is not acknowledged in time
        """
        qos = QoS.QOS0 if qos is None else QoS(qos)
        info = self._client.publish(topic, payload, qos=int(qos))
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Publish to {topic} rejected: {mqtt.error_string(info.rc)}")

        info.wait_for_publish(_seconds(timeout))
        with self._lock:
            # paho runs on_publish before it marks the info as published
            acked = info.is_published() or info.mid in self._early_acks
            self._early_acks.discard(info.mid)
            if not acked:
                self._abandoned.add(info.mid)
                raise PublishTimeoutError(f"Publish to {topic} not acknowledged within {timeout} ms")
        logger.debug(f"Published to {topic} (mid={info.mid}, qos={qos.name})")

    def publish_message(self, message: IotMessage, timeout: Optional[int] = None) -> None:
        """
        Publish without blocking.

        Exactly one of the message's on_success, on_failure or on_timeout hooks is
        called later from the worker pool.

        Args:
            message: Message to publish
            timeout: Milliseconds to wait for the acknowledgement (defaults to the
                server_ack_timeout setting, 0 disables the timeout)
        """
        qos = QoS.QOS0 if message.qos is None else QoS(message.qos)
        timeout = self._settings.server_ack_timeout if timeout is None else timeout

        # paho may call on_publish while holding its own locks, so the publish
        # itself runs outside self._lock; acks that race ahead land in _early_acks.
        info = self._client.publish(message.topic, message.payload, qos=int(qos))
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"Publish to {message.topic} rejected: {mqtt.error_string(info.rc)}")
            self._dispatch(message.on_failure)
            return

        with self._lock:
            if info.mid in self._early_acks:
                self._early_acks.discard(info.mid)
                self._dispatch(message.on_success)
                return
            timer = self.schedule_timeout_task(lambda: self._expire(info.mid), timeout) if timeout else None
            self._pending[info.mid] = (message, timer)
        logger.debug(f"Queued {message!r} (mid={info.mid})")

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        with self._lock:
            entry = self._pending.pop(mid, None)
            if entry is None:
                if mid in self._abandoned:
                    self._abandoned.discard(mid)
                else:
                    self._early_acks.add(mid)
                return

        message, timer = entry
        if timer is not None:
            timer.cancel()
        if reason_code.is_failure:
            logger.warning(f"Broker rejected publish to {message.topic}: {reason_code}")
            self._dispatch(message.on_failure)
        else:
            self._dispatch(message.on_success)

    def _expire(self, mid: int):
        with self._lock:
            entry = self._pending.pop(mid, None)
            if entry is None:
                return
            self._abandoned.add(mid)
        message = entry[0]
        logger.warning(f"Publish to {message.topic} timed out (mid={mid})")
        self._dispatch(message.on_timeout)

    # Will message -------------------------------------------------------

    def set_will_message(self, message: Optional[IotMessage]) -> None:
        """
        Register the message the broker sends if this client drops ungracefully.

        paho sends the will with CONNECT, so a change made while connected only
        takes effect on the next connection. None clears the will.
        """
        if message is None:
            self._client.will_clear()
        else:
            qos = QoS.QOS0 if message.qos is None else QoS(message.qos)
            self._client.will_set(message.topic, message.payload, qos=int(qos))
        self._will_message = message
        if self._status is not ConnectionStatus.DISCONNECTED:
            logger.info("Will message changed while connected, applies from the next connection")

    # Subscriptions ------------------------------------------------------

    def subscribe(self, topic: IotTopic) -> None:
        """
        Start delivering messages matching ``topic.topic`` to ``topic.on_message``.

        While disconnected the subscription is recorded and sent on connect.
        While connected this blocks until the broker answers with a SUBACK, for
        at most the server_ack_timeout setting.

        Raises:
            SubscribeError: If paho rejects the subscription, the broker refuses
                it, or no SUBACK arrives in time
        """
        qos = QoS.QOS0 if topic.qos is None else QoS(topic.qos)
        with self._lock:
            self._subscriptions[topic.topic] = topic
        self._client.message_callback_add(topic.topic, self._message_handler(topic))

        # The mid is registered before the SUBACK handler can look for it.
        with self._suback_arrived:
            rc, mid = self._client.subscribe(topic.topic, qos=int(qos))
            awaiting = rc == mqtt.MQTT_ERR_SUCCESS and self._status is ConnectionStatus.CONNECTED
            if awaiting:
                self._subacks[mid] = None

        if rc == mqtt.MQTT_ERR_NO_CONN:
            logger.debug(f"Not connected, {topic.topic} will be subscribed on connect")
            return
        if rc != mqtt.MQTT_ERR_SUCCESS:
            self._forget_subscription(topic.topic)
            raise SubscribeError(f"Subscribe to {topic.topic} rejected: {mqtt.error_string(rc)}")

        if awaiting:
            reason_codes = self._await_suback(mid)
            if reason_codes is None:
                self._forget_subscription(topic.topic)
                raise SubscribeError(f"No SUBACK for {topic.topic} within "
                                     f"{self._settings.server_ack_timeout} ms")
            refused = [code for code in reason_codes if code.is_failure]
            if refused:
                self._forget_subscription(topic.topic)
                raise SubscribeError(f"Subscribe to {topic.topic} refused by broker: {refused[0]}")
        logger.info(f"Subscribed to {topic.topic} ({qos.name})")

    def _await_suback(self, mid: int) -> Optional[list]:
        with self._suback_arrived:
            self._suback_arrived.wait_for(lambda: self._subacks[mid] is not None,
                                          _seconds(self._settings.server_ack_timeout))
            return self._subacks.pop(mid)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        with self._suback_arrived:
            if mid in self._subacks:
                self._subacks[mid] = list(reason_code_list)
                self._suback_arrived.notify_all()
                return
        # Re-subscriptions after a reconnect have nobody waiting on them.
        for code in reason_code_list:
            if code.is_failure:
                logger.error(f"Broker refused subscription (mid={mid}): {code}")

    def _forget_subscription(self, topic_filter: str):
        with self._lock:
            self._subscriptions.pop(topic_filter, None)
        self._client.message_callback_remove(topic_filter)

    def unsubscribe(self, topic_filter: str) -> None:
        """Stop delivery for a topic filter previously passed to subscribe()."""
        with self._lock:
            topic = self._subscriptions.pop(topic_filter, None)
        if topic is None:
            logger.warning(f"Not subscribed to {topic_filter}")
            return

        self._client.message_callback_remove(topic_filter)
        rc, _ = self._client.unsubscribe(topic_filter)
        if rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            raise SubscribeError(f"Unsubscribe from {topic_filter} rejected: {mqtt.error_string(rc)}")
        logger.info(f"Unsubscribed from {topic_filter}")

    def _message_handler(self, topic: IotTopic):
        def handle(client, userdata, msg):
            message = IotMessage(msg.topic, _qos_of(msg.qos), msg.payload)
            self._dispatch(topic.on_message, message)
        return handle

    def _on_unmatched_message(self, client, userdata, msg):
        logger.debug(f"No subscription for message on {msg.topic}")

    # Devices ------------------------------------------------------------

    def attach(self, device) -> None:
        with self._lock:
            if device in self._devices:
                raise ValueError(f"Device {device!r} is already attached")
            self._devices.append(device)

    def detach(self, device) -> None:
        with self._lock:
            self._devices.remove(device)

    # Scheduling ---------------------------------------------------------

    def schedule_routine_task(self, fn: Callable[[], None], initial_delay: int, period: int) -> RoutineTask:
        """Run ``fn`` every ``period`` ms after ``initial_delay`` ms, until cancelled."""
        return RoutineTask(fn, initial_delay, period).start()

    def schedule_timeout_task(self, fn: Callable[[], None], timeout: int) -> threading.Timer:
        """Run ``fn`` on the worker pool once ``timeout`` ms have passed."""
        timer = threading.Timer(_seconds(timeout) or 0.0, self._dispatch, args=(fn,))
        timer.daemon = True
        timer.start()
        return timer

    def _dispatch(self, fn: Callable, *args):
        self.execution_service.submit(self._run_callback, fn, *args)

    @staticmethod
    def _run_callback(fn: Callable, *args):
        try:
            fn(*args)
        except Exception:
            logger.exception(f"Error in callback {fn!r}")

    def __repr__(self):
        return (f"IotMqttConnection(client_id={self._client_id!r}, endpoint={self._endpoint!r}, "
                f"type={self._connection_type.name}, status={self._status.name})")
