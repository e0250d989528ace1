"""
Outbound messages, topic subscriptions and the factories that bind them to
plain callables.

IotMessage and IotTopic expose overridable hooks (``on_success``,
``on_failure``, ``on_timeout`` and ``on_message``) that the connection invokes
from its worker pool. Most callers never subclass them: ``make_publisher`` and
``make_subscription`` return adapters that forward each hook to a function.
"""

from typing import Callable, Optional

from .codec import QOS_TAGS
from .models import QoS
from .logging_config import get_logger

logger = get_logger('messages')


class IotMessage:
    """An MQTT message, either being published or just received."""

    def __init__(self, topic: str, qos: Optional[QoS] = None, payload: bytes | str | None = None):
        self.topic = topic
        self.qos = qos
        if isinstance(payload, str):
            payload = payload.encode('utf-8')
        self.payload = payload if payload is not None else b''

    @property
    def string_payload(self) -> str:
        """Payload decoded as UTF-8."""
        return self.payload.decode('utf-8')

    def on_success(self) -> None:
        """Called once the broker acknowledged the publish."""
        logger.debug(f"Publish to {self.topic} succeeded")

    def on_failure(self) -> None:
        """Called when the publish was rejected."""
        logger.debug(f"Publish to {self.topic} failed")

    def on_timeout(self) -> None:
        """Called when no acknowledgement arrived in time."""
        logger.debug(f"Publish to {self.topic} timed out")

    def __repr__(self):
        return f"{type(self).__name__}(topic={self.topic!r}, qos={self.qos!r}, payload={len(self.payload)} bytes)"


class IotTopic:
    """A topic filter with a handler for matching inbound messages."""

    def __init__(self, topic: str, qos: Optional[QoS] = None):
        self.topic = topic
        self.qos = qos

    def on_message(self, message: IotMessage) -> None:
        """Called for every inbound message matching the filter."""
        logger.debug(f"Unhandled message on {message.topic}")

    def __repr__(self):
        return f"{type(self).__name__}(topic={self.topic!r}, qos={self.qos!r})"


class CallbackMessage(IotMessage):
    """IotMessage whose completion hooks call zero-argument functions."""

    def __init__(self, topic: str, qos: Optional[QoS], payload: bytes | str | None,
                 on_success: Callable[[], None], on_failure: Callable[[], None],
                 on_timeout: Callable[[], None]):
        super().__init__(topic, qos, payload)
        self._on_success = on_success
        self._on_failure = on_failure
        self._on_timeout = on_timeout

    def on_success(self) -> None:
        self._on_success()

    def on_failure(self) -> None:
        self._on_failure()

    def on_timeout(self) -> None:
        self._on_timeout()


class CallbackTopic(IotTopic):
    """IotTopic whose message hook calls a one-argument function."""

    def __init__(self, topic: str, qos: Optional[QoS], on_message: Callable[[IotMessage], None]):
        super().__init__(topic, qos)
        self._on_message = on_message

    def on_message(self, message: IotMessage) -> None:
        self._on_message(message)


PublishFn = Callable[[str, Optional[str], bytes | str], CallbackMessage]


def make_publisher(on_success: Callable[[], None], on_failure: Callable[[], None],
                   on_timeout: Callable[[], None]) -> PublishFn:
    """
    Bind three completion callbacks into a message factory.

    Args:
        on_success: Called when the broker acknowledges a message
        on_failure: Called when a message is rejected
        on_timeout: Called when no acknowledgement arrives in time

    Returns:
        Function ``(topic, qos_tag, payload)`` building a message for
        ``IotClient.publish_async``. Every call builds a new message.
    """
    def publish_fn(topic: str, qos: Optional[str], payload: bytes | str) -> CallbackMessage:
        return CallbackMessage(topic, QOS_TAGS.value_of(qos), payload,
                               on_success, on_failure, on_timeout)
    return publish_fn


def make_subscription(topic: str, qos: Optional[str],
                      on_message: Callable[[IotMessage], None]) -> CallbackTopic:
    """
    Build a subscription for ``IotClient.subscribe``.

    Args:
        topic: Topic filter, may contain ``+`` and ``#`` wildcards
        qos: QoS tag (``'qos0'`` or ``'qos1'``)
        on_message: Called with an IotMessage for every matching message
    """
    return CallbackTopic(topic, QOS_TAGS.value_of(qos), on_message)
