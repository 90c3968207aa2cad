"""Topic-based message bus with an in-process implementation."""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, Dict, List

from settings import get_settings

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]
Handler = Callable[[Payload], None]


class BusError(RuntimeError):
    """Raised when a message cannot be handed to the bus."""


class MessageBus:
    """Publish/subscribe over named topics carrying JSON-like payloads."""

    def publish(self, topic: str, payload: Payload) -> None:
        raise NotImplementedError

    def subscribe(self, topic: str, handler: Handler) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


def deliver_with_retries(
    topic: str, handler: Handler, payload: Payload, max_deliveries: int
) -> bool:
    """Hand ``payload`` to ``handler`` until it succeeds or attempts run out.

    Returns False when the message was dropped.
    """
    for attempt in range(1, max_deliveries + 1):
        try:
            handler(copy.deepcopy(payload))
            return True
        except Exception as exc:
            logger.warning(
                "Delivery attempt %d/%d failed: %s",
                attempt,
                max_deliveries,
                exc,
                extra={"topic": topic},
            )
    logger.error(
        "Dropping message after %d failed deliveries",
        max_deliveries,
        extra={
            "topic": topic,
            "device_id": payload.get("deviceId"),
            "reason": "redelivery exhausted",
        },
    )
    return False


class MockMessageBus(MessageBus):
    """Synchronous fan-out bus with at-least-once delivery.

    A handler that raises receives the same message again, up to
    ``max_deliveries`` attempts in total, after which the message is dropped
    for that subscriber and logged.
    """

    def __init__(self, max_deliveries: int = 3) -> None:
        if max_deliveries < 1:
            raise ValueError("max_deliveries must be at least 1.")
        self.max_deliveries = max_deliveries
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._published: Dict[str, List[Payload]] = defaultdict(list)
        self._lock = Lock()
        self._closed = False

    def publish(self, topic: str, payload: Payload) -> None:
        with self._lock:
            if self._closed:
                raise BusError(f"Cannot publish to {topic!r}: bus is closed.")
            self._published[topic].append(copy.deepcopy(payload))
            handlers = list(self._handlers.get(topic, ()))

        for handler in handlers:
            self._deliver(topic, handler, payload)

    def subscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[topic].append(handler)

    def published(self, topic: str) -> List[Payload]:
        with self._lock:
            return copy.deepcopy(self._published.get(topic, []))

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._handlers.clear()

    def _deliver(self, topic: str, handler: Handler, payload: Payload) -> None:
        deliver_with_retries(topic, handler, payload, self.max_deliveries)


@lru_cache
def build_default_bus() -> MessageBus:
    settings = get_settings()
    if settings.mqtt_host:
        from messaging.mqtt_bus import MqttMessageBus

        return MqttMessageBus(
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            client_id=settings.mqtt_client_id,
        )
    return MockMessageBus()
