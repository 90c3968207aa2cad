"""MQTT-backed message bus."""

from __future__ import annotations

import json
import logging
from threading import Lock
from typing import Any, Dict, List, Optional

from paho.mqtt import client as mqtt

from messaging.bus import BusError, Handler, MessageBus, Payload, deliver_with_retries

log = logging.getLogger(__name__)


class MqttMessageBus(MessageBus):
    """JSON messages over MQTT at QoS 1.

    Each handler gets up to ``max_deliveries`` attempts before the message is
    acknowledged, so a message whose handler keeps failing is logged and
    dropped rather than left in flight.
    """

    def __init__(
        self,
        host: str,
        port: int = 1883,
        client_id: str = "usage-service",
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 30,
        max_deliveries: int = 3,
    ) -> None:
        if max_deliveries < 1:
            raise ValueError("max_deliveries must be at least 1.")
        self.max_deliveries = max_deliveries
        self._handlers: Dict[str, List[Handler]] = {}
        self._lock = Lock()
        self.cli = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=False,
            manual_ack=True,
        )
        if username:
            self.cli.username_pw_set(username, password or "")
        self.cli.on_connect = self._on_connect
        self.cli.connect_async(host, port, keepalive=keepalive)
        self.cli.loop_start()

    def publish(self, topic: str, payload: Payload) -> None:
        body = json.dumps(payload, separators=(",", ":"), default=str)
        log.debug("MQTT PUB %s %s", topic, body)
        info = self.cli.publish(topic, body, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BusError(f"Failed to publish to {topic!r}: {mqtt.error_string(info.rc)}")

    def subscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            first = topic not in self._handlers
            self._handlers.setdefault(topic, []).append(handler)
        if first:
            self.cli.message_callback_add(topic, self._on_message)
            if self.cli.is_connected():
                self.cli.subscribe(topic, qos=1)

    def close(self) -> None:
        self.cli.loop_stop()
        self.cli.disconnect()

    def _on_connect(self, client, _userdata, _flags, reason_code, _properties) -> None:
        if reason_code.is_failure:
            log.error("MQTT connection refused: %s", reason_code)
            return
        with self._lock:
            topics = list(self._handlers)
        for topic in topics:
            client.subscribe(topic, qos=1)

    def _on_message(self, client, _userdata, msg) -> None:
        try:
            data: Any = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            log.warning(
                "Discarding non-JSON message",
                extra={"topic": msg.topic, "reason": "invalid json"},
            )
            client.ack(msg.mid, msg.qos)
            return

        if not isinstance(data, dict):
            log.warning(
                "Discarding non-object message",
                extra={"topic": msg.topic, "reason": "invalid payload"},
            )
            client.ack(msg.mid, msg.qos)
            return

        with self._lock:
            handlers = list(self._handlers.get(msg.topic, ()))
        for handler in handlers:
            deliver_with_retries(msg.topic, handler, data, self.max_deliveries)
        client.ack(msg.mid, msg.qos)
