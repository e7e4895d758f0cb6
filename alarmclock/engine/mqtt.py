"""MQTT connection for the alarm clock.

Subscriptions are remembered and re-sent from ``on_connect``: the session is
clean, so the broker forgets them whenever paho reconnects.
"""

from __future__ import annotations

import logging
import ssl
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from .config import MqttConfig

MessageHandler = Callable[[str], None]


class AlarmMqtt:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or logging.getLogger("alarmclock.mqtt")
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._handlers: dict[str, MessageHandler] = {}

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT host not configured; status publishing disabled")
            return
        with self._lock:
            if self._client is not None:
                return
            client = self._build_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to MQTT: %s", exc)
                return
            client.loop_start()
            self._client = client

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"alarm-clock-{self.config.topic_base}",
            clean_session=True,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or "")
        if self.config.tls_enabled:
            client.tls_set(
                ca_certs=self.config.ca_cert,
                certfile=self.config.cert,
                keyfile=self.config.key,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
            )
        client.reconnect_delay_set(min_delay=1, max_delay=60)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.loop_stop()
            client.disconnect()

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            return
        try:
            client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (OSError, ValueError) as exc:
            self._logger.debug("[mqtt] Failed to publish MQTT message: %s", exc)

    def subscribe(self, topic: str, on_message: MessageHandler) -> bool:
        """Route messages on ``topic`` to ``on_message``.

        The handler is kept either way and subscribed again on every connect.
        Returns False when there is no client yet.
        """
        with self._lock:
            self._handlers[topic] = on_message
            client = self._client
        if not client:
            self._logger.debug("[mqtt] Not connected; %s will be subscribed on connect", topic)
            return False
        self._send_subscribe(client, topic)
        return True

    def _send_subscribe(self, client: mqtt.Client, topic: str) -> None:
        result, _mid = client.subscribe(topic)
        if result == mqtt.MQTT_ERR_NO_CONN:
            # on_connect subscribes once the session is up
            return
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)

    def _on_connect(
        self, client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any = None
    ) -> None:
        if getattr(reason_code, "is_failure", False):
            self._logger.warning("[mqtt] Broker refused the connection: %s", reason_code)
            return
        with self._lock:
            topics = list(self._handlers)
        self._logger.info("[mqtt] Connected, subscribing to %d topic(s)", len(topics))
        for topic in topics:
            self._send_subscribe(client, topic)

    def _on_disconnect(
        self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any = None
    ) -> None:
        if getattr(reason_code, "is_failure", False):
            self._logger.warning("[mqtt] Lost MQTT connection (%s); paho will reconnect", reason_code)

    def _on_message(self, _client: mqtt.Client, _userdata: Any, message: mqtt.MQTTMessage) -> None:
        with self._lock:
            handlers = [
                handler for topic, handler in self._handlers.items() if mqtt.topic_matches_sub(topic, message.topic)
            ]
        payload = message.payload.decode("utf-8", errors="ignore")
        for handler in handlers:
            try:
                handler(payload)
            except Exception as exc:
                self._logger.error(
                    "[mqtt] MQTT subscriber callback failed for topic '%s': %s", message.topic, exc, exc_info=True
                )
