"""Internal MQTT runtime and payload helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, cast

import paho.mqtt.client as mqtt

from pysmartair.exceptions import SmartAirPayloadError


@dataclass(frozen=True)
class MqttSettings:
    """Broker connection details."""

    host: str
    port: int
    client_id: str
    username: str | None = None
    password: str | None = None
    tls: bool = False
    keepalive: int = 60
    subscriptions: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MqttMessage:
    """Decoded inbound MQTT message."""

    topic: str
    payload: dict[str, Any]


def build_client_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(6)}"


def decode_mqtt_payload(payload: bytes) -> dict[str, Any]:
    """Decode UTF-8 JSON payload bytes into an object."""
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SmartAirPayloadError(f"MQTT payload is not JSON: {payload[:64]!r}") from exc
    if not isinstance(parsed, dict):
        raise SmartAirPayloadError("MQTT payload decoded to non-object JSON")
    return parsed


class MqttRuntime:
    """paho-mqtt network thread bridged onto an asyncio loop.

    The constructor callbacks are always scheduled on *loop* with
    ``call_soon_threadsafe``; none of them runs on the paho thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[MqttMessage], None],
        on_connect: Callable[[bool, str], None],
        on_disconnect: Callable[[str], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._subscriptions: set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    def _build_client(self, settings: MqttSettings) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()
        client.on_connect = self._paho_connect
        client.on_message = self._paho_message
        client.on_disconnect = self._paho_disconnect
        return client

    def start(self, settings: MqttSettings) -> None:
        """Open the TCP connection and run the paho loop thread.

        Blocking; callers on the event loop go through ``run_in_executor``.
        Subscriptions in *settings* are (re)applied on every CONNACK.
        """
        self.stop()
        self._logger.debug("MQTT start host=%s port=%s client_id=%s", settings.host, settings.port, settings.client_id)
        self._subscriptions = set(settings.subscriptions)
        client = self._build_client(settings)
        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()
        self._client = client
        self._running = True

    # paho network-thread callbacks ------------------------------------

    def _paho_connect(self, client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any) -> None:
        ok = reason_code.value == 0
        if ok:
            for topic in sorted(self._subscriptions):
                client.subscribe(topic, qos=0)
        else:
            self._logger.warning("MQTT broker rejected connect: %s", reason_code)
        self._loop.call_soon_threadsafe(self._on_connect, ok, str(reason_code))

    def _paho_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            payload = decode_mqtt_payload(msg.payload)
        except SmartAirPayloadError:
            self._logger.debug("Dropping undecodable message on %s", msg.topic, exc_info=True)
            return
        self._loop.call_soon_threadsafe(self._on_message, MqttMessage(topic=msg.topic, payload=payload))

    def _paho_disconnect(self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any) -> None:
        # Disconnects we asked for in stop() are not reported.
        if not self._running:
            return
        self._logger.debug("MQTT connection dropped: %s", reason_code)
        self._loop.call_soon_threadsafe(self._on_disconnect, str(reason_code))

    # ------------------------------------------------------------------

    def subscribe(self, topic: str) -> None:
        self._subscriptions.add(topic)
        if self._client is not None:
            self._client.subscribe(topic, qos=0)

    def unsubscribe(self, topic: str) -> None:
        self._subscriptions.discard(topic)
        if self._client is not None:
            self._client.unsubscribe(topic)

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if self._client is None:
            raise RuntimeError("MQTT runtime is not running")
        self._client.publish(topic, json.dumps(payload, separators=(",", ":")), qos=0)

    def stop(self) -> None:
        """Disconnect and join the network thread; no-op when idle."""
        client, self._client = self._client, None
        was_running, self._running = self._running, False
        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT runtime stopped")
