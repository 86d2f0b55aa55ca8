from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from pysmartair._constants import Command, PushEvent
from pysmartair._mqtt import MqttMessage, MqttSettings
from pysmartair.config import SmartAirConfig
from pysmartair.exceptions import SmartAirTransportError
from pysmartair.ingestion.push import PushTransport, event_body, event_name_for
from pysmartair.models.status import TransportKind


class FakeRuntime:
    """Stands in for the paho runtime; ``start`` runs on an executor thread like the real one."""

    def __init__(
        self,
        broker: FakeBroker,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[MqttMessage], None],
        on_connect: Callable[[bool, str], None],
        on_disconnect: Callable[[str], None],
        logger: logging.Logger,
    ) -> None:
        self.broker = broker
        self.loop = loop
        self.on_message = on_message
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.settings: MqttSettings | None = None
        self.running = False
        self.stopped = False
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.published: list[tuple[str, dict[str, Any]]] = []

    @property
    def is_running(self) -> bool:
        return self.running

    def start(self, settings: MqttSettings) -> None:
        self.settings = settings
        if self.broker.gate is not None:
            self.broker.entered.set()
            self.broker.gate.wait(timeout=5)
        if self.broker.mode == "oserror":
            raise OSError("connection refused")
        self.running = True
        if self.broker.mode == "accept":
            self.loop.call_soon_threadsafe(self.on_connect, True, "Success")
        elif self.broker.mode == "refuse":
            self.loop.call_soon_threadsafe(self.on_connect, False, "Not authorized")

    def subscribe(self, topic: str) -> None:
        self.subscribed.append(topic)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if not self.running:
            raise RuntimeError("MQTT runtime is not running")
        self.published.append((topic, payload))
        reply = self.broker.rpc_reply
        if reply is not None:
            body = {"requestId": payload["requestId"], **reply}
            self.loop.call_soon(self.on_message, MqttMessage(topic=payload["replyTo"], payload=body))

    def stop(self) -> None:
        self.running = False
        self.stopped = True


@dataclass
class FakeBroker:
    mode: str = "accept"
    rpc_reply: dict[str, Any] | None = None
    gate: threading.Event | None = None
    entered: threading.Event = field(default_factory=threading.Event)
    runtimes: list[FakeRuntime] = field(default_factory=list)

    def factory(self, **kwargs: Any) -> FakeRuntime:
        runtime = FakeRuntime(self, **kwargs)
        self.runtimes.append(runtime)
        return runtime

    @property
    def runtime(self) -> FakeRuntime:
        return self.runtimes[-1]


@pytest.fixture
def config() -> SmartAirConfig:
    return SmartAirConfig(connect_timeout=0.2, invoke_timeout=0.1, mqtt_topic_prefix="smartair")


def test_event_name_and_body_helpers() -> None:
    assert event_name_for("smartair/events/NewAirQualityData", {"aqi": 1}) == "NewAirQualityData"
    assert event_name_for("smartair/events/x", {"event": "AirQualityAlert"}) == "AirQualityAlert"
    assert event_body({"event": "AirQualityAlert", "data": {"aqi": 1}}) == {"aqi": 1}
    assert event_body({"aqi": 1}) == {"aqi": 1}


@pytest.mark.asyncio
async def test_connect_subscribes_event_and_reply_topics(config: SmartAirConfig) -> None:
    broker = FakeBroker()
    transport = PushTransport(config, runtime_factory=broker.factory)

    handle = await transport.connect()

    assert handle.kind == TransportKind.PUSH
    assert handle.connection_id == transport.client_id
    assert transport.is_connected
    settings = broker.runtime.settings
    assert settings is not None
    assert "smartair/events/+" in settings.subscriptions
    assert transport.response_topic in settings.subscriptions

    await transport.disconnect()
    assert broker.runtime.stopped
    assert not transport.is_connected


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["refuse", "oserror", "silent"])
async def test_connect_failures_raise_transport_error(config: SmartAirConfig, mode: str) -> None:
    broker = FakeBroker(mode=mode)
    transport = PushTransport(config, runtime_factory=broker.factory)

    with pytest.raises(SmartAirTransportError):
        await transport.connect()

    assert not transport.is_connected
    assert broker.runtime.stopped


@pytest.mark.asyncio
async def test_messages_dispatched_by_event_name(config: SmartAirConfig) -> None:
    broker = FakeBroker()
    transport = PushTransport(config, runtime_factory=broker.factory)
    observations: list[Any] = []
    alerts: list[Any] = []
    transport.on(PushEvent.NEW_DATA, observations.append)
    transport.on(PushEvent.ALERT, alerts.append)
    await transport.connect()

    runtime = broker.runtime
    runtime.on_message(MqttMessage(topic="smartair/events/NewAirQualityData", payload={"stationId": "S1"}))
    runtime.on_message(
        MqttMessage(topic="smartair/events/any", payload={"event": "AirQualityAlert", "data": {"aqi": 180}})
    )

    assert observations == [{"stationId": "S1"}]
    assert alerts == [{"aqi": 180}]
    await transport.disconnect()


@pytest.mark.asyncio
async def test_invoke_correlates_reply_by_request_id(config: SmartAirConfig) -> None:
    broker = FakeBroker(rpc_reply={"result": [{"stationId": "S1"}]})
    transport = PushTransport(config, runtime_factory=broker.factory)
    await transport.connect()

    # A reply for somebody else's request must be ignored.
    broker.runtime.on_message(MqttMessage(topic=transport.response_topic, payload={"requestId": "other"}))
    result = await transport.invoke(Command.GET_LATEST)

    assert result == [{"stationId": "S1"}]
    topic, request = broker.runtime.published[-1]
    assert topic == "smartair/rpc/request"
    assert request["command"] == "GetLatestAirQuality"
    assert request["replyTo"] == transport.response_topic
    await transport.disconnect()


@pytest.mark.asyncio
async def test_invoke_remote_error_and_timeout(config: SmartAirConfig) -> None:
    broker = FakeBroker(rpc_reply={"error": "no such command"})
    transport = PushTransport(config, runtime_factory=broker.factory)
    await transport.connect()

    with pytest.raises(SmartAirTransportError, match="no such command"):
        await transport.invoke(Command.GET_HISTORY)

    broker.rpc_reply = None
    with pytest.raises(SmartAirTransportError, match="timed out"):
        await transport.invoke(Command.GET_LATEST)
    await transport.disconnect()


@pytest.mark.asyncio
async def test_invoke_without_connection_raises(config: SmartAirConfig) -> None:
    transport = PushTransport(config, runtime_factory=FakeBroker().factory)
    with pytest.raises(SmartAirTransportError):
        await transport.invoke(Command.GET_LATEST)


@pytest.mark.asyncio
async def test_location_groups_survive_reconnect(config: SmartAirConfig) -> None:
    broker = FakeBroker()
    transport = PushTransport(config, runtime_factory=broker.factory)
    await transport.connect()

    assert await transport.invoke(Command.JOIN_LOCATION_GROUP, "north") == {"success": True}
    assert broker.runtime.subscribed == ["smartair/location/north/+"]

    await transport.disconnect()
    await transport.connect()
    settings = broker.runtime.settings
    assert settings is not None
    assert "smartair/location/north/+" in settings.subscriptions

    await transport.invoke(Command.LEAVE_LOCATION_GROUP, "north")
    assert broker.runtime.unsubscribed == ["smartair/location/north/+"]
    with pytest.raises(SmartAirTransportError):
        await transport.invoke(Command.JOIN_LOCATION_GROUP, "  ")
    await transport.disconnect()


@pytest.mark.asyncio
async def test_unexpected_disconnect_reports_connection_lost(config: SmartAirConfig) -> None:
    broker = FakeBroker()
    transport = PushTransport(config, runtime_factory=broker.factory)
    lost: list[Any] = []
    transport.on(PushEvent.CONNECTION_LOST, lost.append)
    await transport.connect()

    broker.runtime.on_disconnect("Unspecified error")

    assert lost == [{"reason": "Unspecified error"}]
    assert not transport.is_connected
    await transport.disconnect()
    assert broker.runtime.stopped


@pytest.mark.asyncio
async def test_cancelled_connect_stops_runtime_after_start_returns(config: SmartAirConfig) -> None:
    gate = threading.Event()
    broker = FakeBroker(gate=gate)
    transport = PushTransport(config, runtime_factory=broker.factory)
    received: list[Any] = []
    transport.on(PushEvent.NEW_DATA, received.append)
    loop = asyncio.get_running_loop()

    task = asyncio.create_task(transport.connect())
    assert await loop.run_in_executor(None, broker.entered.wait, 5)
    task.cancel()
    await asyncio.sleep(0.01)
    gate.set()
    with pytest.raises(asyncio.CancelledError):
        await task
    await transport.disconnect()

    runtime = broker.runtime
    assert runtime.stopped
    assert not runtime.is_running
    assert not transport.is_connected
    runtime.on_message(MqttMessage(topic="smartair/events/NewAirQualityData", payload={"stationId": "S1"}))
    assert received == []


@pytest.mark.asyncio
async def test_stop_after_connection_lost_is_awaited_and_failures_logged(
    config: SmartAirConfig, caplog: pytest.LogCaptureFixture
) -> None:
    broker = FakeBroker()
    transport = PushTransport(config, runtime_factory=broker.factory)
    await transport.connect()
    runtime = broker.runtime

    def failing_stop() -> None:
        runtime.stopped = True
        raise OSError("socket already closed")

    runtime.stop = failing_stop  # type: ignore[method-assign]
    caplog.set_level(logging.DEBUG, logger="pysmartair.ingestion.push")

    runtime.on_disconnect("Keepalive timeout")
    await transport.disconnect()

    assert runtime.stopped
    assert "MQTT runtime stop failed" in caplog.text
