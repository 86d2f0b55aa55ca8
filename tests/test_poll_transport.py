from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from pysmartair._constants import Command, PushEvent
from pysmartair.config import SmartAirConfig
from pysmartair.exceptions import SmartAirTransportError
from pysmartair.ingestion.poll import PollTransport, iter_documents
from pysmartair.models.status import TransportKind

LATEST = [
    {"stationId": "S1", "observedAt": "2026-01-01T00:00:00Z", "aqi": 40},
    {"stationId": "S2", "observedAt": "2026-01-01T00:00:00Z", "aqi": 80},
]
HISTORY = [{"stationId": "S1", "observedAt": "2025-12-31T23:00:00Z", "aqi": 30}]


@dataclass
class FakeAirQualityBackend:
    config: SmartAirConfig
    fail: bool = False
    calls: list[str] = field(default_factory=list)

    async def get_json(self, url: str) -> Any:
        self.calls.append(url)
        if self.fail:
            raise SmartAirTransportError(f"HTTP 503 from {url}", status_code=503, endpoint=url)
        if url == self.config.latest_url:
            return LATEST
        if url == self.config.history_url:
            return HISTORY
        raise AssertionError(f"unexpected url {url}")


@pytest.fixture
def config() -> SmartAirConfig:
    return SmartAirConfig(poll_interval=0.01)


def test_iter_documents_shapes() -> None:
    assert iter_documents(LATEST) == LATEST
    assert iter_documents({"data": LATEST}) == LATEST
    assert iter_documents(LATEST[0]) == [LATEST[0]]
    assert iter_documents([LATEST[0], "junk", 3]) == [LATEST[0]]
    assert iter_documents("junk") == []


@pytest.mark.asyncio
async def test_connect_emits_initial_documents_and_keeps_polling(config: SmartAirConfig) -> None:
    backend = FakeAirQualityBackend(config)
    transport = PollTransport(config, backend)
    seen: list[dict[str, Any]] = []
    transport.on(PushEvent.NEW_DATA, seen.append)

    handle = await transport.connect()
    assert handle.kind == TransportKind.POLL
    assert transport.is_connected
    assert [doc["stationId"] for doc in seen] == ["S1", "S2"]

    await asyncio.sleep(0.05)
    assert len(seen) > 2

    await transport.disconnect()
    assert not transport.is_connected
    calls_after_stop = len(backend.calls)
    await asyncio.sleep(0.03)
    assert len(backend.calls) == calls_after_stop


@pytest.mark.asyncio
async def test_connect_fails_fast_on_dead_backend(config: SmartAirConfig) -> None:
    transport = PollTransport(config, FakeAirQualityBackend(config, fail=True))

    with pytest.raises(SmartAirTransportError):
        await transport.connect()
    assert not transport.is_connected


@pytest.mark.asyncio
async def test_failed_tick_is_retried_on_next_tick(config: SmartAirConfig) -> None:
    backend = FakeAirQualityBackend(config)
    transport = PollTransport(config, backend)
    seen: list[dict[str, Any]] = []
    transport.on(PushEvent.NEW_DATA, seen.append)
    await transport.connect()

    backend.fail = True
    seen.clear()
    await asyncio.sleep(0.04)
    assert seen == []
    assert transport.is_connected

    backend.fail = False
    await asyncio.sleep(0.04)
    assert seen

    await transport.disconnect()


@pytest.mark.asyncio
async def test_invoke_maps_commands_to_endpoints(config: SmartAirConfig) -> None:
    backend = FakeAirQualityBackend(config)
    transport = PollTransport(config, backend)

    assert await transport.invoke(Command.GET_LATEST) == LATEST
    assert await transport.invoke(Command.GET_HISTORY) == HISTORY
    assert await transport.invoke(Command.JOIN_LOCATION_GROUP, "north") == {"success": True}
    with pytest.raises(SmartAirTransportError):
        await transport.invoke("DeleteEverything")
