"""HTTP polling transport.

Periodically GETs the "latest" endpoint and re-emits every returned
document as a ``NewAirQualityData`` event, so consumers cannot tell it
apart from the push channel. Duplicates are expected and are dropped by
the reconciler.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from collections.abc import Callable
from typing import Any, Protocol

from pysmartair._constants import Command, PushEvent
from pysmartair._transport import ConnectionHandle
from pysmartair.bus import SubscriptionBus
from pysmartair.config import SmartAirConfig
from pysmartair.exceptions import SmartAirTransportError
from pysmartair.models.status import TransportKind

_logger = logging.getLogger(__name__)


class JsonFetcher(Protocol):
    async def get_json(self, url: str) -> Any: ...


def iter_documents(body: Any) -> list[dict[str, Any]]:
    """Flatten a latest/history response into a list of documents."""
    if isinstance(body, dict):
        nested = body.get("data")
        if isinstance(nested, list):
            body = nested
        else:
            return [body]
    if isinstance(body, list):
        return [item for item in body if isinstance(item, dict)]
    return []


class PollTransport:
    """Poll-based variant of the transport interface."""

    def __init__(self, config: SmartAirConfig, http: JsonFetcher) -> None:
        self._config = config
        self._http = http
        self._handlers = SubscriptionBus()
        self._task: asyncio.Task[None] | None = None
        self._handle: ConnectionHandle | None = None

    @property
    def kind(self) -> TransportKind:
        return TransportKind.POLL

    @property
    def is_connected(self) -> bool:
        return self._handle is not None

    def on(self, event_name: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        return self._handlers.subscribe(event_name, handler)

    async def connect(self) -> ConnectionHandle:
        """Fetch once (failing fast on a dead backend) and start the poll loop."""
        if self._handle is not None:
            return self._handle
        body = await self._http.get_json(self._config.latest_url)
        handle = ConnectionHandle(kind=TransportKind.POLL, connection_id=f"poll-{secrets.token_hex(4)}")
        self._handle = handle
        self._task = asyncio.create_task(self._poll_loop(), name="pysmartair-poll")
        _logger.debug("Polling %s every %.1fs", self._config.latest_url, self._config.poll_interval)
        self._emit(body)
        return handle

    async def disconnect(self) -> None:
        task = self._task
        self._task = None
        self._handle = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.debug("Polling stopped")

    async def invoke(self, command: str, *args: Any) -> Any:
        if command == Command.GET_LATEST:
            return await self._http.get_json(self._config.latest_url)
        if command == Command.GET_HISTORY:
            return await self._http.get_json(self._config.history_url)
        if command in (Command.JOIN_LOCATION_GROUP, Command.LEAVE_LOCATION_GROUP):
            # Polling always returns every station.
            return {"success": True}
        raise SmartAirTransportError(f"Command {command!r} is not supported while polling", endpoint=command)

    async def _poll_loop(self) -> None:
        tick = 0
        while True:
            await asyncio.sleep(self._config.poll_interval)
            tick += 1
            try:
                body = await self._http.get_json(self._config.latest_url)
            except SmartAirTransportError:
                _logger.debug("Poll tick %d failed; retrying next tick", tick, exc_info=True)
                continue
            self._emit(body)

    def _emit(self, body: Any) -> None:
        for document in iter_documents(body):
            self._handlers.publish(PushEvent.NEW_DATA, document)
