"""Connection manager: push first, polling as a fallback.

Owns the connect / reconnect / fallback / probe policy and is the only
place that feeds transport events into the reconciler. Transport errors
never reach subscribers; they become state transitions published on the
bus as ``statusChanged`` (plus ``connected`` / ``disconnected``).

State machine::

    disconnected -> connecting -> connected
    connected -> reconnecting -> connected | polling
    polling -> connected            (successful push probe)
    any -> disconnected             (disconnect())
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from pysmartair._constants import Command, PushEvent
from pysmartair._transport import ConnectionHandle, Transport
from pysmartair.bus import Category, EventBus
from pysmartair.config import SmartAirConfig
from pysmartair.exceptions import SmartAirError, SmartAirPayloadError, SmartAirTransportError
from pysmartair.models.alert import Alert
from pysmartair.models.device import DeviceStatus
from pysmartair.models.observation import ObservationEvent, parse_observations
from pysmartair.models.status import ConnectionState, ConnectionStatus, TransportKind
from pysmartair.state.store import Reconciler

_logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(attempt: int, *, base: float, maximum: float) -> float:
    """Delay before retrying after failed *attempt* (1-indexed)."""
    return max(0.0, min(base * (2 ** (attempt - 1)), maximum))


class ConnectionManager:
    """Drive one push transport and one poll transport for a client session.

    Parameters
    ----------
    push : Transport or None
        Push transport. ``None`` means push is disabled and the manager
        goes straight to polling.
    poll : Transport
        Poll transport used as the fallback and for explicit pulls.
    reconciler : Reconciler
        Receives every parsed observation.
    bus : EventBus
        Destination for ``newData``, ``update``, ``alert``,
        ``deviceStatus`` and connection events.
    config : SmartAirConfig
        Retry, backoff, probe and staleness settings.
    sleep : callable
        Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        *,
        push: Transport | None,
        poll: Transport,
        reconciler: Reconciler,
        bus: EventBus,
        config: SmartAirConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._push = push
        self._poll = poll
        self._reconciler = reconciler
        self._bus = bus
        self._config = config
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._active: Transport | None = None
        self._handle: ConnectionHandle | None = None
        self._reconnect_attempts = 0
        self._last_error: str | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._init_task: asyncio.Task[bool] | None = None

        for transport in (push, poll):
            if transport is not None:
                self._wire(transport)

    # ------------------------------------------------------------------
    # Transport event intake
    # ------------------------------------------------------------------

    def _wire(self, transport: Transport) -> None:
        transport.on(PushEvent.NEW_DATA, functools.partial(self._on_observations, Category.NEW_DATA))
        transport.on(PushEvent.UPDATE, functools.partial(self._on_observations, Category.UPDATE))
        transport.on(PushEvent.ALERT, self._on_alert)
        transport.on(PushEvent.DEVICE_STATUS, self._on_device_status)
        if transport.kind == TransportKind.PUSH:
            transport.on(PushEvent.CONNECTION_LOST, self._on_connection_lost)

    def _on_observations(self, category: Category, payload: Any) -> None:
        if self._state == ConnectionState.DISCONNECTED:
            return
        try:
            events = parse_observations(payload, strict=False)
        except SmartAirPayloadError:
            _logger.debug("Ignoring unparseable %s payload", category, exc_info=True)
            return
        for event in events:
            if self._reconciler.ingest(event) is not None:
                self._bus.publish(category, event)

    def _on_alert(self, payload: Any) -> None:
        if self._state == ConnectionState.DISCONNECTED:
            return
        try:
            alert = Alert.from_payload(payload)
        except SmartAirPayloadError:
            _logger.debug("Ignoring unparseable alert payload", exc_info=True)
            return
        self._bus.publish(Category.ALERT, alert)

    def _on_device_status(self, payload: Any) -> None:
        if self._state == ConnectionState.DISCONNECTED:
            return
        try:
            status = DeviceStatus.from_payload(payload)
        except SmartAirPayloadError:
            _logger.debug("Ignoring unparseable device status payload", exc_info=True)
            return
        self._bus.publish(Category.DEVICE_STATUS, status)

    def _on_connection_lost(self, payload: Any) -> None:
        if self._active is not self._push or self._state != ConnectionState.CONNECTED:
            return
        reason = payload.get("reason") if isinstance(payload, dict) else None
        self._last_error = f"connection lost: {reason}"
        _logger.info("Push connection lost (%s); reconnecting", reason)
        self._active = None
        self._handle = None
        self._set_state(ConnectionState.RECONNECTING)
        self._bus.publish(Category.DISCONNECTED, {"reason": reason})
        self._spawn(self._reconnect(self._generation), name="pysmartair-reconnect")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def initialize(self) -> bool:
        """Connect, preferring push.

        Returns ``True`` when the push channel is live and ``False`` when
        data flows through polling instead. Concurrent calls share one
        connect attempt; calling again while running just reports the mode.
        """
        task = self._init_task
        if task is None or task.done():
            if self._state != ConnectionState.DISCONNECTED:
                return self._state == ConnectionState.CONNECTED
            task = self._spawn(self._start(self._generation), name="pysmartair-initialize")
            self._init_task = task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # disconnect() cancelled the attempt, not our caller.
            if task.cancelled():
                return False
            raise

    def get_status(self) -> ConnectionStatus:
        waiting = False
        if self._state != ConnectionState.DISCONNECTED and self._config.stale_after > 0:
            age = self._reconciler.age_seconds()
            waiting = age is None or age > self._config.stale_after
        return ConnectionStatus(
            state=self._state,
            is_enabled=self._push is not None,
            transport=self._active.kind if self._active is not None else None,
            connection_id=self._handle.connection_id if self._handle is not None else None,
            reconnect_attempts=self._reconnect_attempts,
            last_error=self._last_error,
            last_ingest_at=self._reconciler.last_ingested_at,
            waiting_for_data=waiting,
        )

    async def request_latest(self) -> ObservationEvent | None:
        """Pull the latest observations now, whatever the current mode.

        Results go through the reconciler like pushed data. Returns the
        reconciled latest record of the newest station in the response,
        or ``None`` when nothing could be fetched.
        """
        candidates: list[Transport] = []
        if self._active is not None:
            candidates.append(self._active)
        if self._poll not in candidates:
            candidates.append(self._poll)

        for transport in candidates:
            try:
                body = await transport.invoke(Command.GET_LATEST)
                events = parse_observations(body, strict=False)
            except SmartAirTransportError as exc:
                self._last_error = str(exc)
                _logger.debug("request_latest via %s failed: %s", transport.kind, exc)
                continue
            for event in events:
                if self._reconciler.ingest(event) is not None:
                    self._bus.publish(Category.NEW_DATA, event)
            if not events:
                return None
            newest = max(events, key=lambda event: event.observed_at)
            return self._reconciler.latest(newest.station_id) or newest
        return None

    async def join_location_group(self, group: str) -> bool:
        return await self._group_command(Command.JOIN_LOCATION_GROUP, group)

    async def leave_location_group(self, group: str) -> bool:
        return await self._group_command(Command.LEAVE_LOCATION_GROUP, group)

    async def disconnect(self) -> None:
        """Stop everything: pending connects, backoff, probes and polling."""
        self._generation += 1
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._init_task = None

        was_running = self._state != ConnectionState.DISCONNECTED
        self._active = None
        self._handle = None
        self._reconnect_attempts = 0
        for transport in (self._push, self._poll):
            if transport is None:
                continue
            try:
                await transport.disconnect()
            except SmartAirError:
                _logger.debug("%s transport disconnect failed", transport.kind, exc_info=True)

        self._set_state(ConnectionState.DISCONNECTED)
        if was_running:
            self._bus.publish(Category.DISCONNECTED, {"reason": "stopped"})

    # ------------------------------------------------------------------
    # Connect / fallback / probe
    # ------------------------------------------------------------------

    async def _start(self, generation: int) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        if self._push is not None and await self._connect_push_with_backoff(generation):
            return True
        if generation != self._generation:
            return False
        await self._fall_back_to_polling(generation)
        return False

    async def _reconnect(self, generation: int) -> None:
        if await self._connect_push_with_backoff(generation):
            return
        if generation == self._generation:
            await self._fall_back_to_polling(generation)

    async def _connect_push_with_backoff(self, generation: int) -> bool:
        assert self._push is not None  # noqa: S101
        attempts = self._config.reconnect_attempts
        for attempt in range(1, attempts + 1):
            if generation != self._generation:
                return False
            try:
                handle = await self._push.connect()
            except SmartAirTransportError as exc:
                self._reconnect_attempts = attempt
                self._last_error = str(exc)
                _logger.debug("Push connect attempt %d/%d failed: %s", attempt, attempts, exc)
                if attempt < attempts:
                    await self._sleep(
                        backoff_delay(
                            attempt,
                            base=self._config.reconnect_base_delay,
                            maximum=self._config.reconnect_max_delay,
                        )
                    )
                continue
            if generation != self._generation:
                # Completed after disconnect(); undo it.
                await self._push.disconnect()
                return False
            self._activate(self._push, handle)
            return True

        _logger.warning("Push channel unavailable after %d attempts; falling back to polling", attempts)
        return False

    async def _fall_back_to_polling(self, generation: int) -> None:
        try:
            handle = await self._poll.connect()
        except SmartAirTransportError as exc:
            self._last_error = str(exc)
            _logger.warning("Polling fallback could not start: %s", exc)
            self._active = None
            self._handle = None
            self._set_state(ConnectionState.POLLING)
        else:
            if generation != self._generation:
                await self._poll.disconnect()
                return
            self._activate(self._poll, handle)
        self._spawn(self._probe_loop(generation), name="pysmartair-probe")

    async def _probe_loop(self, generation: int) -> None:
        """While polling, retry push (and a poll transport that failed to start)."""
        while generation == self._generation:
            await self._sleep(self._config.probe_interval)
            if generation != self._generation:
                return
            if self._push is not None and await self._probe_push(generation):
                return
            if self._poll.is_connected:
                if self._push is None:
                    return
                continue
            try:
                handle = await self._poll.connect()
            except SmartAirTransportError as exc:
                self._last_error = str(exc)
                _logger.debug("Poll retry failed: %s", exc)
                continue
            if generation != self._generation:
                await self._poll.disconnect()
                return
            self._activate(self._poll, handle)

    async def _probe_push(self, generation: int) -> bool:
        assert self._push is not None  # noqa: S101
        try:
            handle = await self._push.connect()
        except SmartAirTransportError as exc:
            _logger.debug("Push probe failed: %s", exc)
            return False
        if generation != self._generation:
            await self._push.disconnect()
            return False
        _logger.info("Push probe succeeded; leaving polling mode")
        await self._poll.disconnect()
        self._activate(self._push, handle)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _activate(self, transport: Transport, handle: ConnectionHandle) -> None:
        self._active = transport
        self._handle = handle
        if transport.kind == TransportKind.PUSH:
            self._reconnect_attempts = 0
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED)
        else:
            # Keep the push failure details visible while degraded.
            self._set_state(ConnectionState.POLLING)
        self._bus.publish(
            Category.CONNECTED,
            {"transport": str(transport.kind), "connection_id": handle.connection_id},
        )

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        _logger.info("Connection state %s -> %s", previous, state)
        self._bus.publish(Category.STATUS_CHANGED, self.get_status())

    async def _group_command(self, command: Command, group: str) -> bool:
        transport = self._push if self._push is not None else self._poll
        try:
            await transport.invoke(command, group)
        except SmartAirTransportError as exc:
            _logger.warning("%s %r failed: %s", command, group, exc)
            return False
        return True

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled() or task is self._init_task:
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Background task %s failed", task.get_name(), exc_info=exc)
