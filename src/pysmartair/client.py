"""High-level async client for the smart-city air-quality platform."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from pysmartair._mqtt import MqttRuntime
from pysmartair._transport import JsonHttpClient
from pysmartair.alerts import AlertEvaluator, AlertLog
from pysmartair.bus import Handler, SubscriptionBus, Unsubscribe
from pysmartair.config import SmartAirConfig
from pysmartair.connection import ConnectionManager
from pysmartair.exceptions import SmartAirError, SmartAirTransportError
from pysmartair.ingestion.poll import PollTransport
from pysmartair.ingestion.push import PushTransport, RuntimeFactory
from pysmartair.models.alert import Alert
from pysmartair.models.observation import ObservationEvent, parse_observations
from pysmartair.models.status import ConnectionState, ConnectionStatus
from pysmartair.state.store import ReconciledState, Reconciler

_logger = logging.getLogger(__name__)


class SmartAirClient:
    """Async client composing one live air-quality session.

    Usage::

        async with SmartAirClient(SmartAirConfig.from_env()) as client:
            client.subscribe("newData", print)
            await client.initialize()

    Everything the session owns (reconciled state, subscriptions, recent
    alerts) lives on this object; nothing is module-global.
    """

    def __init__(
        self,
        config: SmartAirConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        push_runtime_factory: RuntimeFactory = MqttRuntime,
    ) -> None:
        self._config = config.validate()
        self._external_session = session is not None
        self._http_session = session
        self._push_runtime_factory = push_runtime_factory

        self.bus = SubscriptionBus()
        self.reconciler = Reconciler(bus=self.bus, history_cap=config.history_cap)
        self._evaluator = AlertEvaluator(alert_on_moderate=config.alert_on_moderate)
        self._alert_log = AlertLog(cap=config.alert_cap)
        self._evaluator.attach(self.bus)
        self._alert_log.attach(self.bus)

        self._http: JsonHttpClient | None = None
        self._manager: ConnectionManager | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SmartAirClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._http = JsonHttpClient(self._http_session, timeout=self._config.request_timeout)
        push = (
            PushTransport(self._config, runtime_factory=self._push_runtime_factory)
            if self._config.push_enabled
            else None
        )
        self._manager = ConnectionManager(
            push=push,
            poll=PollTransport(self._config, self._http),
            reconciler=self.reconciler,
            bus=self.bus,
            config=self._config,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._http = None
        self._manager = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_manager(self) -> ConnectionManager:
        if self._manager is None:
            raise SmartAirError("Client not initialized. Use 'async with SmartAirClient(...) as client:'")
        return self._manager

    def _require_http(self) -> JsonHttpClient:
        if self._http is None:
            raise SmartAirError("Client not initialized. Use 'async with SmartAirClient(...) as client:'")
        return self._http

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Seed history (if configured) and connect.

        Returns ``True`` on a live push connection, ``False`` when degraded
        to polling.
        """
        manager = self._require_manager()
        if self._config.seed_history and manager.state == ConnectionState.DISCONNECTED:
            try:
                seeded = self.reconciler.seed(await self.fetch_history())
            except SmartAirTransportError as exc:
                _logger.warning("Could not seed history: %s", exc)
            else:
                _logger.debug("Seeded %d observations from history", seeded)
        return await manager.initialize()

    async def disconnect(self) -> None:
        if self._manager is not None:
            await self._manager.disconnect()

    def subscribe(self, category: str, handler: Handler) -> Unsubscribe:
        """Subscribe to a bus category (see :class:`pysmartair.bus.Category`)."""
        return self.bus.subscribe(category, handler)

    def get_status(self) -> ConnectionStatus:
        return self._require_manager().get_status()

    async def request_latest(self) -> ObservationEvent | None:
        return await self._require_manager().request_latest()

    async def join_location_group(self, group: str) -> bool:
        return await self._require_manager().join_location_group(group)

    async def leave_location_group(self, group: str) -> bool:
        return await self._require_manager().leave_location_group(group)

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    async def fetch_history(self) -> list[ObservationEvent]:
        """GET the history endpoint, oldest first. Malformed entries are skipped.

        Does not touch reconciled state.
        """
        body = await self._require_http().get_json(self._config.history_url)
        _logger.debug("Fetched history from %s", self._config.history_url)
        return parse_observations(body, strict=False)

    @property
    def recent_alerts(self) -> tuple[Alert, ...]:
        """Newest first, at most ``alert_cap`` entries."""
        return self._alert_log.recent

    def snapshot(self) -> ReconciledState:
        return self.reconciler.snapshot()
