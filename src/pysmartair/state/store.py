"""Deterministic in-memory observation store.

This is the only component allowed to mutate reconciled state.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from types import MappingProxyType

from pysmartair.bus import Category, EventBus
from pysmartair.exceptions import SmartAirConfigError, StaleEventError
from pysmartair.models.observation import ObservationEvent
from pysmartair.state.policy import ensure_newer

_logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAP = 20


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class ReconciledUpdate:
    """Payload of the ``reconciled`` bus category.

    ``latest_by_station`` is a read-only view copied at publish time;
    later ingestion does not change it.
    """

    entry: ObservationEvent
    latest_by_station: Mapping[str, ObservationEvent]
    evicted: ObservationEvent | None
    history_size: int

    @property
    def station_id(self) -> str:
        return self.entry.station_id


@dataclass(frozen=True, slots=True)
class ReconciledState:
    """Immutable snapshot of the store."""

    latest_by_station: Mapping[str, ObservationEvent]
    history: tuple[ObservationEvent, ...]
    last_ingested_at: datetime | None


class Reconciler:
    """Deduplicates observations into per-station latest values and a capped history.

    Given the same sequence of events (duplicates and out-of-order arrivals
    included) it always ends in the same state.
    """

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        history_cap: int = DEFAULT_HISTORY_CAP,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if history_cap < 1:
            raise SmartAirConfigError(f"history_cap must be >= 1, got {history_cap}")
        self._bus = bus
        self._clock = clock
        self._history_cap = history_cap
        self._latest: dict[str, ObservationEvent] = {}
        self._history: deque[ObservationEvent] = deque()
        self._last_ingested_at: datetime | None = None

    @property
    def history_cap(self) -> int:
        return self._history_cap

    @property
    def latest_by_station(self) -> Mapping[str, ObservationEvent]:
        return MappingProxyType(dict(self._latest))

    @property
    def history(self) -> tuple[ObservationEvent, ...]:
        return tuple(self._history)

    @property
    def last_ingested_at(self) -> datetime | None:
        """Wall-clock time of the last accepted observation."""
        return self._last_ingested_at

    def latest(self, station_id: str) -> ObservationEvent | None:
        return self._latest.get(station_id)

    def ingest(self, event: ObservationEvent, *, live: bool = True) -> ReconciledUpdate | None:
        """Apply one observation; ``None`` means it was stale or a duplicate.

        ``live=False`` applies it silently: nothing is published on
        ``reconciled`` and the staleness clock is not touched.
        """
        existing = self._latest.get(event.station_id)
        try:
            ensure_newer(event.station_id, existing.observed_at if existing else None, event.observed_at)
        except StaleEventError as exc:
            _logger.debug("Dropped observation: %s", exc)
            return None

        self._latest[event.station_id] = event
        self._history.append(event)
        evicted: ObservationEvent | None = None
        if len(self._history) > self._history_cap:
            evicted = self._history.popleft()

        update = ReconciledUpdate(
            entry=event,
            latest_by_station=MappingProxyType(dict(self._latest)),
            evicted=evicted,
            history_size=len(self._history),
        )
        if live:
            self._last_ingested_at = self._clock()
            if self._bus is not None:
                self._bus.publish(Category.RECONCILED, update)
        return update

    def seed(self, events: Iterable[ObservationEvent]) -> int:
        """Load an initial batch (oldest first) without notifying subscribers.

        Returns how many events were accepted. Seeded history raises no
        alerts and does not count as fresh data for staleness.
        """
        return sum(1 for event in events if self.ingest(event, live=False) is not None)

    def snapshot(self) -> ReconciledState:
        return ReconciledState(
            latest_by_station=MappingProxyType(dict(self._latest)),
            history=tuple(self._history),
            last_ingested_at=self._last_ingested_at,
        )

    def age_seconds(self) -> float | None:
        """Seconds since the last accepted observation, ``None`` if there was none."""
        if self._last_ingested_at is None:
            return None
        return (self._clock() - self._last_ingested_at).total_seconds()
