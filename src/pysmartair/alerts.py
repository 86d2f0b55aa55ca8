"""Threshold alerts derived from reconciled readings."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from pysmartair.aqi import AqiBand, classify_aqi
from pysmartair.bus import Category, EventBus, Unsubscribe
from pysmartair.exceptions import EvaluationError, SmartAirConfigError
from pysmartair.models.alert import Alert, AlertSource
from pysmartair.models.observation import ObservationEvent
from pysmartair.state.store import ReconciledUpdate

_logger = logging.getLogger(__name__)

DEFAULT_ALERT_CAP = 5


def _aqi_of(event: ObservationEvent) -> float | None:
    try:
        aqi = event.effective_aqi
    except (TypeError, ValueError) as exc:
        raise EvaluationError(f"Cannot compute AQI for {event.station_id}: {exc}") from exc
    if aqi is None:
        return None
    if aqi < 0:
        raise EvaluationError(f"Negative AQI {aqi} for {event.station_id}")
    return aqi


class AlertEvaluator:
    """Turns a reading into at most one :class:`Alert`.

    Readings in the normal band never alert; the moderate band alerts only
    when ``alert_on_moderate`` is set. Repeated alerts at the same level are
    not suppressed.
    """

    def __init__(self, *, alert_on_moderate: bool = False) -> None:
        self._min_band = AqiBand.MODERATE if alert_on_moderate else AqiBand.UNHEALTHY_FOR_SENSITIVE

    def evaluate(self, latest: ObservationEvent) -> Alert | None:
        try:
            aqi = _aqi_of(latest)
            if aqi is None:
                return None
            band = classify_aqi(aqi)
        except (EvaluationError, ValueError):
            _logger.debug("Skipping alert evaluation for %s", latest.station_id, exc_info=True)
            return None

        if band.rank < self._min_band.rank:
            return None

        return Alert(
            station_id=latest.station_id,
            level=band,
            message=f"Air quality at {latest.station_id} is {band.label.lower()} (AQI {aqi:.0f})",
            triggered_at=latest.observed_at,
            aqi=aqi,
            location=latest.location,
            source=AlertSource.EVALUATOR,
        )

    def attach(self, bus: EventBus) -> Unsubscribe:
        """Evaluate every ``reconciled`` update and publish resulting alerts."""

        def _on_reconciled(update: ReconciledUpdate) -> None:
            alert = self.evaluate(update.entry)
            if alert is not None:
                _logger.info("Alert %s at %s (AQI %s)", alert.level, alert.station_id, alert.aqi)
                bus.publish(Category.ALERT, alert)

        return bus.subscribe(Category.RECONCILED, _on_reconciled)


class AlertLog:
    """The most recent alerts, newest first."""

    def __init__(self, *, cap: int = DEFAULT_ALERT_CAP) -> None:
        if cap < 1:
            raise SmartAirConfigError(f"alert cap must be >= 1, got {cap}")
        self._alerts: deque[Alert] = deque(maxlen=cap)

    def record(self, alert: Any) -> None:
        if isinstance(alert, Alert):
            self._alerts.appendleft(alert)

    @property
    def recent(self) -> tuple[Alert, ...]:
        return tuple(self._alerts)

    def clear(self) -> None:
        self._alerts.clear()

    def attach(self, bus: EventBus) -> Unsubscribe:
        return bus.subscribe(Category.ALERT, self.record)
