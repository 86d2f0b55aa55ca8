from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pysmartair.alerts import AlertEvaluator, AlertLog
from pysmartair.aqi import AqiBand, classify_aqi, derive_aqi
from pysmartair.bus import Category, SubscriptionBus
from pysmartair.models.alert import Alert, AlertSource
from pysmartair.models.observation import ObservationEvent
from pysmartair.state.store import Reconciler


def _reading(aqi: float | None, *, pm25: float | None = None, second: int = 0) -> ObservationEvent:
    metrics = {"PM25": {"value": pm25, "unit": "µg/m³"}} if pm25 is not None else {}
    return ObservationEvent(
        station_id="S1",
        observed_at=datetime(2026, 1, 1, 0, 0, second, tzinfo=UTC),
        aqi=aqi,
        metrics=metrics,
    )


@pytest.mark.parametrize(
    ("aqi", "band"),
    [
        (0, AqiBand.NORMAL),
        (50, AqiBand.NORMAL),
        (50.5, AqiBand.MODERATE),
        (100, AqiBand.MODERATE),
        (150, AqiBand.UNHEALTHY_FOR_SENSITIVE),
        (151, AqiBand.UNHEALTHY),
        (200, AqiBand.UNHEALTHY),
        (300, AqiBand.VERY_UNHEALTHY),
        (301, AqiBand.HAZARDOUS),
    ],
)
def test_classify_aqi_inclusive_upper_bounds(aqi: float, band: AqiBand) -> None:
    assert classify_aqi(aqi) == band


def test_classify_aqi_rejects_negative() -> None:
    with pytest.raises(ValueError):
        classify_aqi(-1)


def test_normal_reading_raises_no_alert() -> None:
    assert AlertEvaluator().evaluate(_reading(50)) is None


def test_unhealthy_reading_alerts() -> None:
    alert = AlertEvaluator().evaluate(_reading(151))

    assert alert is not None
    assert alert.level == "unhealthy"
    assert alert.severity == "warning"
    assert alert.source == AlertSource.EVALUATOR
    assert alert.triggered_at == datetime(2026, 1, 1, tzinfo=UTC)
    assert "S1" in alert.message


def test_hazardous_reading_alerts_with_danger_severity() -> None:
    alert = AlertEvaluator().evaluate(_reading(301))

    assert alert is not None
    assert alert.level == AqiBand.HAZARDOUS
    assert alert.severity == "danger"


def test_moderate_alerts_only_when_enabled() -> None:
    assert AlertEvaluator().evaluate(_reading(75)) is None

    alert = AlertEvaluator(alert_on_moderate=True).evaluate(_reading(75))
    assert alert is not None
    assert alert.level == AqiBand.MODERATE


def test_missing_aqi_is_derived_from_pm25() -> None:
    # PM2.5 of 55.5 µg/m³ is the bottom of the EPA "unhealthy" row.
    assert derive_aqi(pm25=55.5) == 151
    alert = AlertEvaluator().evaluate(_reading(None, pm25=55.5))

    assert alert is not None
    assert alert.level == AqiBand.UNHEALTHY


def test_reading_without_any_metric_yields_no_alert() -> None:
    assert AlertEvaluator().evaluate(_reading(None)) is None


def test_malformed_metric_yields_no_alert() -> None:
    reading = _reading(-5)
    assert AlertEvaluator().evaluate(reading) is None


def test_repeated_same_level_alerts_are_not_suppressed() -> None:
    evaluator = AlertEvaluator()
    assert evaluator.evaluate(_reading(160)) is not None
    assert evaluator.evaluate(_reading(160)) is not None


def test_attached_evaluator_publishes_and_log_keeps_newest_first() -> None:
    bus = SubscriptionBus()
    reconciler = Reconciler(bus=bus)
    AlertEvaluator().attach(bus)
    log = AlertLog(cap=3)
    log.attach(bus)
    published: list[Alert] = []
    bus.subscribe(Category.ALERT, published.append)

    for second in range(5):
        reconciler.ingest(_reading(160 + second, second=second))
    reconciler.ingest(_reading(10, second=10))

    assert len(published) == 5
    assert [alert.aqi for alert in log.recent] == [164, 163, 162]


def test_alert_log_ignores_non_alert_payloads() -> None:
    log = AlertLog()
    log.record({"not": "an alert"})
    assert log.recent == ()
