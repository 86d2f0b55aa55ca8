"""Alert model."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import ValidationError, field_validator

from pysmartair.aqi import AqiBand, classify_aqi
from pysmartair.exceptions import SmartAirPayloadError
from pysmartair.ingestion.normalize import first_present, property_value, safe_float, safe_str
from pysmartair.models._base import SmartAirBaseModel, UtcTimestamp
from pysmartair.models.observation import GeoPoint

AlertLevel = AqiBand
"""Alert levels are the AQI bands."""

SEVERITIES: frozenset[str] = frozenset({"warning", "danger"})

# Lowest band carrying each server-declared severity, used when a server
# alert names neither a level nor an AQI.
_SEVERITY_FLOOR: dict[str, AqiBand] = {
    "warning": AqiBand.UNHEALTHY_FOR_SENSITIVE,
    "danger": AqiBand.VERY_UNHEALTHY,
}

_LEVEL_ALIASES: dict[str, AqiBand] = {
    "good": AqiBand.NORMAL,
    "sensitive": AqiBand.UNHEALTHY_FOR_SENSITIVE,
    "unhealthy_for_sensitive_groups": AqiBand.UNHEALTHY_FOR_SENSITIVE,
}


class AlertSource(StrEnum):
    EVALUATOR = "evaluator"
    SERVER = "server"


def _level_from(value: Any) -> AqiBand | str | None:
    text = safe_str(value)
    if text is None:
        return None
    key = text.lower().replace(" ", "_").replace("-", "_")
    if key in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[key]
    # Unknown names are left to model validation to reject.
    return key


def _severity_from(value: Any) -> str | None:
    text = safe_str(value)
    return text.lower() if text and text.lower() in SEVERITIES else None


class Alert(SmartAirBaseModel):
    """A threshold crossing at one station. Immutable once created.

    ``declared_severity`` is the server's own ``type`` (``warning`` /
    ``danger``) when it sent one; :attr:`severity` prefers it.
    """

    station_id: str
    level: AlertLevel
    message: str
    triggered_at: UtcTimestamp
    aqi: float | None = None
    location: GeoPoint | None = None
    source: AlertSource = AlertSource.EVALUATOR
    declared_severity: str | None = None

    @field_validator("aqi", mode="before")
    @classmethod
    def _coerce_aqi(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("declared_severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value: Any) -> str | None:
        return _severity_from(value)

    @property
    def severity(self) -> str:
        """Server-declared severity, else ``"danger"`` from very-unhealthy up and ``"warning"`` below."""
        if self.declared_severity is not None:
            return self.declared_severity
        return "danger" if self.level.rank >= AqiBand.VERY_UNHEALTHY.rank else "warning"

    @classmethod
    def from_payload(cls, payload: Any, *, received_at: datetime | None = None) -> Alert:
        """Parse an ``AirQualityAlert`` push payload.

        A missing ``level`` is derived from ``aqi``, then from the server's
        ``type``. Payloads without a timestamp are stamped with
        *received_at* (default: now).
        """
        if not isinstance(payload, dict):
            raise SmartAirPayloadError(f"Alert payload must be an object, got {type(payload).__name__}")
        aqi = safe_float(property_value(first_present(payload, "aqi", "airQualityIndex", "AQI")))
        severity = _severity_from(first_present(payload, "severity", "type"))
        level = _level_from(first_present(payload, "level", "alertLevel"))
        if level is None and aqi is not None and aqi >= 0:
            level = classify_aqi(aqi)
        if level is None and severity is not None:
            level = _SEVERITY_FLOOR[severity]
        triggered_at = first_present(payload, "triggeredAt", "timestamp", "observedAt", "dateObserved")
        if triggered_at is None:
            triggered_at = received_at or datetime.now(UTC)
        station_id = first_present(payload, "stationId", "station_id", "location", "id")
        fields: dict[str, Any] = {
            "station_id": None if isinstance(station_id, dict) else station_id,
            "level": level,
            "message": first_present(payload, "message", "description") or "",
            "triggered_at": triggered_at,
            "aqi": aqi,
            "source": AlertSource.SERVER,
            "declared_severity": severity,
            "raw": payload,
        }
        try:
            return cls.model_validate(fields)
        except ValidationError as exc:
            raise SmartAirPayloadError(f"Invalid alert payload: {exc.errors()[0]['msg']}") from exc
