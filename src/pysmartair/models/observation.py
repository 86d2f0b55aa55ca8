"""Air-quality observation model and wire parsing."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from pydantic import Field, ValidationError, field_validator

from pysmartair._redact import redact_for_log
from pysmartair.aqi import derive_aqi
from pysmartair.exceptions import SmartAirPayloadError
from pysmartair.ingestion.normalize import (
    first_present,
    property_value,
    safe_float,
    safe_str,
)
from pysmartair.models._base import SmartAirBaseModel, UtcTimestamp

_logger = logging.getLogger(__name__)


class Pollutant(StrEnum):
    PM25 = "PM25"
    PM10 = "PM10"
    O3 = "O3"
    NO2 = "NO2"
    SO2 = "SO2"
    CO = "CO"


DEFAULT_UNITS: dict[Pollutant, str] = {
    Pollutant.PM25: "µg/m³",
    Pollutant.PM10: "µg/m³",
    Pollutant.O3: "µg/m³",
    Pollutant.NO2: "µg/m³",
    Pollutant.SO2: "µg/m³",
    Pollutant.CO: "mg/m³",
}

# Keys a pollutant may arrive under, NGSI-LD spelling first.
_POLLUTANT_KEYS: dict[Pollutant, tuple[str, ...]] = {
    Pollutant.PM25: ("PM25", "pm25", "pm2_5", "pm2.5", "PM2_5"),
    Pollutant.PM10: ("PM10", "pm10"),
    Pollutant.O3: ("O3", "o3"),
    Pollutant.NO2: ("NO2", "no2"),
    Pollutant.SO2: ("SO2", "so2"),
    Pollutant.CO: ("CO", "co"),
}


class MetricValue(SmartAirBaseModel):
    """One pollutant reading; ``value`` is ``None`` when the sensor reported nothing."""

    value: float | None = None
    unit: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> float | None:
        return safe_float(value)


class GeoPoint(SmartAirBaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class ObservationEvent(SmartAirBaseModel):
    """One sensor reading at one station at one instant.

    Parameters
    ----------
    station_id : str
        Identifier of the physical sensor / feature of interest.
    observed_at : datetime
        Observation time, always UTC-aware.
    metrics : dict
        Pollutant code to :class:`MetricValue`.
    aqi : float or None
        Transmitted air quality index. See :attr:`effective_aqi`.
    location : GeoPoint or None
        Station position.
    entity_id : str or None
        NGSI-LD entity id, when the payload carried one.
    """

    station_id: str
    observed_at: UtcTimestamp
    metrics: dict[Pollutant, MetricValue] = Field(default_factory=dict)
    aqi: float | None = None
    location: GeoPoint | None = None
    entity_id: str | None = None

    @field_validator("station_id")
    @classmethod
    def _normalize_station(cls, value: str) -> str:
        station = value.strip()
        if not station:
            raise ValueError("station_id must be non-empty")
        return station

    @field_validator("aqi", mode="before")
    @classmethod
    def _coerce_aqi(cls, value: Any) -> float | None:
        return safe_float(value)

    def metric(self, pollutant: Pollutant | str) -> float | None:
        """Return the numeric value for *pollutant*, if present."""
        reading = self.metrics.get(Pollutant(pollutant))
        return reading.value if reading is not None else None

    @property
    def effective_aqi(self) -> float | None:
        """Transmitted AQI, or one derived from PM2.5/PM10 when absent."""
        if self.aqi is not None:
            return self.aqi
        return derive_aqi(pm25=self.metric(Pollutant.PM25), pm10=self.metric(Pollutant.PM10))

    @classmethod
    def from_payload(cls, payload: Any) -> ObservationEvent:
        """Parse an NGSI-LD ``AirQualityObserved`` or flat document.

        Raises :class:`SmartAirPayloadError` when the payload is not an
        object or lacks a station or timestamp.
        """
        if not isinstance(payload, dict):
            raise SmartAirPayloadError(f"Observation payload must be an object, got {type(payload).__name__}")
        try:
            return cls.model_validate(_canonical_fields(payload))
        except ValidationError as exc:
            raise SmartAirPayloadError(f"Invalid observation payload: {exc.errors()[0]['msg']}") from exc


def _station_id(payload: dict[str, Any]) -> Any:
    for key in ("sosa:madeBySensor", "sosa:hasFeatureOfInterest", "refDevice"):
        candidate = safe_str(property_value(payload.get(key)))
        if candidate:
            return candidate
    return first_present(payload, "stationId", "station_id", "deviceId", "sensorId", "id")


def _observed_at(payload: dict[str, Any]) -> Any:
    value = property_value(first_present(payload, "dateObserved", "observedAt", "observed_at", "timestamp", "time"))
    if value is not None:
        return value
    # Fall back to the first per-pollutant observedAt.
    for keys in _POLLUTANT_KEYS.values():
        node = first_present(payload, *keys)
        if isinstance(node, dict) and node.get("observedAt"):
            return node["observedAt"]
    return None


def _metrics(payload: dict[str, Any]) -> dict[Pollutant, dict[str, Any]]:
    metrics: dict[Pollutant, dict[str, Any]] = {}
    for pollutant, keys in _POLLUTANT_KEYS.items():
        node = first_present(payload, *keys)
        if node is None:
            continue
        if isinstance(node, dict):
            unit = safe_str(node.get("unitCode") or node.get("unit"))
            metrics[pollutant] = {"value": node.get("value"), "unit": unit or DEFAULT_UNITS[pollutant]}
        else:
            metrics[pollutant] = {"value": node, "unit": DEFAULT_UNITS[pollutant]}
    return metrics


def _location(payload: dict[str, Any]) -> dict[str, float] | None:
    node = property_value(payload.get("location"))
    if isinstance(node, dict):
        coordinates = node.get("coordinates")
        if isinstance(coordinates, (list, tuple)) and len(coordinates) >= 2:
            # GeoJSON order is [longitude, latitude].
            lng, lat = safe_float(coordinates[0]), safe_float(coordinates[1])
        else:
            lat = safe_float(first_present(node, "lat", "latitude"))
            lng = safe_float(first_present(node, "lng", "lon", "longitude"))
    else:
        lat = safe_float(first_present(payload, "latitude", "lat"))
        lng = safe_float(first_present(payload, "longitude", "lng", "lon"))
    if lat is None or lng is None:
        return None
    # A [0, 0] placeholder is the backend default for "unknown".
    if lat == 0.0 and lng == 0.0:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return {"latitude": lat, "longitude": lng}


def _canonical_fields(payload: dict[str, Any]) -> dict[str, Any]:
    entity_id = safe_str(payload.get("id"))
    return {
        "station_id": _station_id(payload),
        "observed_at": _observed_at(payload),
        "metrics": _metrics(payload),
        "aqi": property_value(first_present(payload, "airQualityIndex", "aqi", "AQI")),
        "location": _location(payload),
        "entity_id": entity_id if entity_id and entity_id.startswith("urn:") else None,
        "raw": payload,
    }


def parse_observations(payload: Any, *, strict: bool = True) -> list[ObservationEvent]:
    """Parse one document or an array of documents.

    With ``strict=False`` unparseable array elements are logged and
    skipped instead of failing the whole batch.
    """
    if isinstance(payload, dict):
        # Some endpoints wrap results as {"data": [...]}.
        nested = payload.get("data")
        if isinstance(nested, (list, dict)) and _station_id(payload) is None:
            return parse_observations(nested, strict=strict)
        return [ObservationEvent.from_payload(payload)]
    if not isinstance(payload, list):
        raise SmartAirPayloadError(f"Expected an object or array of observations, got {type(payload).__name__}")

    events: list[ObservationEvent] = []
    for index, item in enumerate(payload):
        try:
            events.append(ObservationEvent.from_payload(item))
        except SmartAirPayloadError:
            if strict:
                raise
            _logger.debug("Skipping observation %d: %s", index, redact_for_log(item), exc_info=True)
    return events
