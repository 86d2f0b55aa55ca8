"""Data models for air-quality observations, alerts and connection state."""

from pysmartair.models._base import SmartAirBaseModel, UtcTimestamp
from pysmartair.models.alert import Alert, AlertLevel, AlertSource
from pysmartair.models.device import DeviceStatus
from pysmartair.models.observation import (
    DEFAULT_UNITS,
    GeoPoint,
    MetricValue,
    ObservationEvent,
    Pollutant,
    parse_observations,
)
from pysmartair.models.status import ConnectionState, ConnectionStatus, TransportKind

__all__ = [
    "DEFAULT_UNITS",
    "Alert",
    "AlertLevel",
    "AlertSource",
    "ConnectionState",
    "ConnectionStatus",
    "DeviceStatus",
    "GeoPoint",
    "MetricValue",
    "ObservationEvent",
    "Pollutant",
    "SmartAirBaseModel",
    "TransportKind",
    "UtcTimestamp",
    "parse_observations",
]
