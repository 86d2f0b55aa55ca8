"""pysmartair - Async Python client for smart-city air-quality streams."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pysmartair")
except PackageNotFoundError:
    __version__ = "0+local"
from pysmartair.aqi import AqiBand, classify_aqi, derive_aqi
from pysmartair.bus import Category, EventBus, SubscriptionBus
from pysmartair.client import SmartAirClient
from pysmartair.config import SmartAirConfig
from pysmartair.connection import ConnectionManager
from pysmartair.exceptions import (
    EvaluationError,
    SmartAirConfigError,
    SmartAirError,
    SmartAirPayloadError,
    SmartAirTransportError,
    StaleEventError,
)
from pysmartair.models import (
    Alert,
    AlertLevel,
    AlertSource,
    ConnectionState,
    ConnectionStatus,
    DeviceStatus,
    GeoPoint,
    MetricValue,
    ObservationEvent,
    Pollutant,
    TransportKind,
)
from pysmartair.state.store import ReconciledState, ReconciledUpdate, Reconciler

__all__ = [
    "__version__",
    "Alert",
    "AlertLevel",
    "AlertSource",
    "AqiBand",
    "Category",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "DeviceStatus",
    "EvaluationError",
    "EventBus",
    "GeoPoint",
    "MetricValue",
    "ObservationEvent",
    "Pollutant",
    "ReconciledState",
    "ReconciledUpdate",
    "Reconciler",
    "SmartAirClient",
    "SmartAirConfig",
    "SmartAirConfigError",
    "SmartAirError",
    "SmartAirPayloadError",
    "SmartAirTransportError",
    "StaleEventError",
    "SubscriptionBus",
    "TransportKind",
    "classify_aqi",
    "derive_aqi",
]
