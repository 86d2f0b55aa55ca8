"""Internal constants shared across the library."""

from enum import StrEnum

BASE_URL = "http://localhost:5000"
LATEST_PATH = "/api/airquality/latest"
HISTORY_PATH = "/api/airquality/history"
USER_AGENT = "pysmartair/1"

MQTT_TOPIC_PREFIX = "smartair"


class PushEvent(StrEnum):
    """Named events delivered by the push channel (and emulated by polling)."""

    NEW_DATA = "NewAirQualityData"
    UPDATE = "AirQualityUpdate"
    ALERT = "AirQualityAlert"
    DEVICE_STATUS = "DeviceStatusChanged"
    # Transport-internal: the push connection dropped without being asked to.
    CONNECTION_LOST = "ConnectionLost"


class Command(StrEnum):
    """Commands accepted by ``Transport.invoke``."""

    GET_LATEST = "GetLatestAirQuality"
    GET_HISTORY = "GetAirQualityHistory"
    JOIN_LOCATION_GROUP = "JoinLocationGroup"
    LEAVE_LOCATION_GROUP = "LeaveLocationGroup"


# ------------------------------------------------------------------
# US EPA AQI breakpoints  (concentration low/high -> index low/high)
# ------------------------------------------------------------------

PM25_BREAKPOINTS: tuple[tuple[float, float, int, int], ...] = (
    (0.0, 12.0, 0, 50),
    (12.1, 35.4, 51, 100),
    (35.5, 55.4, 101, 150),
    (55.5, 150.4, 151, 200),
    (150.5, 250.4, 201, 300),
    (250.5, 350.4, 301, 400),
    (350.5, 500.4, 401, 500),
)

PM10_BREAKPOINTS: tuple[tuple[float, float, int, int], ...] = (
    (0.0, 54.0, 0, 50),
    (55.0, 154.0, 51, 100),
    (155.0, 254.0, 101, 150),
    (255.0, 354.0, 151, 200),
    (355.0, 424.0, 201, 300),
    (425.0, 504.0, 301, 400),
    (505.0, 604.0, 401, 500),
)
