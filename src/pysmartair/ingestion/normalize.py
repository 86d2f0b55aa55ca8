"""Normalization helpers.

Centralizes defensive parsing and placeholder handling.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

# Sentinel strings the backend and sensors use for "not available".
SENTINELS = frozenset({"", "--", "NaN", "nan", "null", "None"})


def is_sentinel(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() in SENTINELS:
        return True
    return isinstance(value, float) and math.isnan(value)


def safe_float(value: Any) -> float | None:
    if isinstance(value, bool) or is_sentinel(value):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if is_sentinel(value):
        return None
    text = str(value).strip()
    return text if text else None


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize epoch timestamps to seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts > 1e11:
        ts /= 1000.0
    return ts


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch number into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if is_sentinel(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = normalize_timestamp_seconds(value)
        return datetime.fromtimestamp(seconds, tz=UTC) if seconds is not None else None
    if isinstance(value, str):
        text = value.strip()
        seconds = normalize_timestamp_seconds(text) if text.replace(".", "", 1).isdigit() else None
        if seconds is not None:
            return datetime.fromtimestamp(seconds, tz=UTC)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None


def first_present(data: dict[str, Any], *keys: str) -> Any:
    """Return the first non-sentinel value among *keys*."""
    for key in keys:
        value = data.get(key)
        if not is_sentinel(value):
            return value
    return None


def property_value(value: Any) -> Any:
    """Unwrap an NGSI-LD ``Property``/``Relationship``/``GeoProperty`` node."""
    if isinstance(value, dict):
        if "value" in value:
            return value["value"]
        if "object" in value:
            return value["object"]
    return value
