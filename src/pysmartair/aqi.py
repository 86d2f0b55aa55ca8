"""AQI bands and derivation from particulate concentrations.

Bands use inclusive upper bounds: a reading of exactly 150 is still
"unhealthy for sensitive groups", 150.5 is "unhealthy".
"""

from __future__ import annotations

import math
from enum import StrEnum

from pysmartair._constants import PM10_BREAKPOINTS, PM25_BREAKPOINTS


class AqiBand(StrEnum):
    NORMAL = "normal"
    MODERATE = "moderate"
    UNHEALTHY_FOR_SENSITIVE = "unhealthy_for_sensitive"
    UNHEALTHY = "unhealthy"
    VERY_UNHEALTHY = "very_unhealthy"
    HAZARDOUS = "hazardous"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def rank(self) -> int:
        return _ORDER.index(self)


_ORDER: tuple[AqiBand, ...] = tuple(AqiBand)

_LABELS: dict[AqiBand, str] = {
    AqiBand.NORMAL: "Good",
    AqiBand.MODERATE: "Moderate",
    AqiBand.UNHEALTHY_FOR_SENSITIVE: "Unhealthy for sensitive groups",
    AqiBand.UNHEALTHY: "Unhealthy",
    AqiBand.VERY_UNHEALTHY: "Very unhealthy",
    AqiBand.HAZARDOUS: "Hazardous",
}

# (inclusive upper bound, band); anything above the last bound is hazardous.
BAND_UPPER_BOUNDS: tuple[tuple[float, AqiBand], ...] = (
    (50, AqiBand.NORMAL),
    (100, AqiBand.MODERATE),
    (150, AqiBand.UNHEALTHY_FOR_SENSITIVE),
    (200, AqiBand.UNHEALTHY),
    (300, AqiBand.VERY_UNHEALTHY),
)


def classify_aqi(aqi: float) -> AqiBand:
    """Map an AQI value to its band.

    Raises :class:`ValueError` for negative or non-finite values.
    """
    if math.isnan(aqi) or math.isinf(aqi) or aqi < 0:
        raise ValueError(f"AQI must be a finite non-negative number, got {aqi}")
    for upper, band in BAND_UPPER_BOUNDS:
        if aqi <= upper:
            return band
    return AqiBand.HAZARDOUS


def _sub_index(concentration: float, table: tuple[tuple[float, float, int, int], ...]) -> float | None:
    if concentration < 0:
        return None
    for c_low, c_high, i_low, i_high in table:
        if concentration <= c_high:
            # Gaps between rows (e.g. 12.0 -> 12.1) fold into the next row.
            c_low = min(c_low, concentration)
            return (i_high - i_low) / (c_high - c_low) * (concentration - c_low) + i_low
    return float(table[-1][3])


def derive_aqi(*, pm25: float | None = None, pm10: float | None = None) -> float | None:
    """Derive an AQI from PM2.5/PM10 (µg/m³); the highest sub-index wins."""
    candidates: list[float] = []
    if pm25 is not None:
        sub = _sub_index(pm25, PM25_BREAKPOINTS)
        if sub is not None:
            candidates.append(sub)
    if pm10 is not None:
        sub = _sub_index(pm10, PM10_BREAKPOINTS)
        if sub is not None:
            candidates.append(sub)
    if not candidates:
        return None
    return float(round(max(candidates)))
