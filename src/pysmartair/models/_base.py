"""Base model for air-quality domain objects.

Every model inherits from :class:`SmartAirBaseModel` which provides:

* frozen instances, so published snapshots can be shared as values;
* a ``model_validator(mode="before")`` that strips sentinel values
  (``""``, ``"--"``, NaN) so the field default is used;
* a ``raw`` dict that captures the original payload (excluded from
  dumps and equality-relevant reprs).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from pysmartair.ingestion.normalize import is_sentinel, parse_datetime


def _coerce_utc(value: Any) -> Any:
    if value is None:
        return value
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"unparseable timestamp: {value!r}")
    return parsed.astimezone(UTC)


UtcTimestamp = Annotated[datetime, BeforeValidator(_coerce_utc)]
"""Annotated type that coerces ISO strings and epoch numbers (s or ms) to UTC datetimes."""


class SmartAirBaseModel(BaseModel):
    """Base for payload-derived models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop top-level sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned = {key: value for key, value in values.items() if not is_sentinel(value)}
        # Keep an explicitly passed raw= (e.g. from a wire parser).
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
