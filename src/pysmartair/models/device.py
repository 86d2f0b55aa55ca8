"""Device status model (``DeviceStatusChanged`` push payloads)."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from pysmartair.exceptions import SmartAirPayloadError
from pysmartair.ingestion.normalize import first_present
from pysmartair.models._base import SmartAirBaseModel, UtcTimestamp


class DeviceStatus(SmartAirBaseModel):
    device_id: str
    status: str
    observed_at: UtcTimestamp | None = None

    @property
    def is_online(self) -> bool:
        return self.status.strip().lower() in {"online", "active", "connected"}

    @classmethod
    def from_payload(cls, payload: Any) -> DeviceStatus:
        if not isinstance(payload, dict):
            raise SmartAirPayloadError(f"Device status payload must be an object, got {type(payload).__name__}")
        fields: dict[str, Any] = {
            "device_id": first_present(payload, "deviceId", "device_id", "id"),
            "status": first_present(payload, "status", "state"),
            "observed_at": first_present(payload, "timestamp", "observedAt", "updatedAt"),
            "raw": payload,
        }
        try:
            return cls.model_validate(fields)
        except ValidationError as exc:
            raise SmartAirPayloadError(f"Invalid device status payload: {exc.errors()[0]['msg']}") from exc
