"""Custom exception hierarchy for pysmartair."""

from __future__ import annotations


class SmartAirError(Exception):
    """Base exception for all pysmartair errors."""


class SmartAirConfigError(SmartAirError):
    """Invalid or missing configuration."""


class SmartAirTransportError(SmartAirError):
    """Delivery-level failure (connect, timeout, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class SmartAirPayloadError(SmartAirTransportError):
    """A delivered payload could not be parsed into a domain object."""


class StaleEventError(SmartAirError):
    """Observation rejected by the reconciler as stale or duplicate.

    Raised and caught inside the reconciler; callers only ever see a
    ``None`` result from :meth:`pysmartair.state.store.Reconciler.ingest`.
    """

    def __init__(self, station_id: str, *, incoming: object, existing: object) -> None:
        self.station_id = station_id
        self.incoming = incoming
        self.existing = existing
        super().__init__(f"Stale observation for {station_id}: {incoming} <= {existing}")


class EvaluationError(SmartAirError):
    """Metric data reaching the alert evaluator is malformed.

    Treated as "no alert" by :class:`pysmartair.alerts.AlertEvaluator`.
    """
