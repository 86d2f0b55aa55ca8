"""Deterministic acceptance policy.

Acceptance depends only on the two observation timestamps, so replaying
the same event sequence always produces the same state regardless of
arrival jitter.
"""

from __future__ import annotations

from datetime import datetime

from pysmartair.exceptions import StaleEventError


def should_accept(existing_observed_at: datetime | None, incoming_observed_at: datetime) -> bool:
    """Accept when nothing is known yet or the incoming reading is strictly newer."""
    if existing_observed_at is None:
        return True
    return incoming_observed_at > existing_observed_at


def ensure_newer(station_id: str, existing_observed_at: datetime | None, incoming_observed_at: datetime) -> None:
    """Raise :class:`StaleEventError` when :func:`should_accept` rejects."""
    if not should_accept(existing_observed_at, incoming_observed_at):
        raise StaleEventError(station_id, incoming=incoming_observed_at, existing=existing_observed_at)
