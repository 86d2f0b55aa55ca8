"""In-process publish/subscribe fan-out.

Consumers (chart, map, dashboard, alert list) subscribe to typed
categories without knowing which transport delivered the data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Protocol

_logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class Category(StrEnum):
    NEW_DATA = "newData"
    UPDATE = "update"
    ALERT = "alert"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONCILED = "reconciled"
    DEVICE_STATUS = "deviceStatus"
    STATUS_CHANGED = "statusChanged"


class EventBus(Protocol):
    """Structural bus interface used by the reconciler and connection manager."""

    def subscribe(self, category: str, handler: Handler) -> Unsubscribe: ...

    def publish(self, category: str, payload: Any = None) -> None: ...


class _Subscription:
    __slots__ = ("handler", "active")

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.active = True


class SubscriptionBus:
    """Ordered, re-entrancy-safe fan-out.

    Handlers for a category run in subscription order. Each publish
    iterates over a snapshot of the subscriptions, so handlers may
    subscribe or unsubscribe (themselves or others) while a round is in
    progress. A handler unsubscribed mid-round by another handler is not
    called for the rest of that round.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}

    def subscribe(self, category: str, handler: Handler) -> Unsubscribe:
        key = str(category)
        subscription = _Subscription(handler)
        self._subscriptions.setdefault(key, []).append(subscription)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            remaining = [s for s in self._subscriptions.get(key, []) if s is not subscription]
            if remaining:
                self._subscriptions[key] = remaining
            else:
                self._subscriptions.pop(key, None)

        return unsubscribe

    def publish(self, category: str, payload: Any = None) -> None:
        key = str(category)
        snapshot = tuple(self._subscriptions.get(key, ()))
        for subscription in snapshot:
            if not subscription.active:
                continue
            try:
                subscription.handler(payload)
            except Exception:
                _logger.warning("Subscriber for %s raised", key, exc_info=True)

    def subscriber_count(self, category: str) -> int:
        return len(self._subscriptions.get(str(category), ()))

    def clear(self) -> None:
        """Drop every subscription (existing unsubscribe callables become no-ops)."""
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.active = False
        self._subscriptions.clear()
