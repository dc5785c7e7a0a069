"""Payment push notifications — in-process fan-out keyed by purchase id.

One :class:`PaymentNotifier` is created per application and handed to the
webhook route (publisher) and to every reconciliation session or WebSocket
(subscribers). Delivery is at-most-once and only reaches subscribers that
are registered when the event is published; polling covers the gap.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentEvent:
    """Status change for a purchase as reported by the gateway."""

    purchase_id: str
    status: str
    payment_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "purchase_id": self.purchase_id,
            "status": self.status,
            "payment_id": self.payment_id,
        }


PaymentCallback = Callable[[PaymentEvent], None]


class PaymentNotifier:
    """Subscribe/publish hub for :class:`PaymentEvent`."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[PaymentCallback]] = {}
        self._lock = threading.Lock()

    def subscribe(self, purchase_id: str, callback: PaymentCallback) -> Callable[[], None]:
        """Register *callback* for *purchase_id*; returns an idempotent unsubscribe."""
        with self._lock:
            self._subscribers.setdefault(purchase_id, []).append(callback)

        active = True

        def unsubscribe() -> None:
            nonlocal active
            with self._lock:
                if not active:
                    return
                active = False
                callbacks = self._subscribers.get(purchase_id)
                if not callbacks:
                    return
                # Identity match; a function subscribed twice is removed once per handle
                for i, registered in enumerate(callbacks):
                    if registered is callback:
                        del callbacks[i]
                        break
                if not callbacks:
                    del self._subscribers[purchase_id]

        return unsubscribe

    def publish(self, event: PaymentEvent) -> int:
        """Deliver *event* to current subscribers. Returns how many were called."""
        with self._lock:
            callbacks = list(self._subscribers.get(event.purchase_id, ()))

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Payment event subscriber failed for purchase %s",
                    event.purchase_id,
                )
        logger.debug(
            "Published %s for purchase %s to %d subscriber(s)",
            event.status,
            event.purchase_id,
            delivered,
        )
        return delivered

    def subscriber_count(self, purchase_id: str | None = None) -> int:
        with self._lock:
            if purchase_id is not None:
                return len(self._subscribers.get(purchase_id, ()))
            return sum(len(v) for v in self._subscribers.values())
