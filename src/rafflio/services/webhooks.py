"""Webhook service — apply gateway payment notifications to purchases.

MercadoPago posts either the current shape ``{"type": "payment",
"data": {"id": ...}}`` or the legacy IPN shape ``{"topic": "payment",
"resource": ...}`` where ``resource`` is an id or a payment URL. The
notification body is never trusted for status: the payment is always read
back from the gateway.
"""

from __future__ import annotations

import logging
from typing import Any

from rafflio.core.constants import (
    PURCHASE_CONFIRMED,
    PURCHASE_FAILED,
    PURCHASE_PAID,
    SETTLED_PURCHASE_STATUSES,
)
from rafflio.core.context import bind_purchase
from rafflio.services.notifier import PaymentEvent

logger = logging.getLogger(__name__)

PAYMENT_TOPIC = "payment"


class WebhookError(Exception):
    """Webhook processing error with HTTP status hint."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


def extract_payment_id(
    payload: dict[str, Any],
    query: dict[str, str] | None = None,
) -> str | None:
    """Payment id from a notification, or ``None`` for non-payment topics."""
    query = query or {}
    topic = payload.get("type") or payload.get("topic") or query.get("type") or query.get("topic")
    if topic != PAYMENT_TOPIC:
        return None

    data = payload.get("data")
    if isinstance(data, dict) and data.get("id"):
        return str(data["id"])

    resource = payload.get("resource")
    if isinstance(resource, dict) and resource.get("id"):
        return str(resource["id"])
    if isinstance(resource, (str, int)) and str(resource).strip():
        # IPN sends either "123" or "https://api.mercadopago.com/v1/payments/123"
        return str(resource).rstrip("/").rsplit("/", 1)[-1]

    for key in ("data.id", "id"):
        if query.get(key):
            return str(query[key])
    return None


class WebhookService:
    """Reads the notified payment and writes the purchase status."""

    def __init__(self, purchase_repo: Any, gateway: Any) -> None:
        self.purchase_repo = purchase_repo
        self.gateway = gateway

    def handle_notification(
        self,
        payload: dict[str, Any],
        query: dict[str, str] | None = None,
    ) -> PaymentEvent | None:
        """Process one notification.

        Returns the event to publish on the push channel, or ``None`` when
        the notification is not about a payment of a known purchase or would
        contradict a settled one.
        Raises WebhookError when the referenced purchase does not exist.
        GatewayError from the payment lookup propagates so the gateway
        retries the notification.
        """
        payment_id = extract_payment_id(payload, query)
        if payment_id is None:
            logger.info(
                "Ignoring webhook notification with topic %s",
                payload.get("type") or payload.get("topic"),
            )
            return None

        payment = self.gateway.get_payment(payment_id)
        purchase_id = payment.external_reference
        if not purchase_id:
            logger.warning("Payment %s has no external reference; ignoring", payment_id)
            return None

        with bind_purchase(purchase_id):
            status = self._apply(payment, purchase_id, payment_id)
        if status is None:
            return None
        return PaymentEvent(purchase_id=purchase_id, status=status, payment_id=payment_id)

    def _apply(self, payment: Any, purchase_id: str, payment_id: str) -> str | None:
        """Write the payment outcome; returns the status to publish.

        ``None`` means the purchase is settled and the notification would
        contradict it, so nothing is published.
        """
        purchase = self.purchase_repo.find_by_id(purchase_id)
        if purchase is None:
            logger.warning("Webhook for unknown purchase %s (payment %s)", purchase_id, payment_id)
            raise WebhookError("Purchase not found", status_code=404)

        new_status = PURCHASE_PAID if payment.is_approved else PURCHASE_FAILED
        current = purchase.get("status")

        if current in SETTLED_PURCHASE_STATUSES and new_status == PURCHASE_FAILED:
            logger.warning(
                "Payment %s reported %s for settled purchase %s; keeping %s",
                payment_id,
                payment.status,
                purchase_id,
                current,
            )
            return None
        if current == PURCHASE_CONFIRMED:
            logger.info("Purchase %s already confirmed; webhook is a no-op", purchase_id)
            return payment.status

        changed = self.purchase_repo.record_payment(purchase_id, new_status, payment_id)
        if not changed and new_status == PURCHASE_FAILED:
            latest = self.purchase_repo.find_by_id(purchase_id) or {}
            if latest.get("status") in SETTLED_PURCHASE_STATUSES:
                logger.warning(
                    "Purchase %s settled as %s while payment %s (%s) was applied; keeping it",
                    purchase_id,
                    latest.get("status"),
                    payment_id,
                    payment.status,
                )
                return None
        logger.info(
            "Webhook payment %s (%s): purchase %s %s -> %s%s",
            payment_id,
            payment.status,
            purchase_id,
            current,
            new_status,
            "" if changed else " (unchanged)",
        )
        return payment.status
