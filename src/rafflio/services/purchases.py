"""Purchase service — checkout and purchase administration.

Checkout creates a ``pending`` purchase priced from the raffle's tiers and,
for MercadoPago, a checkout preference whose ``external_reference`` is the
purchase id so webhooks and redirects can be matched back. Status changes
after checkout belong to the webhook, the reconciler, the claim flow and
staff (see ``update_status``).
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from rafflio.core.constants import (
    CUSTOM_PRICE_TIER_ID,
    MANUAL_STATUS_TRANSITIONS,
    MAX_TICKETS_PER_PURCHASE,
    PAYMENT_MERCADOPAGO,
    PAYMENT_METHODS,
    PURCHASE_CONFIRMED,
    PURCHASE_FAILED,
    PURCHASE_PENDING,
    PURCHASE_STATUSES,
    TICKET_AVAILABLE,
)
from rafflio.services.gateways.base import GatewayError
from rafflio.services.pricing import resolve_price_tier

logger = logging.getLogger(__name__)


class PurchaseError(Exception):
    """Purchase service error with HTTP status hint."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class PurchaseService:
    """Checkout plus lookups and admin operations on purchases."""

    def __init__(
        self,
        purchase_repo: Any,
        raffle_repo: Any,
        price_tier_repo: Any,
        ticket_repo: Any,
        gateway: Any,
        account_repo: Any | None = None,
        email_service: Any | None = None,
        settings: Any | None = None,
    ) -> None:
        self.purchase_repo = purchase_repo
        self.raffle_repo = raffle_repo
        self.price_tier_repo = price_tier_repo
        self.ticket_repo = ticket_repo
        self.gateway = gateway
        self.account_repo = account_repo
        self.email_service = email_service
        if settings is None:
            from rafflio.core.config import get_settings

            settings = get_settings()
        self.settings = settings

    # ── Checkout ────────────────────────────────────────────────────

    def create_purchase(
        self,
        *,
        raffle_id: str,
        full_name: str,
        email: str,
        phone: str = "",
        payment_method: str = PAYMENT_MERCADOPAGO,
        price_tier_id: str | None = None,
        quantity: int | None = None,
    ) -> dict[str, Any]:
        """Create a pending purchase priced from the raffle's tiers.

        With a real ``price_tier_id`` the tier fixes amount and ticket count.
        With ``custom`` (or none) the ``quantity`` is priced greedily.
        """
        if payment_method not in PAYMENT_METHODS:
            raise PurchaseError(f"Invalid payment method: {payment_method}", status_code=422)

        raffle = self.raffle_repo.find_by_id(raffle_id)
        if raffle is None:
            raise PurchaseError("Raffle not found", status_code=404)
        if not raffle.get("is_active"):
            raise PurchaseError("Raffle is not active", status_code=409)

        tiers = self.price_tier_repo.find_by_raffle(raffle_id)
        if price_tier_id and price_tier_id != CUSTOM_PRICE_TIER_ID:
            tier = next((t for t in tiers if t["price_tier_id"] == price_tier_id), None)
            if tier is None:
                raise PurchaseError("Price tier not found for this raffle", status_code=404)
            tier_id, ticket_count, amount = tier["price_tier_id"], int(tier["ticket_count"]), tier["amount"]
        else:
            if not tiers:
                raise PurchaseError("Raffle has no price tiers", status_code=409)
            if quantity is None or not 1 <= quantity <= MAX_TICKETS_PER_PURCHASE:
                raise PurchaseError(
                    f"quantity must be between 1 and {MAX_TICKETS_PER_PURCHASE}",
                    status_code=422,
                )
            resolved = resolve_price_tier(tiers, quantity)
            tier_id, ticket_count, amount = (
                resolved.price_tier_id,
                resolved.ticket_count,
                resolved.amount,
            )

        available = self.ticket_repo.count(
            filters={"raffle_id": raffle_id, "status": TICKET_AVAILABLE}
        )
        if ticket_count > available:
            raise PurchaseError(
                f"Only {available} tickets left for this raffle",
                status_code=409,
            )

        purchase_id = uuid.uuid4().hex
        now = datetime.now(tz=UTC)
        data = {
            "raffle_id": raffle_id,
            "price_tier_id": tier_id,
            "full_name": full_name,
            "email": email,
            "phone": phone,
            "amount": amount,
            "ticket_count": ticket_count,
            "payment_method": payment_method,
            "payment_id": None,
            "preference_id": None,
            "status": PURCHASE_PENDING,
            "created_at": now,
            "updated_at": now,
        }
        self.purchase_repo.create(data=data, new_id=purchase_id)
        logger.info(
            "Purchase created: purchase_id=%s raffle_id=%s tickets=%d method=%s",
            purchase_id,
            raffle_id,
            ticket_count,
            payment_method,
        )
        return {"purchase_id": purchase_id, **data}

    def start_checkout(self, **purchase_fields: Any) -> dict[str, Any]:
        """Create the purchase and whatever the buyer needs to pay it.

        MercadoPago purchases get a checkout preference and payment link;
        bank transfer and cash purchases get the raffle's payee account.
        """
        purchase = self.create_purchase(**purchase_fields)
        purchase_id = purchase["purchase_id"]
        raffle = self.raffle_repo.find_by_id(purchase["raffle_id"]) or {}
        result: dict[str, Any] = {
            "purchase": purchase,
            "payment_url": None,
            "sandbox_payment_url": None,
            "preference_id": None,
            "account": None,
        }

        if purchase["payment_method"] == PAYMENT_MERCADOPAGO:
            payload = self.build_preference_payload(purchase, raffle)
            try:
                preference = self.gateway.create_preference(payload)
            except GatewayError as e:
                self.purchase_repo.set_status(purchase_id, PURCHASE_FAILED)
                logger.error("Preference creation failed for purchase %s: %s", purchase_id, e.detail)
                raise PurchaseError("Could not create the payment link", status_code=502) from e
            self.purchase_repo.set_preference(purchase_id, preference.preference_id)
            purchase["preference_id"] = preference.preference_id
            result.update(
                payment_url=preference.init_point,
                sandbox_payment_url=preference.sandbox_init_point,
                preference_id=preference.preference_id,
            )
        elif self.account_repo is not None and raffle.get("account_id"):
            result["account"] = self.account_repo.find_by_id(raffle["account_id"])

        self._send_purchase_link(purchase)
        return result

    def build_preference_payload(
        self,
        purchase: dict[str, Any],
        raffle: dict[str, Any],
    ) -> dict[str, Any]:
        """Checkout Pro preference body for *purchase*."""
        purchase_id = purchase["purchase_id"]
        base_url = self.settings.app_base_url.rstrip("/")
        return_url = f"{base_url}/payment/success?purchase_id={purchase_id}"
        now = datetime.now(tz=UTC)
        expires = now + timedelta(hours=self.settings.preference_expiration_hours)
        return {
            "items": [
                {
                    "id": purchase["price_tier_id"],
                    "title": f"{raffle.get('title', 'Rafflio')} ({purchase['ticket_count']} tickets)",
                    "quantity": 1,
                    "unit_price": float(purchase["amount"]),
                    "currency_id": self.settings.currency_id,
                }
            ],
            "payer": {"name": purchase["full_name"], "email": purchase["email"]},
            "external_reference": purchase_id,
            "notification_url": self.settings.webhook_url,
            "back_urls": {
                "success": return_url,
                "failure": return_url,
                "pending": return_url,
            },
            "auto_return": "approved",
            "statement_descriptor": self.settings.statement_descriptor,
            "expires": True,
            "expiration_date_from": now.isoformat(timespec="milliseconds"),
            "expiration_date_to": expires.isoformat(timespec="milliseconds"),
        }

    def _send_purchase_link(self, purchase: dict[str, Any]) -> None:
        if self.email_service is None:
            return
        try:
            self.email_service.send_purchase_link(purchase["email"], purchase["purchase_id"])
        except Exception:
            logger.warning(
                "Purchase link email failed for purchase %s",
                purchase["purchase_id"],
                exc_info=True,
            )

    # ── Queries ─────────────────────────────────────────────────────

    def get_purchase(self, purchase_id: str) -> dict[str, Any]:
        """Purchase with its assigned tickets and price tier."""
        purchase = self.purchase_repo.find_by_id(purchase_id)
        if purchase is None:
            raise PurchaseError("Purchase not found", status_code=404)
        purchase["tickets"] = self.ticket_repo.find_by_purchase(purchase_id)
        tier_id = purchase.get("price_tier_id")
        if tier_id and tier_id != CUSTOM_PRICE_TIER_ID:
            purchase["price_tier"] = self.price_tier_repo.find_by_id(tier_id)
        else:
            purchase["price_tier"] = None
        return purchase

    def search_purchases(
        self,
        *,
        status: str | None = None,
        raffle_id: str | None = None,
        search: str | None = None,
        sort_by: str = "created_at",
        descending: bool = True,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        if status and status not in PURCHASE_STATUSES:
            raise PurchaseError(f"Invalid status filter: {status}", status_code=422)
        offset = (page - 1) * limit
        items, total = self.purchase_repo.search(
            limit=limit,
            offset=offset,
            status=status,
            raffle_id=raffle_id,
            text=search,
            sort_by=sort_by,
            descending=descending,
        )
        total_pages = max(1, (total + limit - 1) // limit)
        return {
            "items": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total_items": total,
                "total_pages": total_pages,
            },
        }

    # ── Admin ───────────────────────────────────────────────────────

    def update_status(self, purchase_id: str, status: str) -> dict[str, Any]:
        """Move a purchase along its lifecycle by hand.

        Typical use is ``pending -> paid`` once a bank transfer or cash
        payment arrives. Re-applying the current status is a no-op. A
        purchase is only confirmed when it is ``paid`` and already owns
        exactly ``ticket_count`` tickets.
        """
        if status not in PURCHASE_STATUSES:
            raise PurchaseError(f"Invalid status: {status}", status_code=422)
        purchase = self.purchase_repo.find_by_id(purchase_id)
        if purchase is None:
            raise PurchaseError("Purchase not found", status_code=404)

        current = purchase.get("status")
        if current == status:
            return {"purchase": purchase, "changed": False}
        if current not in MANUAL_STATUS_TRANSITIONS.get(status, ()):
            raise PurchaseError(
                f"Cannot change a {current} purchase to {status}",
                status_code=409,
            )
        if status == PURCHASE_CONFIRMED:
            owned = self.ticket_repo.count_by_purchase(purchase_id)
            required = int(purchase.get("ticket_count") or 0)
            if owned != required:
                raise PurchaseError(
                    f"Purchase owns {owned} of its {required} tickets",
                    status_code=409,
                )

        if not self.purchase_repo.transition_status(purchase_id, [current], status):
            raise PurchaseError(
                "Purchase status changed meanwhile; reload and retry",
                status_code=409,
            )
        logger.info("Purchase %s status %s -> %s (manual)", purchase_id, current, status)
        purchase["status"] = status
        return {"purchase": purchase, "changed": True}

    def record_payment(self, purchase_id: str, status: str, payment_id: str) -> bool:
        """Store a gateway payment id with its status; False when nothing changed."""
        if status not in PURCHASE_STATUSES:
            raise PurchaseError(f"Invalid status: {status}", status_code=422)
        if self.purchase_repo.find_by_id(purchase_id) is None:
            raise PurchaseError("Purchase not found", status_code=404)
        return bool(self.purchase_repo.record_payment(purchase_id, status, payment_id))

    def delete_purchase(self, purchase_id: str) -> None:
        """Delete a purchase, releasing any tickets it holds first."""
        if self.purchase_repo.find_by_id(purchase_id) is None:
            raise PurchaseError("Purchase not found", status_code=404)
        owned = [t["ticket_id"] for t in self.ticket_repo.find_by_purchase(purchase_id)]
        if owned and not self.ticket_repo.assign_tickets(None, owned, owner_id=purchase_id):
            raise PurchaseError("Could not release the purchase's tickets", status_code=409)
        self.purchase_repo.delete(purchase_id)
        logger.info("Purchase deleted: purchase_id=%s released=%d", purchase_id, len(owned))

    # ── Gateway pass-throughs ───────────────────────────────────────

    def create_preference(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a preference from a caller-built payload."""
        try:
            preference = self.gateway.create_preference(data)
        except GatewayError as e:
            raise PurchaseError(e.detail, status_code=e.status_code) from e
        return {
            "id": preference.preference_id,
            "init_point": preference.init_point,
            "sandbox_init_point": preference.sandbox_init_point,
            "external_reference": preference.external_reference,
        }

    def get_payment_info(self, payment_id: str) -> dict[str, Any]:
        try:
            payment = self.gateway.get_payment(payment_id)
        except GatewayError as e:
            raise PurchaseError(e.detail, status_code=e.status_code) from e
        return {
            "id": payment.payment_id,
            "status": payment.status,
            "status_detail": payment.status_detail,
            "external_reference": payment.external_reference,
            "preference_id": payment.preference_id,
            "payer": payment.payer,
            "transaction_amount": payment.transaction_amount,
            "date_approved": payment.date_approved,
            "date_created": payment.date_created,
        }
