"""Domain constants for Rafflio."""

from __future__ import annotations

# ── Purchase Statuses ───────────────────────────────────────────────
PURCHASE_PENDING = "pending"
PURCHASE_PAID = "paid"
PURCHASE_FAILED = "failed"
PURCHASE_CANCELLED = "cancelled"
PURCHASE_CONFIRMED = "confirmed"

PURCHASE_STATUSES: list[str] = [
    PURCHASE_PENDING,
    PURCHASE_PAID,
    PURCHASE_FAILED,
    PURCHASE_CANCELLED,
    PURCHASE_CONFIRMED,
]

# Statuses a webhook notification must never move a purchase out of
SETTLED_PURCHASE_STATUSES: set[str] = {PURCHASE_PAID, PURCHASE_CONFIRMED}

# Staff status changes: target -> statuses it may be reached from.
# Nothing leaves failed, cancelled or confirmed.
MANUAL_STATUS_TRANSITIONS: dict[str, tuple[str, ...]] = {
    PURCHASE_PAID: (PURCHASE_PENDING,),
    PURCHASE_FAILED: (PURCHASE_PENDING,),
    PURCHASE_CANCELLED: (PURCHASE_PENDING,),
    PURCHASE_CONFIRMED: (PURCHASE_PAID,),
}

# ── Ticket Statuses ─────────────────────────────────────────────────
TICKET_AVAILABLE = "available"
TICKET_RESERVED = "reserved"
TICKET_SOLD = "sold"

TICKET_STATUSES: list[str] = [TICKET_AVAILABLE, TICKET_RESERVED, TICKET_SOLD]

# Client-side view status for a number picked but not yet claimed
TICKET_SELECTED = "selected"

# ── Payment Methods ─────────────────────────────────────────────────
PAYMENT_MERCADOPAGO = "mercadopago"
PAYMENT_BANK_TRANSFER = "bank_transfer"
PAYMENT_CASH = "cash"

PAYMENT_METHODS: list[str] = [PAYMENT_MERCADOPAGO, PAYMENT_BANK_TRANSFER, PAYMENT_CASH]

# Price tier id used for cart purchases whose quantity matches no tier
CUSTOM_PRICE_TIER_ID = "custom"

# ── Gateway Payment Statuses ────────────────────────────────────────
GATEWAY_APPROVED = "approved"

# Push event statuses that settle a payment as approved
APPROVED_EVENT_STATUSES: set[str] = {GATEWAY_APPROVED, PURCHASE_PAID}

# Push / gateway statuses that settle a payment as failed
FAILED_PAYMENT_STATUSES: set[str] = {"rejected", "cancelled", "failed"}

# ── Payment Verification ────────────────────────────────────────────
PAYMENT_VERIFICATION_ATTEMPTS = 3
PAYMENT_RETRY_SECONDS = 10

# ── Checkout ────────────────────────────────────────────────────────
MAX_TICKETS_PER_PURCHASE = 1_000
MAX_TICKETS_PER_RAFFLE = 100_000

# ── User Roles ──────────────────────────────────────────────────────
USER_ROLES: list[str] = ["admin", "operator"]
