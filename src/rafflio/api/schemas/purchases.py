"""Purchase entity schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, EmailStr, Field, model_validator


class CheckoutRequest(BaseModel):
    """Start a purchase.

    Either a ``price_tier_id`` of the raffle, or ``custom`` / omitted
    together with a ``quantity`` priced from the raffle's bundles.
    """

    raffle_id: str
    full_name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(default="", max_length=50)
    payment_method: str = Field(
        default="mercadopago",
        pattern=r"^(mercadopago|bank_transfer|cash)$",
    )
    price_tier_id: str | None = None
    quantity: int | None = Field(default=None, ge=1, le=1000)

    @model_validator(mode="after")
    def _tier_or_quantity(self) -> CheckoutRequest:
        if (self.price_tier_id in (None, "custom")) and self.quantity is None:
            raise ValueError("quantity is required when no price tier is chosen")
        return self


class PurchaseStatusUpdate(BaseModel):
    status: str = Field(pattern=r"^(pending|paid|failed|cancelled|confirmed)$")


class PurchaseResponse(BaseModel):
    """Schema for purchase in API responses."""

    purchase_id: str
    raffle_id: str
    price_tier_id: str | None = None
    full_name: str
    email: str
    phone: str | None = None
    amount: Decimal
    ticket_count: int
    payment_method: str
    payment_id: str | None = None
    preference_id: str | None = None
    status: str
    created_at: datetime | None = None
    tickets: list[dict[str, Any]] | None = None
    price_tier: dict[str, Any] | None = None


class CheckoutResponse(BaseModel):
    purchase: PurchaseResponse
    payment_url: str | None = None
    sandbox_payment_url: str | None = None
    preference_id: str | None = None
    account: dict[str, Any] | None = None
