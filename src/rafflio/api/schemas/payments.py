"""Payment gateway request schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PaymentInfoRequest(BaseModel):
    """Accepts ``payment_id`` or the ``paymentId`` sent by the web client."""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId", min_length=1)


class PreferenceRequest(BaseModel):
    """Raw Checkout Pro preference body, passed through to the gateway."""

    model_config = ConfigDict(extra="allow")

    items: list[dict[str, Any]] = Field(min_length=1)
    external_reference: str | None = None
