"""Abstract base class for payment gateways."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PaymentInfo:
    """Gateway view of a single payment."""

    payment_id: str
    status: str  # "approved" | "pending" | "rejected" | "cancelled" | ...
    status_detail: str | None = None
    external_reference: str | None = None
    preference_id: str | None = None
    transaction_amount: float | None = None
    date_approved: str | None = None
    date_created: str | None = None
    payer: dict[str, Any] = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"


@dataclass
class PreferenceInfo:
    """A checkout preference: the link a buyer follows to pay."""

    preference_id: str
    init_point: str
    sandbox_init_point: str | None = None
    external_reference: str | None = None


@dataclass
class MerchantOrderInfo:
    """Merchant order grouping the payments made against a preference."""

    merchant_order_id: str
    status: str | None = None
    preference_id: str | None = None
    external_reference: str | None = None
    payments: list[dict[str, Any]] = field(default_factory=list)


class GatewayError(Exception):
    """Error communicating with the payment gateway."""

    def __init__(self, detail: str, status_code: int = 502) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class PaymentGateway(ABC):
    """Payment gateway operations used by checkout, webhooks and reconciliation."""

    gateway_name: str = ""

    @abstractmethod
    def create_preference(self, data: dict[str, Any]) -> PreferenceInfo:
        """Create a checkout preference from a gateway-shaped payload."""

    @abstractmethod
    def get_payment(self, payment_id: str) -> PaymentInfo:
        """Look up a payment. Raises GatewayError when it cannot be read."""

    @abstractmethod
    def get_preference(self, preference_id: str) -> PreferenceInfo | None:
        """Look up a preference; ``None`` when the gateway does not know it."""

    @abstractmethod
    def get_merchant_order(self, merchant_order_id: str) -> MerchantOrderInfo | None:
        """Look up a merchant order; ``None`` when the gateway does not know it."""
