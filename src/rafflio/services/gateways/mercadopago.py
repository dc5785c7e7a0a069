"""MercadoPago gateway client.

Wraps the official ``mercadopago`` SDK for preference creation and payment,
preference and merchant-order lookups. Without an access token the client
works in *stub mode*: preferences are generated deterministically and
payments always read back as ``pending``, so checkout and reconciliation
can be exercised end-to-end locally.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

import mercadopago
from mercadopago.config import RequestOptions

from rafflio.services.gateways.base import (
    GatewayError,
    MerchantOrderInfo,
    PaymentGateway,
    PaymentInfo,
    PreferenceInfo,
)

logger = logging.getLogger(__name__)

CHECKOUT_URL = "https://www.mercadopago.com.ar/checkout/v1/redirect"
SANDBOX_CHECKOUT_URL = "https://sandbox.mercadopago.com.ar/checkout/v1/redirect"


class MercadoPagoGateway(PaymentGateway):
    """MercadoPago Checkout Pro gateway.

    Every SDK call returns ``{"status": <http status>, "response": {...}}``;
    anything outside 2xx is turned into :class:`GatewayError`, except 404
    on preference / merchant-order lookups which reads as "not found".
    """

    gateway_name = "mercadopago"

    def __init__(
        self,
        access_token: str | None = None,
        timeout_seconds: float = 5,
        sdk: Any | None = None,
    ) -> None:
        self.access_token = access_token or ""
        self._stub_mode = sdk is None and not self.access_token
        self._stub_preferences: dict[str, PreferenceInfo] = {}
        if sdk is not None:
            self._sdk = sdk
        elif self._stub_mode:
            self._sdk = None
            logger.info("MercadoPagoGateway running in STUB mode (no access token)")
        else:
            options = RequestOptions(connection_timeout=float(timeout_seconds))
            self._sdk = mercadopago.SDK(self.access_token, request_options=options)

    @property
    def stub_mode(self) -> bool:
        return self._stub_mode

    # ── Preferences ─────────────────────────────────────────────────

    def create_preference(self, data: dict[str, Any]) -> PreferenceInfo:
        if self._stub_mode:
            return self._create_stub_preference(data)

        body = self._call("create preference", lambda: self._sdk.preference().create(data)) or {}
        preference = self._to_preference(body)
        logger.info(
            "Created MercadoPago preference %s for reference %s",
            preference.preference_id,
            preference.external_reference,
        )
        return preference

    def get_preference(self, preference_id: str) -> PreferenceInfo | None:
        if self._stub_mode:
            return self._stub_preferences.get(preference_id)

        body = self._call(
            "get preference",
            lambda: self._sdk.preference().get(preference_id),
            not_found_ok=True,
        )
        return self._to_preference(body) if body is not None else None

    # ── Payments ────────────────────────────────────────────────────

    def get_payment(self, payment_id: str) -> PaymentInfo:
        if not payment_id:
            raise GatewayError("payment id is required", status_code=400)
        if self._stub_mode:
            return PaymentInfo(payment_id=str(payment_id), status="pending")

        body = self._call("get payment", lambda: self._sdk.payment().get(str(payment_id))) or {}
        return PaymentInfo(
            payment_id=str(body.get("id", payment_id)),
            status=str(body.get("status") or "unknown"),
            status_detail=body.get("status_detail"),
            external_reference=body.get("external_reference") or None,
            preference_id=body.get("preference_id") or None,
            transaction_amount=body.get("transaction_amount"),
            date_approved=body.get("date_approved"),
            date_created=body.get("date_created"),
            payer=body.get("payer") or {},
        )

    def get_merchant_order(self, merchant_order_id: str) -> MerchantOrderInfo | None:
        if self._stub_mode:
            return None

        body = self._call(
            "get merchant order",
            lambda: self._sdk.merchant_order().get(str(merchant_order_id)),
            not_found_ok=True,
        )
        if body is None:
            return None
        return MerchantOrderInfo(
            merchant_order_id=str(body.get("id", merchant_order_id)),
            status=body.get("status"),
            preference_id=body.get("preference_id"),
            external_reference=body.get("external_reference"),
            payments=list(body.get("payments") or []),
        )

    # ── Helpers ─────────────────────────────────────────────────────

    def _call(
        self,
        operation: str,
        request: Any,
        not_found_ok: bool = False,
    ) -> dict[str, Any] | None:
        """Run an SDK request and unwrap its ``response`` body."""
        try:
            result = request()
        except Exception as e:
            logger.error("MercadoPago %s failed: %s", operation, e)
            raise GatewayError(f"MercadoPago {operation} failed") from e

        status = int(result.get("status", 0))
        body = result.get("response") or {}
        if status == 404 and not_found_ok:
            return None
        if not 200 <= status < 300:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning("MercadoPago %s returned %d: %s", operation, status, message)
            raise GatewayError(
                f"MercadoPago {operation} returned {status}: {message or 'error'}",
                status_code=404 if status == 404 else 502,
            )
        return body

    @staticmethod
    def _to_preference(body: dict[str, Any]) -> PreferenceInfo:
        return PreferenceInfo(
            preference_id=str(body.get("id", "")),
            init_point=str(body.get("init_point", "")),
            sandbox_init_point=body.get("sandbox_init_point"),
            external_reference=body.get("external_reference"),
        )

    def _create_stub_preference(self, data: dict[str, Any]) -> PreferenceInfo:
        reference = str(data.get("external_reference", ""))
        digest = hashlib.sha256(reference.encode()).hexdigest()[:12]
        preference_id = f"stub-{digest}"
        preference = PreferenceInfo(
            preference_id=preference_id,
            init_point=f"{CHECKOUT_URL}?pref_id={preference_id}",
            sandbox_init_point=f"{SANDBOX_CHECKOUT_URL}?pref_id={preference_id}",
            external_reference=reference or None,
        )
        self._stub_preferences[preference_id] = preference
        logger.info("Stub: created preference %s for reference %s", preference_id, reference)
        return preference
