"""Payment gateway routes — /api/payment.

Thin adapters over the gateway plus the webhook receiver. The webhook
always answers quickly: it writes the purchase status, then pushes the
event to every open buyer session subscribed to that purchase.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from rafflio.api.schemas.payments import PaymentInfoRequest, PreferenceRequest
from rafflio.services.gateways.base import GatewayError
from rafflio.services.purchases import PurchaseError
from rafflio.services.webhooks import WebhookError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payments"])


def _get_purchase_service(request: Request):  # type: ignore[no-untyped-def]
    from rafflio.api.routes.purchases import _get_purchase_service as factory

    return factory(request)


def _get_webhook_service(request: Request):  # type: ignore[no-untyped-def]
    from rafflio.core.database import get_pool
    from rafflio.repositories.purchase_repository import PurchaseRepository
    from rafflio.services.webhooks import WebhookService

    return WebhookService(
        purchase_repo=PurchaseRepository(get_pool()),
        gateway=request.app.state.gateway,
    )


@router.post("/create-preference")
def create_preference(body: PreferenceRequest, request: Request) -> dict[str, Any]:
    """Create a checkout preference from a caller-built payload."""
    service = _get_purchase_service(request)
    try:
        return service.create_preference(body.model_dump(exclude_none=True))
    except PurchaseError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.post("/payment-info")
def payment_info(body: PaymentInfoRequest, request: Request) -> dict[str, Any]:
    service = _get_purchase_service(request)
    try:
        return service.get_payment_info(body.payment_id)
    except PurchaseError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.post("/webhook")
async def webhook(request: Request) -> dict[str, Any]:
    """Gateway payment notification.

    Non-payment topics and malformed bodies are acknowledged and ignored.
    A gateway failure answers 502 so the notification is retried.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    query = dict(request.query_params)

    service = _get_webhook_service(request)
    try:
        event = await run_in_threadpool(service.handle_notification, payload, query)
    except WebhookError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e
    except GatewayError as e:
        logger.error("Webhook payment lookup failed: %s", e.detail)
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e

    if event is not None:
        delivered = request.app.state.notifier.publish(event)
        logger.info(
            "Payment event for purchase %s delivered to %d subscriber(s)",
            event.purchase_id,
            delivered,
        )
    return {"received": True}
