"""Payment WebSockets — live payment status for an open buyer session.

``/ws/payments/{purchase_id}`` forwards raw push events from the webhook.
``/ws/payments/{purchase_id}/verify`` runs a :class:`PaymentReconciler`
for the purchase and streams every snapshot until a terminal one. The
gateway's redirect parameters (``payment_id``, ``collection_status`` ...)
are passed through the socket's query string. Closing the socket cancels
the session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from rafflio.core.context import bind_purchase
from rafflio.services.reconciliation import PaymentRedirect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws/payments", tags=["payments"])


def _get_reconciler(websocket: WebSocket, purchase_id: str, on_change: Any):  # type: ignore[no-untyped-def]
    from rafflio.core.database import get_pool
    from rafflio.repositories.purchase_repository import PurchaseRepository
    from rafflio.repositories.ticket_repository import TicketRepository
    from rafflio.services.reconciliation import PaymentReconciler

    pool = get_pool()
    state = websocket.app.state
    settings = state.settings
    return PaymentReconciler(
        purchase_id,
        purchases=PurchaseRepository(pool),
        tickets=TicketRepository(pool),
        gateway=state.gateway,
        notifier=state.notifier,
        redirect=PaymentRedirect.from_query(websocket.query_params),
        on_change=on_change,
        max_attempts=settings.payment_verification_attempts,
        retry_seconds=settings.payment_retry_seconds,
    )


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume (and ignore) client messages until the socket closes."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/{purchase_id}")
async def payment_events(websocket: WebSocket, purchase_id: str) -> None:
    await websocket.accept()
    with bind_purchase(purchase_id):
        await _forward_events(websocket, purchase_id)


async def _forward_events(websocket: WebSocket, purchase_id: str) -> None:
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def on_event(event: Any) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event.to_dict())

    unsubscribe = websocket.app.state.notifier.subscribe(purchase_id, on_event)
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {getter, disconnected}, return_when=asyncio.FIRST_COMPLETED
            )
            if getter not in done:
                getter.cancel()
                return
            await websocket.send_json(getter.result())
    finally:
        unsubscribe()
        disconnected.cancel()
        logger.debug("Payment event socket closed for purchase %s", purchase_id)


@router.websocket("/{purchase_id}/verify")
async def verify_payment(websocket: WebSocket, purchase_id: str) -> None:
    await websocket.accept()
    with bind_purchase(purchase_id):
        await _stream_verification(websocket, purchase_id)


async def _stream_verification(websocket: WebSocket, purchase_id: str) -> None:
    queue: asyncio.Queue[Any] = asyncio.Queue()
    reconciler = _get_reconciler(websocket, purchase_id, queue.put_nowait)

    await websocket.send_json(reconciler.snapshot.to_dict())
    reconciler.start()
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {getter, disconnected}, return_when=asyncio.FIRST_COMPLETED
            )
            if getter not in done:
                getter.cancel()
                logger.info("Buyer left verification of purchase %s", purchase_id)
                return
            snapshot = getter.result()
            await websocket.send_json(snapshot.to_dict())
            if snapshot.is_terminal:
                break
        await websocket.close()
    finally:
        if not reconciler.done:
            reconciler.cancel()
        disconnected.cancel()
