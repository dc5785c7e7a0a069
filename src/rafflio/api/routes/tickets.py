"""Ticket claim routes — /api/v1/purchases/{purchase_id}/tickets.

A paid buyer loads the raffle's pool, picks exactly as many numbers as
the purchase covers and submits them. Losing a race answers 409 with the
refreshed pool so the page can redraw without another request.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from rafflio.api.schemas.tickets import ClaimRequest
from rafflio.services.claims import ClaimConflictError, ClaimError

router = APIRouter(prefix="/api/v1/purchases", tags=["tickets"])


def _get_claim_service(request: Request):  # type: ignore[no-untyped-def]
    from rafflio.core.database import get_pool
    from rafflio.repositories.prize_repository import PrizeRepository
    from rafflio.repositories.purchase_repository import PurchaseRepository
    from rafflio.repositories.ticket_repository import TicketRepository
    from rafflio.services.claims import ClaimService

    pool = get_pool()
    return ClaimService(
        purchase_repo=PurchaseRepository(pool),
        ticket_repo=TicketRepository(pool),
        prize_repo=PrizeRepository(pool),
        email_service=getattr(request.app.state, "email_service", None),
    )


@router.get("/{purchase_id}/tickets")
def get_ticket_pool(purchase_id: str, request: Request) -> dict[str, Any]:
    """Every number of the purchase's raffle with its status for this buyer."""
    service = _get_claim_service(request)
    try:
        return service.get_ticket_pool(purchase_id)
    except ClaimError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.post("/{purchase_id}/tickets/confirm")
def confirm_tickets(purchase_id: str, body: ClaimRequest, request: Request) -> dict[str, Any]:
    service = _get_claim_service(request)
    try:
        return service.confirm_selection(purchase_id, body.numbers)
    except ClaimConflictError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"message": e.detail, "unavailable": e.unavailable, "pool": e.pool},
        ) from e
    except ClaimError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e
