"""Raffle routes — /api/v1/raffles.

Public endpoints for browsing raffles and their free ticket numbers.
Admin endpoints for creating, editing and deleting raffles.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from rafflio.api.deps import require_admin
from rafflio.api.schemas.raffles import RaffleCreate, RaffleUpdate
from rafflio.services.raffles import RaffleError

router = APIRouter(prefix="/api/v1/raffles", tags=["raffles"])


def _get_raffle_service():  # type: ignore[no-untyped-def]
    from rafflio.core.database import get_pool
    from rafflio.repositories.account_repository import AccountRepository
    from rafflio.repositories.price_tier_repository import PriceTierRepository
    from rafflio.repositories.prize_repository import PrizeRepository
    from rafflio.repositories.purchase_repository import PurchaseRepository
    from rafflio.repositories.raffle_repository import RaffleRepository
    from rafflio.repositories.ticket_repository import TicketRepository
    from rafflio.services.raffles import RaffleService

    pool = get_pool()
    return RaffleService(
        raffle_repo=RaffleRepository(pool),
        prize_repo=PrizeRepository(pool),
        price_tier_repo=PriceTierRepository(pool),
        ticket_repo=TicketRepository(pool),
        purchase_repo=PurchaseRepository(pool),
        account_repo=AccountRepository(pool),
    )


# ── Public endpoints ────────────────────────────────────────────────


@router.get("")
def list_raffles(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    active_only: bool = True,
) -> dict[str, Any]:
    """List raffles, newest first."""
    service = _get_raffle_service()
    return service.list_raffles(active_only=active_only, page=page, limit=limit)


@router.get("/{raffle_id}")
def get_raffle(raffle_id: str) -> dict[str, Any]:
    """Raffle with prizes, price tiers, payee account and sold count."""
    service = _get_raffle_service()
    try:
        return service.get_raffle(raffle_id)
    except RaffleError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.get("/{raffle_id}/tickets/available")
def get_available_tickets(raffle_id: str) -> dict[str, Any]:
    service = _get_raffle_service()
    try:
        tickets = service.get_available_tickets(raffle_id)
    except RaffleError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e
    return {
        "raffle_id": raffle_id,
        "count": len(tickets),
        "numbers": [t["ticket_number"] for t in tickets],
    }


@router.get("/{raffle_id}/share")
def share_raffle(raffle_id: str, request: Request) -> dict[str, str]:
    """Announcement text and WhatsApp link for sharing a raffle."""
    settings = request.app.state.settings
    service = _get_raffle_service()
    try:
        return service.share_message(raffle_id, base_url=settings.app_base_url)
    except RaffleError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


# ── Admin endpoints ─────────────────────────────────────────────────


@router.post("", status_code=201)
def create_raffle(
    body: RaffleCreate,
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    """Create a raffle together with its whole ticket pool."""
    service = _get_raffle_service()
    try:
        return service.create_raffle(
            title=body.title,
            description=body.description,
            draw_date=body.draw_date,
            max_tickets=body.max_tickets,
            account_id=body.account_id,
            prizes=[p.model_dump() for p in body.prizes],
            price_tiers=[t.model_dump() for t in body.price_tiers],
        )
    except RaffleError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.patch("/{raffle_id}")
def update_raffle(
    raffle_id: str,
    body: RaffleUpdate,
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    service = _get_raffle_service()
    updates = body.model_dump(exclude_unset=True)
    try:
        return service.update_raffle(raffle_id, updates)
    except RaffleError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.delete("/{raffle_id}", status_code=204)
def delete_raffle(
    raffle_id: str,
    _admin: dict[str, Any] = Depends(require_admin),
) -> Response:
    service = _get_raffle_service()
    try:
        service.delete_raffle(raffle_id)
    except RaffleError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e
    return Response(status_code=204)


@router.get("/{raffle_id}/price-tiers/used")
def get_used_price_tiers(
    raffle_id: str,
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    """Tiers referenced by purchases; the admin form locks these."""
    service = _get_raffle_service()
    return {"raffle_id": raffle_id, "price_tier_ids": service.used_price_tier_ids(raffle_id)}
