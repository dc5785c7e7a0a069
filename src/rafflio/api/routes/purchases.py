"""Purchase routes — /api/v1/purchases.

Checkout is public (buyers are not registered users); looking a purchase
up only needs its id, which is delivered by email and in the return URL.
Searching, status changes and deletion are back-office operations.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from rafflio.api.deps import PaginationParams, get_pagination, require_admin, require_staff
from rafflio.api.schemas.purchases import CheckoutRequest, PurchaseStatusUpdate
from rafflio.services.purchases import PurchaseError

router = APIRouter(prefix="/api/v1/purchases", tags=["purchases"])


def _get_purchase_service(request: Request):  # type: ignore[no-untyped-def]
    from rafflio.core.database import get_pool
    from rafflio.repositories.account_repository import AccountRepository
    from rafflio.repositories.price_tier_repository import PriceTierRepository
    from rafflio.repositories.purchase_repository import PurchaseRepository
    from rafflio.repositories.raffle_repository import RaffleRepository
    from rafflio.repositories.ticket_repository import TicketRepository
    from rafflio.services.purchases import PurchaseService

    pool = get_pool()
    state = request.app.state
    return PurchaseService(
        purchase_repo=PurchaseRepository(pool),
        raffle_repo=RaffleRepository(pool),
        price_tier_repo=PriceTierRepository(pool),
        ticket_repo=TicketRepository(pool),
        gateway=state.gateway,
        account_repo=AccountRepository(pool),
        email_service=getattr(state, "email_service", None),
        settings=getattr(state, "settings", None),
    )


@router.post("/checkout", status_code=201)
def checkout(body: CheckoutRequest, request: Request) -> dict[str, Any]:
    """Create a pending purchase and its payment link or payee account."""
    service = _get_purchase_service(request)
    try:
        return service.start_checkout(**body.model_dump())
    except PurchaseError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.get("")
def search_purchases(
    request: Request,
    status: str | None = None,
    raffle_id: str | None = None,
    search: str | None = Query(default=None, max_length=255),
    sort_by: str = "created_at",
    descending: bool = True,
    pagination: PaginationParams = Depends(get_pagination),
    _staff: dict[str, Any] = Depends(require_staff),
) -> dict[str, Any]:
    """Back-office purchase search by status, raffle and buyer text."""
    service = _get_purchase_service(request)
    try:
        return service.search_purchases(
            status=status,
            raffle_id=raffle_id,
            search=search,
            sort_by=sort_by,
            descending=descending,
            page=pagination.page,
            limit=pagination.limit,
        )
    except PurchaseError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.get("/{purchase_id}")
def get_purchase(purchase_id: str, request: Request) -> dict[str, Any]:
    service = _get_purchase_service(request)
    try:
        return service.get_purchase(purchase_id)
    except PurchaseError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.patch("/{purchase_id}/status")
def update_purchase_status(
    purchase_id: str,
    body: PurchaseStatusUpdate,
    request: Request,
    _staff: dict[str, Any] = Depends(require_staff),
) -> dict[str, Any]:
    """Manually set a purchase status, e.g. after a bank transfer arrives."""
    service = _get_purchase_service(request)
    try:
        return service.update_status(purchase_id, body.status)
    except PurchaseError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.delete("/{purchase_id}", status_code=204)
def delete_purchase(
    purchase_id: str,
    request: Request,
    _admin: dict[str, Any] = Depends(require_admin),
) -> Response:
    service = _get_purchase_service(request)
    try:
        service.delete_purchase(purchase_id)
    except PurchaseError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e
    return Response(status_code=204)
