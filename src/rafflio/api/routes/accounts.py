"""Payee account routes — /api/v1/accounts (admin only)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response

from rafflio.api.deps import require_admin
from rafflio.api.schemas.accounts import AccountCreate
from rafflio.services.accounts import AccountError

router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])


def _get_account_service():  # type: ignore[no-untyped-def]
    from rafflio.core.database import get_pool
    from rafflio.repositories.account_repository import AccountRepository
    from rafflio.repositories.raffle_repository import RaffleRepository
    from rafflio.services.accounts import AccountService

    pool = get_pool()
    return AccountService(account_repo=AccountRepository(pool), raffle_repo=RaffleRepository(pool))


@router.get("")
def list_accounts(_admin: dict[str, Any] = Depends(require_admin)) -> dict[str, Any]:
    service = _get_account_service()
    return {"items": service.list_accounts()}


@router.get("/{account_id}")
def get_account(
    account_id: str,
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    service = _get_account_service()
    try:
        return service.get_account(account_id)
    except AccountError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.post("", status_code=201)
def create_account(
    body: AccountCreate,
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    service = _get_account_service()
    try:
        return service.create_account(
            cbu=body.cbu,
            alias=body.alias,
            titular=body.titular,
            banco=body.banco,
            email=body.email or "",
            whatsapp=body.whatsapp,
        )
    except AccountError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.delete("/{account_id}", status_code=204)
def delete_account(
    account_id: str,
    _admin: dict[str, Any] = Depends(require_admin),
) -> Response:
    service = _get_account_service()
    try:
        service.delete_account(account_id)
    except AccountError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e
    return Response(status_code=204)
