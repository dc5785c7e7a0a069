"""Back-office user routes — /api/v1/users (admin only)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response

from rafflio.api.deps import PaginationParams, get_pagination, require_admin
from rafflio.api.schemas.auth import UserCreate, UserStatusUpdate
from rafflio.services.auth import AuthError

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def _get_auth_service():  # type: ignore[no-untyped-def]
    from rafflio.core.database import get_pool
    from rafflio.repositories.user_repository import UserRepository
    from rafflio.services.auth import AuthService

    return AuthService(user_repo=UserRepository(pool=get_pool()))


@router.get("")
def list_users(
    pagination: PaginationParams = Depends(get_pagination),
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    svc = _get_auth_service()
    return {"items": svc.list_users(page=pagination.page, limit=pagination.limit)}


@router.post("", status_code=201)
def create_user(
    body: UserCreate,
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    svc = _get_auth_service()
    try:
        return svc.create_user(
            email=body.email,
            password=body.password,
            name=body.name,
            role=body.role,
        )
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.patch("/{user_id}/status")
def set_user_status(
    user_id: str,
    body: UserStatusUpdate,
    _admin: dict[str, Any] = Depends(require_admin),
) -> dict[str, Any]:
    svc = _get_auth_service()
    try:
        return svc.set_active(user_id, body.is_active)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: str,
    admin: dict[str, Any] = Depends(require_admin),
) -> Response:
    svc = _get_auth_service()
    try:
        svc.delete_user(user_id, acting_user_id=admin.get("sub"))
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e
    return Response(status_code=204)
