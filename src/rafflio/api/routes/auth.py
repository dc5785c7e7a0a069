"""Authentication routes — /api/v1/auth."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from rafflio.api.deps import get_current_user
from rafflio.api.schemas.auth import LoginRequest
from rafflio.services.auth import AuthError, AuthService

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _get_auth_service() -> AuthService:
    """Build an AuthService with live repositories."""
    from rafflio.core.config import get_settings
    from rafflio.core.database import get_pool
    from rafflio.repositories.user_repository import UserRepository

    return AuthService(
        user_repo=UserRepository(pool=get_pool()),
        token_expire_minutes=get_settings().jwt_access_token_expire_minutes,
    )


@router.post("/login")
def login(body: LoginRequest) -> dict[str, Any]:
    """Authenticate a back-office user and return an access token."""
    svc = _get_auth_service()
    try:
        return svc.login(email=body.email, password=body.password)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e


@router.get("/me")
def get_me(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    """Return the claims of the current token."""
    return {
        "user_id": current_user.get("sub"),
        "role": current_user.get("role"),
        "expires_at": current_user.get("exp"),
    }
