"""FastAPI dependencies: pagination and back-office authentication.

Buyers never authenticate; a purchase id is their capability. Only the
administration routes (raffles, accounts, users, purchase search) require a
staff JWT.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header, HTTPException, Query

from rafflio.core.constants import USER_ROLES
from rafflio.core.security import decode_token_safe


@dataclass
class PaginationParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def get_pagination(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
) -> PaginationParams:
    return PaginationParams(page=page, limit=limit)


# ── Auth ────────────────────────────────────────────────────────────


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def get_current_user(
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Decoded access-token claims (``sub``, ``role``, ``type`` ...) of the caller."""
    if not authorization:
        raise _unauthorized("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Invalid Authorization header format. Expected: Bearer <token>")

    payload = decode_token_safe(token)
    if payload is None:
        raise _unauthorized("Invalid or expired token")
    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")
    return payload


def _require_roles(roles: frozenset[str], detail: str) -> Callable[..., dict[str, Any]]:
    def dependency(
        current_user: dict[str, Any] = Depends(get_current_user),
    ) -> dict[str, Any]:
        if current_user.get("role") not in roles:
            raise HTTPException(status_code=403, detail=detail)
        return current_user

    return dependency


# Any back-office role
require_staff = _require_roles(frozenset(USER_ROLES), "Staff access required")
require_admin = _require_roles(frozenset({"admin"}), "Admin access required")
