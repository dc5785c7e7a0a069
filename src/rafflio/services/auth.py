"""Authentication service — administrator login, lockout and user management."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from rafflio.core.constants import USER_ROLES
from rafflio.core.security import (
    create_access_token,
    hash_password,
    validate_password_complexity,
    verify_password,
)

logger = logging.getLogger(__name__)

# ── Account lockout settings ────────────────────────────────────────
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION_MINUTES = 15


class AuthError(Exception):
    """Authentication / authorisation error with HTTP status hint."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class AuthService:
    """Stateless service — receives repositories via __init__."""

    def __init__(self, user_repo: Any, token_expire_minutes: int = 60) -> None:
        self.user_repo = user_repo
        self.token_expire_minutes = token_expire_minutes

    # ── Login ───────────────────────────────────────────────────────

    def login(self, email: str, password: str) -> dict[str, Any]:
        """Authenticate with email + password, return an access token."""
        user = self.user_repo.find_by_email(email)
        if user is None:
            raise AuthError("Invalid email or password", status_code=401)

        user_id = user["user_id"]
        self._check_lockout(user)

        if not verify_password(password, user.get("password_hash", "")):
            self._record_failed_attempt(user)
            raise AuthError("Invalid email or password", status_code=401)

        if not user.get("is_active"):
            raise AuthError("Account is disabled", status_code=403)

        now = datetime.now(tz=UTC)
        self.user_repo.update(
            user_id,
            {
                "failed_login_attempts": 0,
                "locked_until": None,
                "last_login_at": now,
                "updated_at": now,
            },
        )

        role = user.get("role", "admin")
        access_token = create_access_token(
            subject=user_id,
            role=role,
            expires_minutes=self.token_expire_minutes,
        )
        logger.info("User logged in: user_id=%s", user_id)
        return {
            "user_id": user_id,
            "access_token": access_token,
            "token_type": "bearer",
            "role": role,
            "name": user.get("name"),
        }

    # ── User management ─────────────────────────────────────────────

    def create_user(
        self,
        *,
        email: str,
        password: str,
        name: str,
        role: str = "admin",
    ) -> dict[str, Any]:
        """Create a back-office user."""
        if role not in USER_ROLES:
            raise AuthError(f"Invalid role: {role}. Valid: {USER_ROLES}", status_code=422)
        pwd_errors = validate_password_complexity(password)
        if pwd_errors:
            raise AuthError("; ".join(pwd_errors), status_code=422)

        email = email.lower()
        if self.user_repo.find_by_email(email) is not None:
            raise AuthError("Email already registered", status_code=409)

        user_id = uuid.uuid4().hex
        now = datetime.now(tz=UTC)
        data: dict[str, Any] = {
            "email": email,
            "name": name,
            "role": role,
            "password_hash": hash_password(password),
            "is_active": 1,
            "failed_login_attempts": 0,
            "created_at": now,
            "updated_at": now,
        }
        self.user_repo.create(data=data, new_id=user_id)
        logger.info("User created: user_id=%s role=%s", user_id, role)
        return self._public(user_id, data)

    def list_users(self, page: int = 1, limit: int = 50) -> list[dict[str, Any]]:
        rows = self.user_repo.find_all(
            limit=limit,
            offset=(page - 1) * limit,
            order_by="created_at DESC",
        )
        return [self._public(r["user_id"], r) for r in rows]

    def set_active(self, user_id: str, is_active: bool) -> dict[str, Any]:
        user = self.user_repo.find_by_id(user_id)
        if user is None:
            raise AuthError("User not found", status_code=404)
        if not is_active:
            self._guard_last_admin(user)
        self.user_repo.update(
            user_id,
            {"is_active": 1 if is_active else 0, "updated_at": datetime.now(tz=UTC)},
        )
        user["is_active"] = is_active
        return self._public(user_id, user)

    def delete_user(self, user_id: str, acting_user_id: str | None = None) -> None:
        if user_id == acting_user_id:
            raise AuthError("You cannot delete your own account", status_code=409)
        user = self.user_repo.find_by_id(user_id)
        if user is None:
            raise AuthError("User not found", status_code=404)
        self._guard_last_admin(user)
        self.user_repo.delete(user_id)
        logger.info("User deleted: user_id=%s by=%s", user_id, acting_user_id)

    # ── Private helpers ─────────────────────────────────────────────

    @staticmethod
    def _public(user_id: str, user: dict[str, Any]) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "email": user.get("email"),
            "name": user.get("name"),
            "role": user.get("role"),
            "is_active": bool(user.get("is_active")),
        }

    def _guard_last_admin(self, user: dict[str, Any]) -> None:
        """The last active admin can be neither disabled nor deleted."""
        if user.get("role") != "admin" or not user.get("is_active"):
            return
        if self.user_repo.count_active_admins() <= 1:
            raise AuthError("At least one active admin is required", status_code=409)

    def _check_lockout(self, user: dict[str, Any]) -> None:
        """Check if account is locked out from too many failed attempts."""
        locked_until = user.get("locked_until")
        if locked_until:
            if isinstance(locked_until, str):
                locked_until = datetime.fromisoformat(locked_until)
            if isinstance(locked_until, datetime):
                if locked_until.tzinfo is None:
                    locked_until = locked_until.replace(tzinfo=UTC)
                if datetime.now(tz=UTC) < locked_until:
                    raise AuthError(
                        f"Account locked until {locked_until.isoformat()}",
                        status_code=423,
                    )

    def _record_failed_attempt(self, user: dict[str, Any]) -> None:
        """Increment failed login counter. Lock after MAX_FAILED_ATTEMPTS."""
        user_id = user["user_id"]
        attempts = (user.get("failed_login_attempts") or 0) + 1
        update_data: dict[str, Any] = {
            "failed_login_attempts": attempts,
            "updated_at": datetime.now(tz=UTC),
        }
        if attempts >= MAX_FAILED_ATTEMPTS:
            update_data["locked_until"] = datetime.now(tz=UTC) + timedelta(
                minutes=LOCKOUT_DURATION_MINUTES
            )
            logger.warning("Account locked: user_id=%s after %d failed attempts", user_id, attempts)

        self.user_repo.update(user_id, update_data)
