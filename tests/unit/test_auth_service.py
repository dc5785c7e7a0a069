"""Tests for the AuthService — login, lockout and back-office users."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from rafflio.services.auth import (
    LOCKOUT_DURATION_MINUTES,
    MAX_FAILED_ATTEMPTS,
    AuthError,
    AuthService,
)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_user_repo(user: dict[str, Any] | None = None) -> MagicMock:
    repo = MagicMock()
    repo.find_by_email = MagicMock(return_value=user)
    repo.find_by_id = MagicMock(return_value=user)
    repo.create = MagicMock()
    repo.update = MagicMock(return_value=1)
    repo.delete = MagicMock(return_value=1)
    repo.count_active_admins = MagicMock(return_value=2)
    return repo


def _make_hashed_user(
    is_active: int = 1,
    failed_login_attempts: int = 0,
    locked_until: Any = None,
) -> dict[str, Any]:
    """User with a real Argon2 hash for 'rafflio2026'."""
    from rafflio.core.security import hash_password

    return {
        "user_id": "uid1",
        "email": "admin@rafflio.com",
        "name": "Admin",
        "role": "admin",
        "password_hash": hash_password("rafflio2026"),
        "is_active": is_active,
        "failed_login_attempts": failed_login_attempts,
        "locked_until": locked_until,
    }


# ── Login ───────────────────────────────────────────────────────────


class TestLogin:
    def test_successful_login_returns_token(self) -> None:
        repo = _make_user_repo(_make_hashed_user())
        result = AuthService(repo).login("admin@rafflio.com", "rafflio2026")

        assert result["user_id"] == "uid1"
        assert result["token_type"] == "bearer"
        assert result["role"] == "admin"
        assert result["access_token"]
        update = repo.update.call_args.args[1]
        assert update["failed_login_attempts"] == 0
        assert update["locked_until"] is None

    def test_token_carries_role(self) -> None:
        from rafflio.core.security import decode_token

        repo = _make_user_repo(_make_hashed_user())
        token = AuthService(repo).login("admin@rafflio.com", "rafflio2026")["access_token"]
        claims = decode_token(token)
        assert claims["sub"] == "uid1"
        assert claims["role"] == "admin"

    def test_unknown_email(self) -> None:
        with pytest.raises(AuthError) as exc:
            AuthService(_make_user_repo(None)).login("nobody@example.com", "x")
        assert exc.value.status_code == 401

    def test_wrong_password_counts_attempt(self) -> None:
        repo = _make_user_repo(_make_hashed_user(failed_login_attempts=1))
        with pytest.raises(AuthError) as exc:
            AuthService(repo).login("admin@rafflio.com", "wrong-pass1")
        assert exc.value.status_code == 401
        update = repo.update.call_args.args[1]
        assert update["failed_login_attempts"] == 2
        assert "locked_until" not in update

    def test_lockout_after_max_attempts(self) -> None:
        repo = _make_user_repo(_make_hashed_user(failed_login_attempts=MAX_FAILED_ATTEMPTS - 1))
        with pytest.raises(AuthError):
            AuthService(repo).login("admin@rafflio.com", "wrong-pass1")
        update = repo.update.call_args.args[1]
        assert update["locked_until"] > datetime.now(tz=UTC) + timedelta(
            minutes=LOCKOUT_DURATION_MINUTES - 1
        )

    def test_locked_account_rejected(self) -> None:
        user = _make_hashed_user(locked_until=datetime.now(tz=UTC) + timedelta(minutes=5))
        with pytest.raises(AuthError) as exc:
            AuthService(_make_user_repo(user)).login("admin@rafflio.com", "rafflio2026")
        assert exc.value.status_code == 423

    def test_expired_lock_allows_login(self) -> None:
        user = _make_hashed_user(locked_until=datetime.now(tz=UTC) - timedelta(minutes=1))
        result = AuthService(_make_user_repo(user)).login("admin@rafflio.com", "rafflio2026")
        assert result["user_id"] == "uid1"

    def test_disabled_account(self) -> None:
        repo = _make_user_repo(_make_hashed_user(is_active=0))
        with pytest.raises(AuthError) as exc:
            AuthService(repo).login("admin@rafflio.com", "rafflio2026")
        assert exc.value.status_code == 403


# ── User management ─────────────────────────────────────────────────


class TestUserManagement:
    def test_create_user_hashes_password(self) -> None:
        repo = _make_user_repo(None)
        result = AuthService(repo).create_user(
            email="Op@Rafflio.com", password="operator123", name="Op", role="operator"
        )
        assert result["email"] == "op@rafflio.com"
        assert result["role"] == "operator"
        assert result["is_active"] is True
        data = repo.create.call_args.kwargs["data"]
        assert data["password_hash"] != "operator123"
        assert "password_hash" not in result

    def test_duplicate_email(self) -> None:
        repo = _make_user_repo({"user_id": "u2"})
        with pytest.raises(AuthError) as exc:
            AuthService(repo).create_user(email="a@b.com", password="abcdefg1", name="A")
        assert exc.value.status_code == 409

    def test_invalid_role(self) -> None:
        with pytest.raises(AuthError) as exc:
            AuthService(_make_user_repo(None)).create_user(
                email="a@b.com", password="abcdefg1", name="A", role="buyer"
            )
        assert exc.value.status_code == 422

    def test_weak_password(self) -> None:
        with pytest.raises(AuthError) as exc:
            AuthService(_make_user_repo(None)).create_user(
                email="a@b.com", password="short", name="A"
            )
        assert exc.value.status_code == 422

    def test_cannot_delete_self(self) -> None:
        with pytest.raises(AuthError) as exc:
            AuthService(_make_user_repo(None)).delete_user("uid1", acting_user_id="uid1")
        assert exc.value.status_code == 409

    def test_delete_missing_user(self) -> None:
        repo = _make_user_repo(None)
        repo.delete.return_value = 0
        with pytest.raises(AuthError) as exc:
            AuthService(repo).delete_user("nope", acting_user_id="uid1")
        assert exc.value.status_code == 404

    def test_set_active(self) -> None:
        repo = _make_user_repo(_make_hashed_user())
        result = AuthService(repo).set_active("uid1", False)
        assert result["is_active"] is False
        assert repo.update.call_args.args[1]["is_active"] == 0

    def test_delete_other_admin(self) -> None:
        repo = _make_user_repo({**_make_hashed_user(), "user_id": "uid2"})
        AuthService(repo).delete_user("uid2", acting_user_id="uid1")
        repo.delete.assert_called_once_with("uid2")

    def test_last_admin_cannot_be_deleted(self) -> None:
        repo = _make_user_repo({**_make_hashed_user(), "user_id": "uid2"})
        repo.count_active_admins.return_value = 1
        with pytest.raises(AuthError) as exc:
            AuthService(repo).delete_user("uid2", acting_user_id="uid1")
        assert exc.value.status_code == 409
        repo.delete.assert_not_called()

    def test_last_admin_cannot_be_disabled(self) -> None:
        repo = _make_user_repo(_make_hashed_user())
        repo.count_active_admins.return_value = 1
        with pytest.raises(AuthError) as exc:
            AuthService(repo).set_active("uid1", False)
        assert exc.value.status_code == 409
        repo.update.assert_not_called()

    def test_operator_can_be_disabled_regardless_of_admins(self) -> None:
        repo = _make_user_repo({**_make_hashed_user(), "role": "operator"})
        repo.count_active_admins.return_value = 1
        assert AuthService(repo).set_active("uid1", False)["is_active"] is False
        repo.count_active_admins.assert_not_called()
