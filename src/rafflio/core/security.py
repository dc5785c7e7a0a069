"""Security utilities: password hashing (Argon2id) and JWT access tokens (HS256)."""

from __future__ import annotations

import logging
import time
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

# ── Password Hashing ────────────────────────────────────────────────

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__memory_cost=65536,  # 64 MiB
    argon2__time_cost=3,
    argon2__parallelism=4,
)


def hash_password(plain: str) -> str:
    """Hash a plain-text password with Argon2id."""
    return str(pwd_context.hash(plain))


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plain-text password against an Argon2id hash."""
    try:
        return bool(pwd_context.verify(plain, hashed))
    except (ValueError, TypeError):
        return False


MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def validate_password_complexity(password: str) -> list[str]:
    """Return a list of violation messages (empty = valid)."""
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")
    if not any(c.isalpha() for c in password):
        errors.append("Password must contain at least one letter")
    if not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one digit")
    return errors


# ── JWT ─────────────────────────────────────────────────────────────

_jwt_key: tuple[str, str] | None = None


def _get_jwt_key() -> tuple[str, str]:
    """Get the (secret, algorithm) pair from settings (cached)."""
    global _jwt_key  # noqa: PLW0603
    if _jwt_key is None:
        from rafflio.core.config import get_settings

        settings = get_settings()
        _jwt_key = (settings.jwt_secret_key, settings.jwt_algorithm)
    return _jwt_key


def create_access_token(
    subject: str,
    role: str = "admin",
    expires_minutes: int = 60,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """Create a signed JWT access token."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + (expires_minutes * 60),
    }
    if extra_claims:
        payload.update(extra_claims)
    secret, algorithm = _get_jwt_key()
    return str(jwt.encode(payload, secret, algorithm=algorithm))


def decode_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    secret, algorithm = _get_jwt_key()
    payload: dict[str, Any] = jwt.decode(token, secret, algorithms=[algorithm])
    return payload


def decode_token_safe(token: str) -> dict[str, Any] | None:
    """Decode a JWT token, returning None on any error."""
    try:
        return decode_token(token)
    except JWTError:
        return None
