"""API middleware: CORS, security headers, rate limiting, request logging."""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from rafflio.core.context import set_correlation_id

logger = logging.getLogger(__name__)

# ── In-memory rate limit store (per-process) ────────────────────────

_rate_buckets: dict[str, list[float]] = defaultdict(list)

RATE_LIMIT_WINDOW = 60  # seconds

# Gateway callbacks and probes are never throttled
RATE_LIMIT_EXEMPT_PATHS = frozenset(
    {"/health", "/health/ready", "/health/live", "/api/payment/webhook"}
)

# Each checkout creates a purchase, a gateway preference and an email
CHECKOUT_PATH = "/api/v1/purchases/checkout"


def _check_rate_limit(key: str, limit: int) -> tuple[bool, int]:
    """Return (allowed, remaining) for a given key and per-minute limit."""
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW
    _rate_buckets[key] = bucket = [t for t in _rate_buckets[key] if t > window_start]
    if len(bucket) >= limit:
        return False, 0
    bucket.append(now)
    return True, limit - len(bucket)


def _get_client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ── Security Headers ───────────────────────────────────────────────

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

HSTS_HEADER = "max-age=31536000; includeSubDomains"


def setup_middleware(app: FastAPI) -> None:
    """Attach all middleware to the FastAPI app."""
    settings = getattr(app.state, "settings", None)
    is_prod = settings.is_production if settings else False

    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_and_logging(  # type: ignore[no-untyped-def]
        request: Request, call_next
    ):
        correlation_id = request.headers.get("x-correlation-id", uuid.uuid4().hex[:12])
        set_correlation_id(correlation_id)

        rate_result = _apply_rate_limit(request, settings)
        if rate_result is not None:
            return rate_result

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{elapsed:.1f}ms"
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value
        if is_prod:
            response.headers["Strict-Transport-Security"] = HSTS_HEADER

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
        )
        return response


def _get_cors_origins(settings: Any) -> list[str]:
    if settings is None:
        return ["*"]
    return list(settings.cors_origin_list)


def _apply_rate_limit(request: Request, settings: Any) -> JSONResponse | None:
    """Tiered per-minute limits: anonymous buyers, staff tokens, admin tokens.

    Checkouts are additionally capped per client address.
    """
    if settings is None or settings.is_testing:
        return None
    if request.url.path in RATE_LIMIT_EXEMPT_PATHS:
        return None

    auth_header = request.headers.get("authorization", "")
    client_key = _get_client_key(request)

    if request.method == "POST" and request.url.path == CHECKOUT_PATH:
        limit = settings.rate_limit_checkout
        allowed, _remaining = _check_rate_limit(f"checkout:{client_key}", limit)
        if not allowed:
            return _too_many_requests(limit)

    if auth_header.startswith("Bearer "):
        from rafflio.core.security import decode_token_safe

        payload = decode_token_safe(auth_header.split(" ", 1)[1])
        if payload and payload.get("role") == "admin":
            limit = settings.rate_limit_admin
            rate_key = f"admin:{payload.get('sub', client_key)}"
        else:
            user_id = payload.get("sub", client_key) if payload else client_key
            limit = settings.rate_limit_user
            rate_key = f"user:{user_id}"
    else:
        limit = settings.rate_limit_anonymous
        rate_key = f"anon:{client_key}"

    allowed, _remaining = _check_rate_limit(rate_key, limit)
    if allowed:
        return None
    return _too_many_requests(limit)


def _too_many_requests(limit: int) -> JSONResponse:
    return rfc7807_error_response(
        429,
        "Too Many Requests",
        f"Rate limit exceeded. Max {limit} requests per minute.",
        headers={
            "Retry-After": str(RATE_LIMIT_WINDOW),
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": "0",
        },
    )


def rfc7807_error_response(
    status: int,
    title: str,
    detail: str,
    type_uri: str = "about:blank",
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build an RFC 7807 Problem Details JSON response."""
    body: dict[str, Any] = {
        "type": type_uri,
        "title": title,
        "status": status,
        "detail": detail,
    }
    return JSONResponse(status_code=status, content=body, headers=headers)
