"""Health check routes — liveness, readiness, and general health."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rafflio.core.database import ping

router = APIRouter()


@router.get("/health")
def health_check(request: Request) -> dict[str, Any]:
    state = request.app.state
    settings = getattr(state, "settings", None)
    gateway = getattr(state, "gateway", None)
    return {
        "status": "ok",
        "environment": settings.app_env if settings else "unknown",
        "database": "connected" if getattr(state, "db_pool", None) is not None else "disconnected",
        "payments": "stub" if getattr(gateway, "stub_mode", True) else "mercadopago",
    }


@router.get("/health/live")
def liveness_probe() -> dict[str, Any]:
    """Liveness probe: the process is up and answering."""
    return {"status": "alive"}


@router.get("/health/ready")
def readiness_probe(request: Request) -> dict[str, Any]:
    """Readiness probe: database round trip and payment gateway mode.

    A missing pool or a gateway without credentials only makes the service
    unready in production.
    """
    checks: dict[str, Any] = {}
    ready = True
    settings = getattr(request.app.state, "settings", None)
    production = bool(settings and settings.is_production)

    db_pool = getattr(request.app.state, "db_pool", None)
    if db_pool is not None:
        try:
            checks["database"] = {"status": "ok", "response_time_ms": ping(db_pool)}
        except Exception as exc:
            checks["database"] = {"status": "error", "detail": str(exc)}
            ready = False
    else:
        checks["database"] = {"status": "not_configured"}
        if production:
            ready = False

    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None or gateway.stub_mode:
        checks["payments"] = {"status": "stub"}
        if production:
            ready = False
    else:
        checks["payments"] = {"status": "ok"}

    body = {"status": "ready" if ready else "not_ready", "checks": checks}
    if not ready:
        return JSONResponse(content=body, status_code=503)
    return body
