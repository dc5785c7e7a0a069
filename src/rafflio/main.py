"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rafflio.api.middleware import setup_middleware
from rafflio.core.config import Settings
from rafflio.core.database import close_pool, init_pool
from rafflio.core.logging import setup_logging
from rafflio.services.email import EmailService
from rafflio.services.gateways.mercadopago import MercadoPagoGateway
from rafflio.services.notifier import PaymentNotifier

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    if not settings.is_testing:
        setup_logging(level=settings.log_level, log_format=settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting Rafflio API (env=%s)", settings.app_env)
        if not settings.is_testing:
            try:
                app.state.db_pool = await init_pool(settings)
                logger.info("Database pool ready")
            except Exception:
                logger.warning(
                    "Could not connect to Oracle; API will start without DB. "
                    "Run scripts/wait_for_db.py once Oracle is ready."
                )
                app.state.db_pool = None
        yield
        logger.info("Shutting down Rafflio API")
        if not settings.is_testing:
            await close_pool()

    application = FastAPI(
        title="Rafflio API",
        description="Raffle ticket sales with MercadoPago payment reconciliation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.state.settings = settings
    application.state.db_pool = None
    application.state.notifier = PaymentNotifier()
    application.state.gateway = MercadoPagoGateway(
        access_token=settings.mercadopago_access_token or None,
        timeout_seconds=settings.mercadopago_timeout_seconds,
    )
    application.state.email_service = EmailService(
        dev_mode=settings.email_dev_mode,
        base_url=settings.app_base_url,
        sender=settings.email_from,
    )
    if application.state.gateway.stub_mode:
        logger.warning("MERCADOPAGO_ACCESS_TOKEN not set; payment gateway runs in stub mode")

    setup_middleware(application)
    _register_routes(application)
    return application


def _register_routes(app: FastAPI) -> None:
    """Register all API route modules."""
    from rafflio.api.routes.accounts import router as accounts_router
    from rafflio.api.routes.auth import router as auth_router
    from rafflio.api.routes.health import router as health_router
    from rafflio.api.routes.payment_events import router as payment_events_router
    from rafflio.api.routes.payments import router as payments_router
    from rafflio.api.routes.purchases import router as purchases_router
    from rafflio.api.routes.raffles import router as raffles_router
    from rafflio.api.routes.tickets import router as tickets_router
    from rafflio.api.routes.users import router as users_router

    app.include_router(health_router, tags=["health"])
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(raffles_router)
    app.include_router(purchases_router)
    app.include_router(tickets_router)
    app.include_router(payments_router)
    app.include_router(payment_events_router)
    app.include_router(accounts_router)


# Module-level app instance for uvicorn (uvicorn rafflio.main:app)
app = create_app()
