"""Leave Lifecycle — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from backend.admin.router import router as admin_router
from backend.common.exceptions import register_exception_handlers
from backend.common.rate_limit import limiter
from backend.common.unit_of_work import unit_of_work
from backend.config import configure_logging, settings
from backend.database import async_session_factory, create_tables
from backend.dependencies import Services, build_services
from backend.jobs.scheduler import build_scheduler
from backend.leave.router import router as leave_router
from backend.notifications.router import router as notifications_router
from backend.reports.router import router as reports_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, seed leave configuration and run the background scheduler."""
    configure_logging()
    services: Services = app.state.services

    if settings.CREATE_TABLES_ON_STARTUP:
        await create_tables()

    if settings.SEED_LEAVE_CONFIG_ON_STARTUP:
        async with unit_of_work(services.session_factory) as db:
            await services.config_store.seed_defaults_if_empty(db)

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler(services.escalation, services.year_end, settings)
        scheduler.start()
        logger.info("Background scheduler started")

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Leave Lifecycle",
        description="Leave entitlement, balance ledger and approval workflow",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )
    app.state.services = services or build_services(async_session_factory, settings)

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
    app.include_router(reports_router, prefix="/api/v1/reports", tags=["reports"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])

    return app


app = create_app()
