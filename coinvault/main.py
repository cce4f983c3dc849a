"""
Application entry point.

Creates the FastAPI application and wires together:
- Routers (accounts, admin, realtime, health)
- Error handlers (centralized domain-to-HTTP mapping)
- Security middleware (headers, rate limiting)
- Logging configuration
- The simulation scheduler, started and stopped with the app

No business logic belongs here.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from coinvault.bootstrap import Services, build_services
from coinvault.core.config import Settings, settings as default_settings
from coinvault.interfaces.accounts.admin_router import router as admin_router
from coinvault.interfaces.accounts.router import router as accounts_router
from coinvault.interfaces.health import router as health_router
from coinvault.interfaces.realtime import router as realtime_router
from coinvault.shared.errors.handlers import register_error_handlers
from coinvault.shared.logging import configure_logging
from coinvault.shared.security.headers import SecurityHeadersMiddleware
from coinvault.shared.security.rate_limiting import limiter, rate_limit_exceeded_handler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services on first start and run the scheduler while the app lives."""
    services: Optional[Services] = getattr(app.state, "services", None)
    if services is None:
        services = build_services(app.state.settings)
        app.state.services = services

    if services.settings.scheduler_enabled:
        services.scheduler.start()

    yield

    services.scheduler.stop()
    if services.engine is not None:
        services.engine.dispose()


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to the environment-loaded ones.
        services: Pre-built service graph (tests inject one). When omitted
            the graph is built during startup.

    Returns:
        A fully configured FastAPI application instance.
    """
    if services is not None:
        settings = services.settings
    settings = settings or default_settings
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    # --- Rate Limiting ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # --- Security Middleware ---
    app.add_middleware(SecurityHeadersMiddleware)

    # --- Error Handlers ---
    register_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(accounts_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")
    app.include_router(realtime_router, prefix="/api/v1")

    return app


app = create_app()
