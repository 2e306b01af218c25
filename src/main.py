"""KPI Trigger Automation API - FastAPI application entry point.

This module creates and configures the FastAPI application with:
- CORS middleware for frontend access
- Health check endpoint
- API router mounting
- Startup warm-up of the active KPI configuration (seeds defaults on an empty database)
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from src.config import settings
from src.services.configuration_store import ConfigurationStore
from src.services.errors import ConfigurationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan events.

    On startup the active KPI configuration is loaded once so the first
    submission does not pay for seeding. A failure is logged and startup
    continues; the configuration is loaded again on first use.

    Args:
        app: FastAPI application instance.

    Yields:
        None: After startup tasks complete.
    """
    try:
        active = await ConfigurationStore().get_active()
        logger.info("Active KPI configuration: version %d", active.version)
    except (SQLAlchemyError, ConfigurationError) as e:
        logger.error("Loading KPI configuration failed: %s", e)

    yield

    logger.info("Application shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance with middleware and routes.

    Example:
        >>> app = create_app()
        >>> # Run with: uvicorn src.main:app --reload
    """
    app = FastAPI(
        lifespan=lifespan,
        title=settings.APP_TITLE,
        version=settings.APP_VERSION,
        description="KPI scoring and trigger automation for trainings, audits, notifications and email.",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Security: Use explicit methods/headers instead of wildcards
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["content-type", "authorization", "accept"],
    )

    _register_routes(app)

    return app


def _register_routes(app: FastAPI) -> None:
    """Register API routes on the application.

    Args:
        app: FastAPI application instance.
    """
    from src.audits.router import router as audits_router
    from src.configuration.router import router as configuration_router
    from src.email_logs.router import router as email_logs_router
    from src.kpi.router import router as kpi_router
    from src.lifecycle.router import router as lifecycle_router
    from src.notifications.router import router as notifications_router
    from src.training.router import router as training_router
    from src.users.router import router as users_router

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Check API health status.

        Returns:
            dict: Health status with API version.
        """
        return {"status": "healthy", "version": settings.APP_VERSION}

    app.include_router(kpi_router, prefix="/api")
    app.include_router(configuration_router, prefix="/api")
    app.include_router(training_router, prefix="/api")
    app.include_router(audits_router, prefix="/api")
    app.include_router(notifications_router, prefix="/api")
    app.include_router(email_logs_router, prefix="/api")
    app.include_router(lifecycle_router, prefix="/api")
    app.include_router(users_router, prefix="/api")


app = create_app()
