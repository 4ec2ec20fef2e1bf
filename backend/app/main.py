"""
ContractEar - FastAPI Application

Main entry point for the backend API.
Provides endpoints for audio submission, payment-gated analysis,
Paddle webhooks, profiles and usage.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.settings import Settings, get_settings
from app.infrastructure.exceptions import ContractEarError, UnauthorizedError, redact_secrets
from app.services.container import ServiceContainer, build_container


logger = logging.getLogger(__name__)


async def contractear_error_handler(request: Request, exc: ContractEarError) -> JSONResponse:
    """Map every application error to its status code and stable body."""
    body = exc.to_dict()
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
        body["message"] = redact_secrets(exc.message)
        body["details"] = {}
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Defaults to the cached environment settings
        container: Pre-built services (tests); built in the lifespan otherwise
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown."""
        logger.info(f"ContractEar backend starting in {settings.environment} mode...")

        services = container or build_container(settings)
        app.state.container = services

        if settings.is_sqlite:
            await services.db.create_tables()
            logger.info("SQLite schema ensured")
        else:
            await services.db.ping()
            logger.info("Database connection pool initialized")

        services.start_workers()

        yield

        await services.close()
        logger.info("ContractEar backend shutting down...")

    app = FastAPI(
        title="ContractEar",
        description="Verbal agreement risk analysis for recorded conversations",
        version="1.0.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    if container is not None:
        app.state.container = container

    # CORS configuration from Settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    app.add_exception_handler(ContractEarError, contractear_error_handler)

    # ========================================================================
    # Health Check
    # ========================================================================

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "contractear"}

    # ========================================================================
    # Routers
    # ========================================================================

    from app.api.routes import analyses, checkout, profiles, usage, webhooks

    app.include_router(analyses.router, prefix="/api", tags=["Analyses"])
    app.include_router(checkout.router, prefix="/api", tags=["Checkout"])
    app.include_router(profiles.router, prefix="/api", tags=["Profile"])
    app.include_router(usage.router, prefix="/api", tags=["Usage"])
    app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])

    return app


app = create_app()
