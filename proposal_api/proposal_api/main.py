"""FastAPI application entry-point for the ProposalHQ API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from proposal_api import __version__
from proposal_api.config import APISettings, PlatformEnv, load_api_settings
from proposal_api.dependencies import (
    dispose_engine,
    dispose_identity_client,
    dispose_llm_client,
    init_engine,
    init_identity_client,
    init_llm_client,
)
from proposal_api.errors import register_exception_handlers
from proposal_api.middleware.auth import AuthenticationMiddleware
from proposal_api.middleware.logging import RequestLoggingMiddleware
from proposal_api.middleware.prometheus import PrometheusMiddleware
from proposal_api.routers import billing, health, profile, proposals
from proposal_api.routers import metrics as metrics_router

logger = logging.getLogger(__name__)

# Provider settings; each operation that needs one fails closed when unset.
_PROVIDER_SETTINGS: tuple[str, ...] = (
    "identity_url",
    "identity_public_key",
    "llm_api_key",
    "stripe_secret_key",
    "stripe_webhook_secret",
    "stripe_price_id",
    "site_url",
)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Switch to JSON logging when requested.
    - Initialise the async database engine and, for SQLite or when
      ``auto_create_tables`` is set, create the tables.
    - Build the identity-provider and LLM clients.

    On shutdown the clients are closed and the engine pool disposed.
    """
    settings: APISettings = load_api_settings()

    if settings.structured_logging:
        from proposal_api.middleware.json_formatter import configure_structured_logging

        configure_structured_logging()
        logger.info("Structured JSON logging enabled")

    missing = settings.missing(*_PROVIDER_SETTINGS)
    if missing:
        logger.warning("Unset configuration (%s): %s", settings.platform_env.value, ", ".join(missing))

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info("Database engine initialised (%s)", "local" if is_local else "postgres")

    if is_local or settings.auto_create_tables:
        from proposal_core.state.sqlite_adapter import create_local_tables

        await create_local_tables(engine)

    init_identity_client(settings)
    init_llm_client(settings)
    logger.info("Provider clients initialised (env=%s)", settings.platform_env.value)

    if settings.platform_env == PlatformEnv.PRODUCTION and settings.debug:
        logger.warning("Debug mode is enabled in production")

    yield

    await dispose_llm_client()
    await dispose_identity_client()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="ProposalHQ API",
        description="AI-written client proposals with free/pro plans billed through Stripe.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (innermost first) ----------------------------------------

    app.add_middleware(AuthenticationMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "Accept"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(PrometheusMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(proposals.router, prefix="/api/v1")
    app.include_router(profile.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")

    # Metrics and readiness live outside /api/v1.
    app.include_router(metrics_router.router)
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    register_exception_handlers(app)

    return app


# Module-level application instance used by ``uvicorn proposal_api.main:app``.
app = create_app()


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    import uvicorn

    settings = load_api_settings()
    server = uvicorn.Server(
        uvicorn.Config(
            "proposal_api.main:app",
            host=settings.host,
            port=settings.port,
            reload=settings.debug and settings.platform_env == PlatformEnv.DEV,
            log_level="debug" if settings.debug else "info",
            access_log=False,
        )
    )
    server.run()
