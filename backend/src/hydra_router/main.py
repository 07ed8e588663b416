"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from hydra_router.adapters.inbound.rest.routers import (
    health_router,
    models_router,
    providers_router,
    sessions_router,
)
from hydra_router.config import Settings, get_settings
from hydra_router.dependencies import Engine, build_engine, get_cached_settings
from hydra_router.shared.errors import register_exception_handlers
from hydra_router.shared.middleware import (
    LoggingMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
)
from hydra_router.shared.observability import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )
    engine: Engine = app.state.engine
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        providers=[p.value for p in engine.pool.providers()],
        default_model=engine.catalog.default.model_id,
    )
    yield
    await engine.aclose()
    logger.info("application_shutdown")


def create_app(settings: Settings | None = None, *, engine: Engine | None = None) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or get_cached_settings()

    app = FastAPI(
        title="Hydra Router",
        description=(
            "Resilient multi-provider generation routing. Streams chat responses "
            "over server-sent events while rotating credentials, cooling down "
            "failing providers and migrating conversations along fallback chains."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Store settings and engine in app state for lifecycle and request access
    app.state.settings = settings
    app.state.engine = engine or build_engine(settings)

    # ── Middleware (last added = outermost) ──────────────────
    cors_origins = settings.cors_origins
    allow_all_origins = "*" in cors_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_all_origins else cors_origins,
        allow_origin_regex=".*" if allow_all_origins else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── REST routers (versioned) ─────────────────────────────
    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(models_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)
    app.include_router(sessions_router, prefix=api_v1)

    return app


def run() -> None:
    """Console entry-point: serve with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.app_host, port=settings.app_port)
