"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers and lifespan
events around one ``ConductorService``. The lifespan starts the service
(static jobs, optional ticker) and stops it on shutdown.

Tags:
    conductor, api, app-factory, FastAPI
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from conductor.api.middleware.auth import AuthMiddleware
from conductor.api.middleware.errors import conductor_error_handler, unhandled_exception_handler
from conductor.api.routers import cron, health, workflows
from conductor.core.errors import ConductorError
from conductor.core.logging import get_logger
from conductor.core.settings import ConductorSettings, get_settings
from conductor.service import ConductorService

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: start/stop the orchestration service."""
    service: ConductorService = app.state.service
    logger.info("api.starting", version=app.version)
    service.start()
    if not service.settings.cron_secret:
        logger.warning("api.cron_trigger_disabled", reason="no cron secret configured")
    try:
        yield
    finally:
        service.stop()
        logger.info("api.stopped")


def create_app(
    *,
    service: ConductorService | None = None,
    settings: ConductorSettings | None = None,
) -> FastAPI:
    """Build a fully-configured FastAPI application.

    Parameters
    ----------
    service : ConductorService | None
        Pre-built service (tests pass one with a mock transport). Built from
        ``settings`` when omitted.
    settings : ConductorSettings | None
        Override settings. Defaults to the service's settings, then to the
        cached :func:`get_settings`.
    """
    if service is None:
        service = ConductorService.from_settings(settings or get_settings())
    settings = service.settings

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    app.state.service = service

    # ── Middleware (outermost → innermost) ────────────────────────────
    app.add_middleware(AuthMiddleware, api_key=settings.api_key)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(ConductorError, conductor_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    prefix = settings.api_prefix
    app.include_router(health.router, tags=["health"])
    # cron before workflows so /workflows/cron never matches /workflows/{job_id}
    app.include_router(cron.router, prefix=prefix, tags=["triggers"])
    app.include_router(workflows.router, prefix=prefix, tags=["workflows"])

    @app.get("/metrics", tags=["observability"], response_class=PlainTextResponse)
    def metrics_endpoint() -> PlainTextResponse:
        """Export Prometheus-compatible metrics."""
        return PlainTextResponse(
            content=service.monitor.export_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app
