# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from diviner import __version__
from diviner.api.routes import health, queue, scans, schedules
from diviner.core.exceptions import (
    InvalidCronExpression,
    ProviderError,
    QueueUnavailable,
    RepositoryNotFound,
    TenantInactive,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    from diviner.core.config import get_settings
    from diviner.core.logging import setup_logging
    from diviner.runtime import build_runtime, reset_runtime, set_runtime
    from diviner.storage.database import close_db, init_db

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    db = await init_db(settings.db_path, auto_migrate=settings.auto_migrate)

    runtime = build_runtime(settings, db)
    set_runtime(runtime)

    # Start the scheduler unless explicitly disabled
    if getattr(app.state, "enable_scheduler", True) and settings.scheduler_enabled:
        await runtime.engine.start()

    yield

    await runtime.aclose()
    reset_runtime()
    await close_db()


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidCronExpression)
    async def _invalid_cron(_request: Request, exc: InvalidCronExpression) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(RepositoryNotFound)
    async def _not_found(_request: Request, exc: RepositoryNotFound) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(TenantInactive)
    async def _tenant_inactive(_request: Request, exc: TenantInactive) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(ProviderError)
    async def _provider_error(_request: Request, exc: ProviderError) -> JSONResponse:
        return _error(502, exc)

    @app.exception_handler(QueueUnavailable)
    async def _queue_unavailable(_request: Request, exc: QueueUnavailable) -> JSONResponse:
        return _error(503, exc)


def create_app(*, enable_scheduler: bool = True) -> FastAPI:
    app = FastAPI(
        title="diviner",
        description="Scan scheduling and job dispatch for multi-tenant security scanning",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.enable_scheduler = enable_scheduler

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(queue.router, prefix="/api/v1", tags=["queue"])
    app.include_router(scans.router, prefix="/api/v1", tags=["scans"])
    app.include_router(schedules.router, prefix="/api/v1", tags=["schedules"])
    _register_error_handlers(app)

    return app


def _create_app_from_env() -> FastAPI:
    """Factory wrapper that reads DIVINER_NO_SCHEDULER env var."""
    import os

    enable_scheduler = os.environ.get("DIVINER_NO_SCHEDULER", "") != "1"
    return create_app(enable_scheduler=enable_scheduler)
