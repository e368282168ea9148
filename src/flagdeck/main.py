"""
Main FastAPI application entry point for Flagdeck.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flagdeck.db import create_all_tables_async, dispose_engine, get_session_maker
from flagdeck.distribution import CacheRefreshScheduler, DistributionCache
from flagdeck.distribution.router import admin_router, sdk_router
from flagdeck.exceptions import FlagdeckError
from flagdeck.flags.router import router as applications_router
from flagdeck.logging import setup_logging
from flagdeck.settings import settings

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle events."""
    try:
        settings.validate_production_security()
    except ValueError as e:
        logger.critical(
            "security.validation.failed", error=str(e), environment=settings.environment
        )
        raise RuntimeError(str(e)) from e

    logger.info(
        "service.startup.begin",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    await create_all_tables_async()
    logger.info("database.tables.ready")

    cache = DistributionCache.from_settings(get_session_maker())
    app.state.distribution_cache = cache

    if settings.distribution.warm_up_on_startup:
        try:
            loaded = await cache.warm_up()
            logger.info("distribution.warm_up.complete", applications=loaded)
        except Exception as e:
            # Misses still populate lazily.
            logger.error("distribution.warm_up.failed", error=str(e), exc_info=True)

    refresher: CacheRefreshScheduler | None = None
    if settings.distribution.refresh_enabled:
        refresher = CacheRefreshScheduler(
            cache, settings.distribution.refresh_interval_seconds
        )
        await refresher.start()
    app.state.cache_refresher = refresher

    logger.info("service.startup.complete")

    try:
        yield
    finally:
        logger.info("service.shutdown.begin")
        if refresher is not None:
            await refresher.stop()
        cache.clear()
        await dispose_engine()
        logger.info("service.shutdown.complete")


async def flagdeck_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a FlagdeckError with the status code it carries."""
    if not isinstance(exc, FlagdeckError):
        raise exc
    if exc.status_code >= 500:
        logger.error("request.failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "request.unhandled_error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "status_code": 500,
            "context": {},
        },
    )


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="Flagdeck",
        description="Feature flag management with an in-process distribution cache",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    if settings.cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.origins,
            allow_credentials=settings.cors.credentials,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(FlagdeckError, flagdeck_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(applications_router, prefix=API_PREFIX)
    app.include_router(admin_router, prefix=API_PREFIX)
    app.include_router(sdk_router, prefix="/sdk")
    app.include_router(sdk_router, prefix=f"{API_PREFIX}/sdk")

    # Health check endpoint (public - no auth required)
    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}

    logger.info("routers.registered", api_prefix=API_PREFIX)
    return app


# Create the app instance
app = create_application()
