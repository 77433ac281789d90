"""Paysync: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other paysync imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from paysync.core.logging import configure_structlog
from paysync.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse

from paysync.api.routes import api_router
from paysync.core.config import Settings, get_settings
from paysync.core.locking import EntityLock, LocalEntityLock, RedisEntityLock
from paysync.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from paysync.metrics.cloudwatch import CloudWatchMetrics
from paysync.middleware.correlation import (
    setup_correlation_middleware,
    get_correlation_id,
)
from paysync.storage import InMemoryStateStore, SqlStateStore, StateStore
from paysync.webhooks.pipeline import build_pipeline

logger = structlog.get_logger(__name__)


async def build_store(settings: Settings) -> StateStore:
    if settings.storage_backend == "memory":
        logger.warning("state_store_in_memory", reason="storage_backend=memory")
        return InMemoryStateStore()

    await init_db(settings.database_url, echo=False)
    logger.info("db_initialized")
    return SqlStateStore(get_session_factory())


async def build_lock(settings: Settings) -> EntityLock:
    if not settings.redis_url:
        logger.info("entity_lock_initialized", type="LocalEntityLock")
        return LocalEntityLock(wait_timeout=settings.lock_wait_timeout_seconds)

    await init_redis(settings.redis_url, timeout=settings.storage_timeout_seconds)
    logger.info("redis_initialized")
    return RedisEntityLock(
        get_redis(),
        ttl=settings.lock_ttl_seconds,
        wait_timeout=settings.lock_wait_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Graceful shutdown flag. SIGTERM handler flips this so ALB health check returns 503
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    try:
        signal.signal(signal.SIGTERM, handle_sigterm)
    except ValueError:
        # Not the main thread (e.g. under TestClient)
        logger.debug("sigterm_handler_skipped")

    # Startup
    settings: Settings = app.state.settings
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    if not settings.webhook_secret:
        logger.error("webhook_secret_missing", action="all_deliveries_rejected_503")

    store = await build_store(settings)
    lock = await build_lock(settings)
    metrics = CloudWatchMetrics(
        namespace=settings.metrics_namespace,
        region=settings.aws_region,
        enabled=settings.metrics_enabled,
    )

    app.state.store = store
    app.state.pipeline = build_pipeline(settings, store, lock, metrics)

    unrouted = app.state.pipeline.router.unrouted()
    if unrouted:
        logger.warning("event_types_without_handler", event_types=[t.value for t in unrouted])
    logger.info("pipeline_initialized", event_types=sorted(app.state.pipeline.router.tags))

    yield

    # Shutdown
    logger.info("shutdown_begin")
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    # Return generic 500 (no internal details leaked)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Settings are resolved once here and handed to every component through
    ``app.state``; nothing downstream reads the environment.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Payment-provider webhook ingestion and subscription state",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    # Exception handlers
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    # Include API routes
    app.include_router(api_router, prefix="/api")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "paysync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
