import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for load balancer.

    Returns 503 during graceful shutdown so ALB stops routing traffic.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "paysync"},
        )
    return {"status": "healthy", "service": "paysync"}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness check - verifies the state store (and Redis, when configured)."""
    checks = {"storage": False}

    try:
        checks["storage"] = await request.app.state.store.ping()
    except Exception as e:
        logger.error("storage_health_check_failed", error=str(e))

    if request.app.state.settings.redis_url:
        checks["redis"] = False
        try:
            from paysync.db.redis import get_redis

            await get_redis().ping()
            checks["redis"] = True
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))

    all_healthy = all(checks.values())
    status_code = 200 if all_healthy else 503

    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
