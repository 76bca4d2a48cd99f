"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis when used + Stripe when configured)
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from payhooks.config import get_settings
from payhooks.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Readiness check - the idempotency store must be reachable; Redis and
    Stripe are checked only when this deployment uses them.
    """
    settings = get_settings()
    checks = {"database": await _check_database(db)}
    if settings.coordination_backend == "redis":
        checks["redis"] = await _check_redis()
    if settings.stripe_secret_key:
        checks["stripe"] = await _check_stripe()

    all_healthy = all(c["healthy"] for c in checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def _check_database(db: AsyncSession) -> dict:
    try:
        await db.execute(text("SELECT 1"))
        return {"healthy": True}
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    try:
        from payhooks.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_stripe() -> dict:
    from payhooks.services.payments import validate_stripe_config
    result = await validate_stripe_config()
    if result["valid"]:
        return {"healthy": True}
    return {"healthy": False, "error": result["message"]}
