"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_identity
from core.security.tokens import TokenPayload
from infrastructure.config import get_settings
from infrastructure.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


async def _ping_redis(timeout: float) -> None:
    client = aioredis.from_url(settings.redis_url)
    try:
        await asyncio.wait_for(client.ping(), timeout=timeout)
    finally:
        await client.aclose()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """Health check with database connectivity."""
    try:
        result = await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        result.scalar()
        db_status = "connected"
    except TimeoutError:
        logger.error("Health check DB timeout")
        db_status = "error: database timeout"
    except SQLAlchemyError as e:
        logger.error("Health check DB error: %s", str(e))
        db_status = "error: database check failed"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "database": db_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/redis")
async def health_redis():
    """Check Redis (rate limiter storage) connectivity."""
    if not settings.redis_url:
        return {"status": "disabled", "service": "redis"}
    try:
        await _ping_redis(timeout=3.0)
        return {"status": "healthy", "service": "redis"}
    except TimeoutError:
        raise HTTPException(status_code=503, detail="Redis timeout")
    except (RedisError, OSError) as e:
        raise HTTPException(status_code=503, detail=f"Redis unavailable: {str(e)}")


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness probe. The database is required; Redis is reported but optional."""
    db_ok = False
    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        db_ok = True
    except (TimeoutError, SQLAlchemyError) as e:
        logger.warning("Readiness DB check failed: %s", e)

    redis_ok = False
    if settings.redis_url:
        try:
            await _ping_redis(timeout=2.0)
            redis_ok = True
        except (TimeoutError, RedisError, OSError) as e:
            logger.warning("Readiness Redis check failed: %s", e)

    return {
        "ready": db_ok,
        "database": "ok" if db_ok else "unavailable",
        "redis": "ok" if redis_ok else "degraded",
    }


@router.get("/health/live")
async def liveness_check():
    """Liveness probe."""
    return {"alive": True}


@router.get("/health/services")
async def services_check(identity: TokenPayload = Depends(get_current_identity)):
    """Report whether the billing and AI providers are configured."""
    from adapters.ai.coach_adapter import coach_ai_service

    services = {
        "stripe": {
            "configured": bool(settings.stripe_secret_key and settings.stripe_webhook_secret),
            "prices_configured": sum(1 for v in settings.stripe_price_ids.values() if v),
        },
        "anthropic": {
            "configured": coach_ai_service._client is not None,
            "model": settings.anthropic_model,
        },
    }

    all_configured = all(s["configured"] for s in services.values())

    return {
        "status": "healthy" if all_configured else "degraded",
        "services": services,
        "timestamp": datetime.now(UTC).isoformat(),
    }
