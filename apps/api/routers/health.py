"""
Health and readiness probes.
"""

from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from config import Settings, get_settings
from database import get_db

router = APIRouter()


async def _check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        return f"down: {e}"
    return "up"


async def _check_redis(url: str) -> str:
    client = redis.from_url(url)
    try:
        await client.ping()
    except Exception as e:
        return f"down: {e}"
    finally:
        await client.aclose()
    return "up"


def missing_configuration(config: Settings) -> List[str]:
    """Settings without which uploads or sign-in cannot work."""
    required = {
        "STREAM_ACCOUNT_ID": config.STREAM_ACCOUNT_ID,
        "STREAM_API_TOKEN": config.STREAM_API_TOKEN,
        "GOOGLE_CLIENT_ID": config.GOOGLE_CLIENT_ID,
        "GOOGLE_CLIENT_SECRET": config.GOOGLE_CLIENT_SECRET,
    }
    return [name for name, value in required.items() if not value]


@router.get("/health")
async def health_check(
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """
    Component status. Redis being down only degrades rate limiting to
    in-process counters, but it is still reported.
    """
    database = await _check_database(db)
    cache = await _check_redis(config.REDIS_URL)
    stream_ready = bool(config.STREAM_ACCOUNT_ID and config.STREAM_API_TOKEN)
    healthy = database == "up" and cache == "up"
    return {
        "status": "healthy" if healthy else "degraded",
        "api": "up",
        "database": database,
        "redis": cache,
        "stream": "configured" if stream_ready else "missing",
    }


@router.get("/health/ready")
async def readiness_check(config: Settings = Depends(get_settings)):
    """Kubernetes-style readiness probe."""
    missing = missing_configuration(config)
    if missing:
        return JSONResponse(status_code=503, content={"ready": False, "missing": missing})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
