"""Redis-backed request quotas, with an in-process fallback when Redis is down."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request
import redis.asyncio as redis

from config import Settings, get_settings


logger = logging.getLogger(__name__)

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _key_fingerprint(request: Request) -> Optional[str]:
    """Short digest of an upload key in the path, so quotas follow the key, not the IP."""
    token = request.path_params.get("key")
    if not token:
        return None
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit, max(int(reset_at - now), 1)


async def _consume_redis_quota(url: str, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
    redis_client = redis.from_url(url, decode_responses=True)
    try:
        current = await redis_client.incr(key)
        if current == 1:
            await redis_client.expire(key, window_seconds)
        ttl = await redis_client.ttl(key)
    finally:
        await redis_client.aclose()
    return current <= limit, ttl if ttl and ttl > 0 else window_seconds


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[..., None]:
    """Return a FastAPI dependency that enforces a quota per client, or per upload key on ``/k/`` routes."""

    async def _dependency(request: Request, config: Settings = Depends(get_settings)):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        subject = _key_fingerprint(request) or _client_identifier(request)
        key = f"clips:rate:{prefix}:{subject}"

        try:
            allowed, retry_after = await _consume_redis_quota(config.REDIS_URL, key, limit, window_seconds)
        except Exception as exc:
            logger.debug("Redis unavailable for rate limiting, using local counters: %s", exc)
            allowed, retry_after = await _consume_local_quota(key, limit, window_seconds)

        if not allowed:
            logger.warning("rate_limited prefix=%s subject=%s", prefix, subject)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
                headers={"Retry-After": str(retry_after)},
            )

    return _dependency
