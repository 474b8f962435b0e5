"""
Redis client shared by every component of one worker.

Only the duplicate filter uses Redis, and only with `dedup_backend=redis`, so
the client is created on first use against the URL registered at wiring time.
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from app.core.config import get_settings

log = structlog.get_logger()

_client: redis.Redis | None = None
_url: str | None = None


def configure_redis(url: str) -> None:
    """Register the URL the next client is created against."""
    global _url
    _url = url


async def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(_url or get_settings().redis_url, decode_responses=True)
    return _client


async def redis_ping() -> bool:
    """Connectivity check for /health. Failures are logged and reported as False."""
    try:
        client = await get_redis()
        return bool(await client.ping())
    except redis.RedisError as exc:
        log.warning("redis.unreachable", error=str(exc))
        return False


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
