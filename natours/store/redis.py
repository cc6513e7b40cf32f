"""Shared redis connection pool used by the redis rate-limit store."""

from __future__ import annotations

import asyncio
import re

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()

_REDIS_URL_PASSWORD = re.compile(r"(rediss?://[^:]*:)[^@]+(@)")

_pool: aioredis.Redis | None = None
_MAX_RETRIES = 5
_BASE_DELAY = 0.5


def _redact_url(url: str) -> str:
    return _REDIS_URL_PASSWORD.sub(r"\1***\2", url)


async def init_redis(url: str, pool_size: int = 10) -> aioredis.Redis | None:
    """Connect with exponential backoff; leaves the pool unset if redis never answers."""
    global _pool
    for attempt in range(1, _MAX_RETRIES + 1):
        client = aioredis.from_url(
            url,
            max_connections=pool_size,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        try:
            await client.ping()
        except (aioredis.ConnectionError, OSError) as exc:
            await client.aclose()
            if attempt == _MAX_RETRIES:
                logger.error("redis_connect_failed", url=_redact_url(url), error=str(exc))
                _pool = None
                return None
            delay = _BASE_DELAY * (2 ** (attempt - 1))
            logger.warning("redis_connect_retry", attempt=attempt, delay=delay, error=str(exc))
            await asyncio.sleep(delay)
            continue
        _pool = client
        logger.info("redis_connected", url=_redact_url(url), pool_size=pool_size)
        return _pool
    return None


def get_redis() -> aioredis.Redis | None:
    """Return the current pool, or None when redis is not initialised."""
    return _pool


async def close_redis() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
        logger.info("redis_closed")
