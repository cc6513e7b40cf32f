"""Keyed hit counters for the rate limiter.

Both stores implement fixed windows: the first hit for a key opens a window
of ``window_seconds``; hits are counted until the window expires, after
which the next hit opens a new window with a count of one.
"""

from __future__ import annotations

import abc
import asyncio
import time
from typing import Callable

import structlog

from natours.store import redis as redis_store

logger = structlog.get_logger()

# Atomic Lua script: increment, start the window on first hit, report the
# remaining window in milliseconds. Returns [hits, ttl_ms].
_INCREMENT_LUA = """
local hits = redis.call('INCR', KEYS[1])
if hits == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {hits, ttl}
"""


class StoreUnavailable(Exception):
    """The counter backend cannot be reached."""


class RateLimitStore(abc.ABC):
    @abc.abstractmethod
    async def increment(self, key: str, window_seconds: float) -> tuple[int, float]:
        """Count one hit for ``key``; return (hits in current window, window reset epoch)."""

    @abc.abstractmethod
    async def reset(self, key: str) -> None:
        """Forget all hits for ``key``."""


class MemoryStore(RateLimitStore):
    """Process-local store guarded by an asyncio lock.

    Expired windows are swept every ``sweep_every`` increments so the map
    stays bounded by the number of recently active clients.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_every: int = 1000) -> None:
        self._clock = clock
        self._sweep_every = sweep_every
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._since_sweep = 0

    async def increment(self, key: str, window_seconds: float) -> tuple[int, float]:
        async with self._lock:
            now = self._clock()
            hits, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                hits, reset_at = 0, now + window_seconds
            hits += 1
            self._windows[key] = (hits, reset_at)

            self._since_sweep += 1
            if self._since_sweep >= self._sweep_every:
                self._sweep(now)
            return hits, reset_at

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]
        self._since_sweep = 0
        if expired:
            logger.debug("rate_limit_windows_swept", expired=len(expired), active=len(self._windows))

    def __len__(self) -> int:
        return len(self._windows)


class RedisStore(RateLimitStore):
    """Shared store for multi-process deployments, backed by redis INCR + PEXPIRE."""

    def __init__(self, key_prefix: str = "natours:ratelimit", clock: Callable[[], float] = time.time) -> None:
        self._key_prefix = key_prefix
        self._clock = clock

    def _redis(self):
        client = redis_store.get_redis()
        if client is None:
            raise StoreUnavailable("redis is not initialised")
        return client

    async def increment(self, key: str, window_seconds: float) -> tuple[int, float]:
        client = self._redis()
        window_ms = int(window_seconds * 1000)
        try:
            result = await client.eval(_INCREMENT_LUA, 1, f"{self._key_prefix}:{key}", str(window_ms))
        except Exception as exc:
            raise StoreUnavailable(str(exc)) from exc
        hits, ttl_ms = int(result[0]), int(result[1])
        return hits, self._clock() + ttl_ms / 1000

    async def reset(self, key: str) -> None:
        client = self._redis()
        try:
            await client.delete(f"{self._key_prefix}:{key}")
        except Exception as exc:
            raise StoreUnavailable(str(exc)) from exc
