"""Fixed-window rate limiter middleware."""

from __future__ import annotations

import math
import time
from typing import Callable

import structlog
from starlette.requests import Request
from starlette.responses import Response

from natours.errors import AppError
from natours.middleware.pipeline import Middleware, RequestContext
from natours.store.rate_limit import RateLimitStore, StoreUnavailable

logger = structlog.get_logger()

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again in one hour!"

_KEY_PREFIX = "ip"


class RateLimiter(Middleware):
    """Admit at most ``max_requests`` per client identity per window.

    - The (max + 1)-th request in a window raises a 429 AppError with Retry-After
    - Allowed responses carry X-RateLimit-Limit/Remaining/Reset
    - Fail-closed: an unreachable store raises a 503 AppError
    - Scope (e.g. API paths only) is set by the pipeline prefix
    """

    def __init__(
        self,
        store: RateLimitStore,
        max_requests: int = 100,
        window_seconds: int = 60 * 60,
        message: str = RATE_LIMIT_MESSAGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._max = max_requests
        self._window = window_seconds
        self._message = message
        self._clock = clock

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        key = f"{_KEY_PREFIX}:{context.client_ip or 'unknown'}"
        try:
            hits, reset_at = await self._store.increment(key, self._window)
        except StoreUnavailable as exc:
            logger.error("rate_limiter_store_error", error=str(exc), action="fail_closed")
            raise AppError("Service temporarily unavailable", 503) from exc

        context.extra["rate_limit_max"] = self._max
        context.extra["rate_limit_remaining"] = max(0, self._max - hits)
        context.extra["rate_limit_reset"] = math.ceil(reset_at)

        if hits <= self._max:
            return None

        logger.warning(
            "rate_limit_exceeded",
            client_ip=context.client_ip,
            hits=hits,
            max=self._max,
            path=context.path,
        )
        retry_after = max(1, math.ceil(reset_at - self._clock()))
        raise AppError(self._message, 429, headers={"Retry-After": str(retry_after)})

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        """Inject X-RateLimit-* headers."""
        if "rate_limit_max" in context.extra:
            response.headers["X-RateLimit-Limit"] = str(context.extra["rate_limit_max"])
            response.headers["X-RateLimit-Remaining"] = str(context.extra["rate_limit_remaining"])
            response.headers["X-RateLimit-Reset"] = str(context.extra["rate_limit_reset"])
        return response