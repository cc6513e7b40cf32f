"""Development request logging middleware."""

from __future__ import annotations

import time

import structlog
from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.pipeline import Middleware, RequestContext
from natours.utils.sanitize import strip_control_chars

logger = structlog.get_logger()

_MAX_URL_LENGTH = 2048


class RequestLogger(Middleware):
    """Log method, URL, status, latency and size once the response is known.

    Registered disabled outside the development environment.
    """

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        context.extra["log_start"] = time.perf_counter()
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        start = context.extra.get("log_start")
        duration_ms = round((time.perf_counter() - start) * 1000, 3) if start is not None else None
        logger.info(
            "request_completed",
            method=context.method,
            url=strip_control_chars(context.original_url)[:_MAX_URL_LENGTH],
            status=response.status_code,
            duration_ms=duration_ms,
            content_length=response.headers.get("content-length", "-"),
        )
        return response
