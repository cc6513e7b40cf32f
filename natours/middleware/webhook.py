"""Raw-body passthrough for the payment webhook.

The webhook signature is computed over the exact request bytes, so this
stage must be registered before BodyParser: it reads the body untouched,
hands it to the webhook handler and terminates the pipeline. The same
size cap applies while the body streams in.
"""

from __future__ import annotations

import structlog
from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.body_parser import read_body
from natours.middleware.pipeline import Middleware, RequestContext
from natours.routes.router import Handler, to_response

logger = structlog.get_logger()

_DEFAULT_RAW_LIMIT = 100 * 1024


class WebhookPassthrough(Middleware):
    """Serve ``POST <path>`` with the unparsed body in ``context.raw_body``."""

    def __init__(self, path: str, handler: Handler, limit: int = _DEFAULT_RAW_LIMIT) -> None:
        self._path = path.rstrip("/").lower() or "/"
        self._handler = handler
        self._limit = limit

    def matches(self, context: RequestContext) -> bool:
        return context.method == "POST" and (context.path.rstrip("/").lower() or "/") == self._path

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if not self.matches(context):
            return None
        raw = await read_body(request, self._limit)
        context.raw_body = raw
        logger.debug("webhook_received", path=context.path, size=len(raw))
        return to_response(await self._handler(request, context))
