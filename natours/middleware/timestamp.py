"""Request timestamp annotation."""

from __future__ import annotations

from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.pipeline import Middleware, RequestContext


class RequestTimestamp(Middleware):
    """Record when the request reached the routers, as ISO 8601 UTC."""

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        context.requested_at = datetime.now(timezone.utc).isoformat()
        return None
