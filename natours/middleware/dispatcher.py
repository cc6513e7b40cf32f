"""Route dispatch and not-found fallback stages."""

from __future__ import annotations

import structlog
from starlette.requests import Request
from starlette.responses import Response

from natours.errors import AppError
from natours.middleware.pipeline import Middleware, RequestContext
from natours.routes.router import SubRouter, to_response

logger = structlog.get_logger()


class RouteDispatcher(Middleware):
    """Hand the request to the first mounted router with a matching route."""

    def __init__(self, mounts: list[tuple[str, SubRouter]]) -> None:
        self._root = SubRouter("root")
        for prefix, router in mounts:
            self._root.include(prefix, router)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        found = self._root.match(context.method, context.path)
        if found is None:
            return None
        handler, params = found
        context.params.update(params)
        logger.debug("route_matched", handler=getattr(handler, "__name__", repr(handler)), params=params)
        return to_response(await handler(request, context))


class NotFound(Middleware):
    """Terminal fallback: no router claimed the request."""

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        raise AppError(f"Cannot find {context.original_url} on this server", 404)
