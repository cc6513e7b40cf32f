"""Cross-origin policy middleware."""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.pipeline import Middleware, RequestContext

DEFAULT_ALLOWED_METHODS = "GET,HEAD,PUT,PATCH,POST,DELETE"


class CrossOrigin(Middleware):
    """Permissive CORS.

    - Every response gets Access-Control-Allow-Origin
    - Any OPTIONS request, on any path, is a preflight answered with 204
    - Requested headers are reflected back in Access-Control-Allow-Headers
    """

    def __init__(self, origin: str = "*", methods: str = DEFAULT_ALLOWED_METHODS) -> None:
        self._origin = origin
        self._methods = methods

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if context.method != "OPTIONS":
            return None
        response = Response(status_code=204)
        response.headers["access-control-allow-methods"] = self._methods
        requested = request.headers.get("access-control-request-headers")
        if requested:
            response.headers["access-control-allow-headers"] = requested
            response.headers.add_vary_header("Access-Control-Request-Headers")
        return response

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        response.headers["access-control-allow-origin"] = self._origin
        if self._origin != "*":
            response.headers.add_vary_header("Origin")
        return response
