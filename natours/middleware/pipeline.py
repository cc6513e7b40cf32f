"""Ordered middleware chain framework."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from natours.utils.querystring import parse_query

if TYPE_CHECKING:
    from natours.middleware.error_handler import ErrorHandler

logger = structlog.get_logger()


@dataclass
class RequestContext:
    """Mutable per-request record passed through the middleware pipeline.

    Transport fields are filled at arrival; the annotation fields are written
    by the stages that own them (body by BodyParser, cookies by CookieParser,
    params by RouteDispatcher, ...).
    """

    method: str = "GET"
    path: str = "/"
    original_url: str = "/"
    client_ip: str = ""
    request_id: str = ""
    query_string: str = ""
    query: dict[str, Any] = field(default_factory=dict)
    raw_body: bytes | None = None
    body: Any = field(default_factory=dict)
    cookies: dict[str, Any] = field(default_factory=dict)
    signed_cookies: dict[str, Any] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    requested_at: str = ""
    query_polluted: dict[str, Any] = field(default_factory=dict)
    body_polluted: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = uuid4().hex[:8]

    @classmethod
    def from_request(cls, request: Request, trust_proxy: bool = True) -> RequestContext:
        """Build a fresh context from the transport-level request.

        The query string is kept raw; ``load_query`` parses it once the
        request is inside the pipeline, so parse failures reach the error stage.
        """
        query_string = request.url.query
        path = request.url.path
        return cls(
            method=request.method.upper(),
            path=path,
            original_url=f"{path}?{query_string}" if query_string else path,
            client_ip=client_ip(request, trust_proxy),
            query_string=query_string,
        )

    def load_query(self, parameter_limit: int = 1000) -> None:
        if self.query_string:
            self.query = parse_query(self.query_string, parameter_limit=parameter_limit)


def client_ip(request: Request, trust_proxy: bool = True) -> str:
    """Return the client identity used for rate limiting and logs.

    With trust_proxy the left-most X-Forwarded-For entry wins, which is the
    address the first proxy saw.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def path_has_prefix(path: str, prefix: str | None) -> bool:
    """Segment-boundary, case-insensitive prefix match ("/api" matches "/api/x", not "/apix")."""
    if not prefix or prefix == "/":
        return True
    prefix = prefix.rstrip("/").lower()
    path = path.lower()
    return path == prefix or path.startswith(prefix + "/")


class Middleware(abc.ABC):
    """Base class for a stage in the pipeline."""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abc.abstractmethod
    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        """Process an incoming request.

        Return None to continue the pipeline, a Response to terminate it, or
        raise to hand the request to the terminal error stage.
        """
        ...

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        """Process an outgoing response. Override if needed."""
        return response


class MiddlewarePipeline:
    """Ordered list of stages.

    Request hooks run forward until one returns a Response or raises. Any
    exception is rendered by the error handler, exactly once. Response hooks
    then run in reverse order for every stage whose request hook ran, so
    header stages also decorate error responses.
    """

    def __init__(self, error_handler: ErrorHandler, parameter_limit: int = 1000) -> None:
        self._middleware: list[Middleware] = []
        self._enabled: dict[str, bool] = {}
        self._prefixes: dict[str, str | None] = {}
        self._error_handler = error_handler
        self._parameter_limit = parameter_limit

    def add(self, middleware: Middleware, enabled: bool = True, prefix: str | None = None) -> None:
        """Add a stage to the end of the pipeline, optionally scoped to a path prefix."""
        if middleware.name in self._enabled:
            raise ValueError(f"Duplicate middleware name: {middleware.name}")
        self._middleware.append(middleware)
        self._enabled[middleware.name] = enabled
        self._prefixes[middleware.name] = prefix
        logger.debug("middleware_registered", name=middleware.name, enabled=enabled, prefix=prefix)

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Enable or disable a stage by name."""
        if name in self._enabled:
            self._enabled[name] = enabled

    @property
    def names(self) -> list[str]:
        return [mw.name for mw in self._middleware]

    def is_enabled(self, name: str) -> bool:
        return self._enabled.get(name, False)

    def get_middleware(self, cls: type[Middleware]) -> Middleware | None:
        for mw in self._middleware:
            if isinstance(mw, cls):
                return mw
        return None

    def _applies(self, mw: Middleware, path: str) -> bool:
        if not self._enabled.get(mw.name, True):
            return False
        return path_has_prefix(path, self._prefixes.get(mw.name))

    async def handle(self, request: Request, context: RequestContext) -> Response:
        """Run one request through the pipeline and always return a Response."""
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=context.request_id)
        entered: list[Middleware] = []
        try:
            context.load_query(self._parameter_limit)
            response = await self._run_request(request, context, entered)
        except Exception as exc:
            response = await self._render_error(exc, request, context)
        return await self._run_response(response, context, entered)

    async def _run_request(
        self, request: Request, context: RequestContext, entered: list[Middleware]
    ) -> Response:
        for mw in self._middleware:
            if not self._applies(mw, context.path):
                continue
            entered.append(mw)
            result = await mw.process_request(request, context)
            if isinstance(result, Response):
                logger.debug("middleware_short_circuit", middleware=mw.name)
                return result
        raise RuntimeError("pipeline finished without producing a response")

    async def _render_error(self, exc: Exception, request: Request, context: RequestContext) -> Response:
        try:
            return await self._error_handler.handle(exc, request, context)
        except Exception:
            logger.exception("error_handler_failed", original_error=type(exc).__name__)
            return PlainTextResponse("Internal Server Error", status_code=500)

    async def _run_response(
        self, response: Response, context: RequestContext, entered: list[Middleware]
    ) -> Response:
        """Individual stage exceptions are logged and skipped so the response still goes out."""
        for mw in reversed(entered):
            try:
                response = await mw.process_response(response, context)
            except Exception:
                logger.exception("middleware_response_error", middleware=mw.name)
        return response
