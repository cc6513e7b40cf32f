"""Method + path route tables with ``:param`` segments and nested routers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from starlette.responses import JSONResponse, Response

if TYPE_CHECKING:
    from starlette.requests import Request

    from natours.middleware.pipeline import RequestContext

Handler = Callable[["Request", "RequestContext"], Awaitable[Any]]

Match = tuple[Handler, dict[str, str]]


def compile_path(path: str, end: bool = True) -> re.Pattern:
    """Compile ``/tours/:id`` into a case-insensitive regex with named groups.

    With ``end=False`` the pattern only has to match a leading run of whole
    segments (used for mount prefixes).
    """
    pattern = ""
    for segment in path.strip("/").split("/"):
        if not segment:
            continue
        if segment.startswith(":"):
            pattern += rf"/(?P<{segment[1:]}>[^/]+)"
        else:
            pattern += "/" + re.escape(segment)
    if end:
        return re.compile(f"^{pattern}/?$", re.IGNORECASE)
    return re.compile(f"^{pattern}(?=/|$)", re.IGNORECASE)


def to_response(result: Any) -> Response:
    """Handlers may return a Response or any JSON-serialisable value."""
    if isinstance(result, Response):
        return result
    return JSONResponse(result)


@dataclass
class Route:
    method: str
    path: str
    handler: Handler
    pattern: re.Pattern = field(init=False, repr=False)

    def __post_init__(self):
        self.method = self.method.upper()
        self.pattern = compile_path(self.path)

    def match(self, method: str, path: str) -> dict[str, str] | None:
        # HEAD falls back to GET routes
        if self.method not in (method, "ALL") and not (method == "HEAD" and self.method == "GET"):
            return None
        m = self.pattern.match(path)
        return m.groupdict() if m else None


class SubRouter:
    """A mountable route table.

    Routes are tried in registration order, then nested routers; the first
    match wins. Params captured by a nested router's mount prefix are merged
    into the params of the matched route.
    """

    def __init__(self, name: str = "router") -> None:
        self.name = name
        self._routes: list[Route] = []
        self._children: list[tuple[re.Pattern, SubRouter]] = []

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        self._routes.append(Route(method, path, handler))

    def route(self, method: str, path: str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(method, path, handler)
            return handler

        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("GET", path)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("POST", path)

    def patch(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("PATCH", path)

    def delete(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("DELETE", path)

    def include(self, prefix: str, router: SubRouter) -> None:
        """Mount ``router`` under ``prefix`` (which may contain ``:param`` segments)."""
        self._children.append((compile_path(prefix, end=False), router))

    def match(self, method: str, path: str) -> Match | None:
        path = path or "/"
        for route in self._routes:
            params = route.match(method, path)
            if params is not None:
                return route.handler, params
        for prefix, child in self._children:
            m = prefix.match(path)
            if m is None:
                continue
            found = child.match(method, path[m.end():] or "/")
            if found is not None:
                handler, params = found
                return handler, {**m.groupdict(), **params}
        return None

    def __repr__(self) -> str:
        return f"SubRouter({self.name!r}, routes={len(self._routes)}, children={len(self._children)})"
