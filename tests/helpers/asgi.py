"""Helpers for building Starlette requests and pipeline contexts in unit tests."""

from __future__ import annotations

from starlette.requests import Request

from natours.middleware.pipeline import RequestContext


def make_request(
    method: str = "GET",
    path: str = "/",
    query_string: str = "",
    headers: dict[str, str] | None = None,
    body: bytes = b"",
    client_host: str = "127.0.0.1",
    chunks: list[bytes] | None = None,
    delivered: list[bytes] | None = None,
) -> Request:
    """Build a minimal Starlette Request.

    The body arrives in one message unless ``chunks`` is given, in which case
    each chunk is its own ``http.request`` message. Chunks handed to the app
    are appended to ``delivered`` when given.
    """
    pending = list(chunks) if chunks is not None else [body]

    async def receive():
        if not pending:
            return {"type": "http.disconnect"}
        chunk = pending.pop(0)
        if delivered is not None:
            delivered.append(chunk)
        return {"type": "http.request", "body": chunk, "more_body": bool(pending)}

    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query_string.encode("latin-1"),
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "root_path": "",
        "scheme": "http",
        "server": ("localhost", 3000),
        "client": (client_host, 12345),
    }
    return Request(scope, receive)


def make_context(request: Request, trust_proxy: bool = True) -> RequestContext:
    context = RequestContext.from_request(request, trust_proxy=trust_proxy)
    context.load_query()
    return context
