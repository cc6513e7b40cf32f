"""Response compression middleware."""

from __future__ import annotations

import gzip
import re
import zlib

from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.pipeline import Middleware, RequestContext

_COMPRESSIBLE_RE = re.compile(
    r"^(text/.*|application/(json|javascript|xml|x-www-form-urlencoded|.*\+json|.*\+xml)|image/svg\+xml)$",
    re.IGNORECASE,
)

_SUPPORTED = ("gzip", "deflate")
_SKIP_STATUS = frozenset({204, 304})


def negotiate_encoding(accept_encoding: str) -> str | None:
    """Pick gzip or deflate from an Accept-Encoding header, honouring q-values.

    Ties go to gzip; ``*`` stands for gzip.
    """
    best: str | None = None
    best_q = 0.0
    for item in accept_encoding.split(","):
        coding, *params = [p.strip() for p in item.split(";")]
        coding = coding.lower()
        if coding == "*":
            coding = "gzip"
        if coding not in _SUPPORTED:
            continue
        q = 1.0
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = 0.0
        if q <= 0:
            continue
        if q > best_q or (q == best_q and coding == "gzip"):
            best, best_q = coding, q
    return best


class Compression(Middleware):
    """Compress buffered response bodies of compressible types above ``threshold`` bytes.

    Streaming and file responses are left alone.
    """

    def __init__(self, threshold: int = 1024, level: int = 6) -> None:
        self._threshold = threshold
        self._level = level

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        context.extra["accept_encoding"] = request.headers.get("accept-encoding", "")
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        body = getattr(response, "body", None)
        if not isinstance(body, (bytes, bytearray)):
            return response
        if context.method == "HEAD" or response.status_code in _SKIP_STATUS:
            return response

        media_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not _COMPRESSIBLE_RE.match(media_type):
            return response
        response.headers.add_vary_header("Accept-Encoding")

        if "content-encoding" in response.headers:
            return response
        if "no-transform" in response.headers.get("cache-control", "").lower():
            return response
        if len(body) < self._threshold:
            return response

        encoding = negotiate_encoding(context.extra.get("accept_encoding", ""))
        if encoding is None:
            return response

        if encoding == "gzip":
            compressed = gzip.compress(bytes(body), compresslevel=self._level)
        else:
            compressed = zlib.compress(bytes(body), self._level)
        response.body = compressed
        response.headers["content-encoding"] = encoding
        response.headers["content-length"] = str(len(compressed))
        return response
