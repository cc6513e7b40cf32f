"""Security headers injection middleware."""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml
from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.csp_builder import build_csp, merge_csp, parse_csp
from natours.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()

_HEADERS_PATH = Path(__file__).parent.parent / "config" / "security_headers.yaml"

_CSP_HEADER = "content-security-policy"

# Headers that reveal the server stack
_STRIP_HEADERS = frozenset({
    "server",
    "x-powered-by",
})

# Cache loaded base headers
_base_headers: dict | None = None


def _load_base_headers() -> dict[str, str]:
    """Load the base header set from YAML, caching after first load."""
    global _base_headers
    if _base_headers is not None:
        return _base_headers
    if not _HEADERS_PATH.exists():
        logger.error("security_headers_file_not_found", path=str(_HEADERS_PATH))
        _base_headers = {}
        return _base_headers
    with open(_HEADERS_PATH) as f:
        loaded = yaml.safe_load(f) or {}
    _base_headers = {str(k).lower(): str(v) for k, v in loaded.items()}
    return _base_headers


def reset_headers_cache() -> None:
    """Reset the base headers cache (for testing)."""
    global _base_headers
    _base_headers = None


def build_security_headers(csp_directives: dict[str, list[str]] | None = None) -> dict[str, str]:
    """Return the full header set with ``csp_directives`` overlaid on the base policy."""
    headers = dict(_load_base_headers())
    base_csp = parse_csp(headers.get(_CSP_HEADER, ""))
    policy = merge_csp(base_csp, csp_directives or {})
    if policy:
        headers[_CSP_HEADER] = build_csp(policy)
    return headers


class SecurityHeaders(Middleware):
    """Attach the configured security headers to every response.

    The header set is computed once at construction. Does not touch the body.
    """

    def __init__(self, csp_directives: dict[str, list[str]] | None = None) -> None:
        self._headers = build_security_headers(csp_directives)

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        for header in _STRIP_HEADERS:
            if header in response.headers:
                del response.headers[header]
        for header_name, header_value in self._headers.items():
            response.headers[header_name] = header_value
        return response
