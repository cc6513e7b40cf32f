"""Request sanitizer middleware: operator-key and markup scrubbing.

Both stages transform body, query and params in place and never reject a
request.
"""

from __future__ import annotations

import structlog
from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.pipeline import Middleware, RequestContext
from natours.utils.sanitize import escape_markup, strip_control_chars, strip_operator_keys

logger = structlog.get_logger()

_SANITIZED_FIELDS = ("body", "query", "params")


class OperatorKeySanitizer(Middleware):
    """Drop keys starting with ``$`` or containing ``.`` so they cannot reach a document store query."""

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        removed: list[str] = []
        for field_name in _SANITIZED_FIELDS:
            value = getattr(context, field_name)
            setattr(context, field_name, strip_operator_keys(value, removed, field_name))
        if removed:
            logger.warning(
                "operator_keys_removed",
                keys=[strip_control_chars(k)[:128] for k in removed[:20]],
                count=len(removed),
                path=context.path,
            )
        return None


class MarkupSanitizer(Middleware):
    """Escape ``<`` in every string value to defuse stored/reflected script injection."""

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        for field_name in _SANITIZED_FIELDS:
            setattr(context, field_name, escape_markup(getattr(context, field_name)))
        return None
