"""HTTP parameter pollution guard."""

from __future__ import annotations

from typing import Any, Iterable, Literal

import structlog
from starlette.requests import Request
from starlette.responses import Response

from natours.middleware.body_parser import FORM_TYPE, parse_content_type
from natours.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()


class ParameterPollutionGuard(Middleware):
    """Collapse repeated top-level parameters to a single value.

    Keys in ``whitelist`` may repeat. Collapsed originals are kept in
    ``context.query_polluted`` / ``context.body_polluted``. Bodies are only
    checked when they were url-encoded.
    """

    def __init__(self, whitelist: Iterable[str] = (), keep: Literal["first", "last"] = "last") -> None:
        self._whitelist = frozenset(whitelist)
        self._keep = keep

    def collapse(self, values: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        cleaned: dict[str, Any] = {}
        polluted: dict[str, Any] = {}
        for key, value in values.items():
            if isinstance(value, list) and key not in self._whitelist:
                polluted[key] = value
                if not value:
                    continue
                cleaned[key] = value[-1] if self._keep == "last" else value[0]
            else:
                cleaned[key] = value
        return cleaned, polluted

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        context.query, context.query_polluted = self.collapse(context.query)

        media_type, _ = parse_content_type(request.headers.get("content-type", ""))
        if media_type == FORM_TYPE and isinstance(context.body, dict):
            context.body, context.body_polluted = self.collapse(context.body)

        if context.query_polluted or context.body_polluted:
            logger.info(
                "parameter_pollution_collapsed",
                query_keys=sorted(context.query_polluted),
                body_keys=sorted(context.body_polluted),
            )
        return None
