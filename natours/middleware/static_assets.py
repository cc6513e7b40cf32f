"""Static asset middleware: serve files from the public root before any parsing."""

from __future__ import annotations

from pathlib import Path

import structlog
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import Response
from starlette.staticfiles import StaticFiles

from natours.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()

_SERVABLE_METHODS = frozenset({"GET", "HEAD"})


class StaticAssets(Middleware):
    """Serve a file when the request path resolves to one under ``directory``.

    Misses (unknown files, directories, traversal outside the root, other
    methods) pass through untouched.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._files = StaticFiles(directory=self._directory, check_dir=False)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if context.method not in _SERVABLE_METHODS:
            return None
        try:
            response = await self._files.get_response(self._files.get_path(request.scope), request.scope)
        except HTTPException:
            return None
        logger.debug("static_asset_served", path=context.path, status=response.status_code)
        return response
