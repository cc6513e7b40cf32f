"""Terminal error stage: classify any failure and render the client-visible response.

Handler hierarchy:
    AppError                 -> its own status and message (operational)
    pydantic ValidationError -> 400 "Invalid input data. ..." (operational)
    Starlette HTTPException  -> its status and detail (operational)
    anything else            -> 500, generic message, logged with traceback

API paths get JSON, other paths an HTML error page. Internal details
(type, stack) are only exposed in development.
"""

from __future__ import annotations

import html
import traceback
from typing import Any, Callable, Literal

import structlog
from pydantic import ValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from natours.errors import AppError
from natours.middleware.pipeline import RequestContext, path_has_prefix

logger = structlog.get_logger()

Renderer = Callable[[str, dict[str, Any]], str]
Translator = Callable[[Exception], AppError]

GENERIC_API_MESSAGE = "Something went very wrong!"
GENERIC_PAGE_MESSAGE = "Please try again later."
ERROR_PAGE_TITLE = "Something went wrong!"
ERROR_TEMPLATE = "error"


def _from_validation_error(exc: ValidationError) -> AppError:
    messages = [str(err.get("msg", "")) for err in exc.errors()]
    return AppError(f"Invalid input data. {'. '.join(messages)}", 400)


def _from_http_exception(exc: HTTPException) -> AppError:
    return AppError(str(exc.detail), exc.status_code, headers=dict(exc.headers or {}))


DEFAULT_TRANSLATORS: dict[type[Exception], Translator] = {
    ValidationError: _from_validation_error,
    HTTPException: _from_http_exception,
}


def _default_page(title: str, message: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>Natours | {html.escape(title)}</title></head>"
        f"<body><div class=\"error\"><h2 class=\"error__title\">{html.escape(title)}</h2>"
        f"<div class=\"error__msg\">{html.escape(message)}</div></div></body></html>"
    )


class ErrorHandler:
    """Render one exception per request into a Response."""

    def __init__(
        self,
        environment: Literal["development", "production"] = "production",
        api_prefix: str = "/api",
        renderer: Renderer | None = None,
        translators: dict[type[Exception], Translator] | None = None,
    ) -> None:
        self._development = environment == "development"
        self._api_prefix = api_prefix
        self._renderer = renderer
        self._translators = dict(DEFAULT_TRANSLATORS)
        if translators:
            self._translators.update(translators)

    def classify(self, exc: Exception) -> AppError | None:
        """Return the operational error for ``exc``, or None for a programming fault."""
        if isinstance(exc, AppError):
            return exc
        for exc_type, translate in self._translators.items():
            if isinstance(exc, exc_type):
                return translate(exc)
        return None

    async def handle(self, exc: Exception, request: Request, context: RequestContext) -> Response:
        error = self.classify(exc)
        status_code = error.status_code if error else 500

        if error is None:
            logger.error(
                "unhandled_error",
                error_type=type(exc).__name__,
                path=context.path,
                request_id=context.request_id,
                exc_info=exc,
            )
        elif status_code >= 500:
            logger.error("operational_error", status=status_code, message=error.message, path=context.path)
        else:
            logger.info("client_error", status=status_code, message=error.message, path=context.path)

        if path_has_prefix(context.path, self._api_prefix):
            response = self._api_response(exc, error, status_code)
        else:
            response = self._page_response(exc, error, status_code)

        if error is not None:
            for name, value in error.headers.items():
                response.headers[name] = value
        return response

    def _api_response(self, exc: Exception, error: AppError | None, status_code: int) -> Response:
        status = error.status if error else "error"
        if self._development:
            return JSONResponse(
                status_code=status_code,
                content={
                    "status": status,
                    "error": {
                        "type": type(exc).__name__,
                        "status_code": status_code,
                        "is_operational": error is not None,
                    },
                    "message": error.message if error else str(exc),
                    "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                },
            )
        if error is not None:
            return JSONResponse(status_code=status_code, content={"status": status, "message": error.message})
        return JSONResponse(status_code=500, content={"status": "error", "message": GENERIC_API_MESSAGE})

    def _page_response(self, exc: Exception, error: AppError | None, status_code: int) -> Response:
        if error is not None:
            message = error.message
        elif self._development:
            message = str(exc)
        else:
            message = GENERIC_PAGE_MESSAGE

        values = {"title": ERROR_PAGE_TITLE, "msg": message}
        content = None
        if self._renderer is not None:
            try:
                content = self._renderer(ERROR_TEMPLATE, values)
            except Exception:
                logger.exception("error_page_render_failed", template=ERROR_TEMPLATE)
        if content is None:
            content = _default_page(ERROR_PAGE_TITLE, message)
        return HTMLResponse(content=content, status_code=status_code)
