"""JSON and url-encoded body parsing middleware."""

from __future__ import annotations

import json
from typing import Any

import structlog
from starlette.requests import Request
from starlette.responses import Response

from natours.errors import AppError
from natours.middleware.pipeline import Middleware, RequestContext
from natours.utils.querystring import count_parameters, parse_query

logger = structlog.get_logger()

JSON_TYPE = "application/json"
FORM_TYPE = "application/x-www-form-urlencoded"

_JSON_CHARSETS = frozenset({"utf-8", "utf-16", "utf-16le", "utf-16be", "utf-32", "utf-32le", "utf-32be"})

# Deepest object/array nesting accepted in a JSON body
MAX_JSON_DEPTH = 32


def parse_content_type(header: str) -> tuple[str, dict[str, str]]:
    """Split ``text/html; charset=UTF-8`` into ("text/html", {"charset": "utf-8"})."""
    media_type, *raw_params = header.split(";")
    params = {}
    for raw in raw_params:
        key, _, value = raw.partition("=")
        if key.strip():
            params[key.strip().lower()] = value.strip().strip('"').lower()
    return media_type.strip().lower(), params


async def read_body(request: Request, limit: int) -> bytes:
    """Read the request body, failing with 413 as soon as it passes ``limit`` bytes.

    A declared Content-Length over the limit is rejected before reading.
    Chunked bodies are counted while they stream in, so at most one chunk
    past the limit is ever held.
    """
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            declared = int(content_length)
        except (ValueError, OverflowError):
            raise AppError("Invalid Content-Length", 400)
        if declared > limit:
            logger.info("request_body_too_large", declared=declared, limit=limit)
            raise AppError("request entity too large", 413)

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        # Content-Length may be missing or wrong
        if received > limit:
            logger.info("request_body_too_large", received=received, limit=limit)
            raise AppError("request entity too large", 413)
        chunks.append(chunk)
    return b"".join(chunks)


def _nesting_exceeds(value: Any, limit: int) -> bool:
    stack = [(value, 1)]
    while stack:
        item, depth = stack.pop()
        if isinstance(item, dict):
            children = item.values()
        elif isinstance(item, list):
            children = item
        else:
            continue
        if depth > limit:
            return True
        stack.extend((child, depth + 1) for child in children)
    return False


def _reject_constant(name: str) -> None:
    raise AppError(f"Invalid JSON body: {name} is not valid JSON", 400)


class BodyParser(Middleware):
    """Parse JSON and url-encoded bodies into ``context.body``.

    - Bodies over ``limit`` bytes fail with 413 before any parsing
    - Malformed JSON, JSON whose top level is not an object/array, NaN or Infinity
      constants, and nesting deeper than ``max_depth`` fail with 400
    - Unsupported charsets fail with 415
    - Other content types leave ``context.body`` as an empty dict
    """

    def __init__(
        self,
        limit: int = 10 * 1024,
        parameter_limit: int = 1000,
        max_depth: int = MAX_JSON_DEPTH,
    ) -> None:
        self._limit = limit
        self._parameter_limit = parameter_limit
        self._max_depth = max_depth

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        media_type, params = parse_content_type(request.headers.get("content-type", ""))
        if media_type not in (JSON_TYPE, FORM_TYPE):
            return None

        raw = await read_body(request, self._limit)
        context.raw_body = raw
        if not raw:
            return None

        charset = params.get("charset", "utf-8")
        if media_type == JSON_TYPE:
            context.body = self._parse_json(raw, charset)
        else:
            context.body = self._parse_form(raw, charset)
        return None

    def _parse_json(self, raw: bytes, charset: str):
        if charset not in _JSON_CHARSETS:
            raise AppError(f'unsupported charset "{charset.upper()}"', 415)
        try:
            text = raw.decode(charset)
        except UnicodeDecodeError as exc:
            raise AppError("Invalid JSON body: could not decode request body", 400) from exc
        if not text.strip():
            return {}
        try:
            parsed = json.loads(text, parse_constant=_reject_constant)
        except json.JSONDecodeError as exc:
            raise AppError(f"Invalid JSON body: {exc.msg} at position {exc.pos}", 400) from exc
        except RecursionError as exc:
            raise AppError("Invalid JSON body: nesting too deep", 400) from exc
        if not isinstance(parsed, (dict, list)):
            raise AppError("Invalid JSON body: top-level value must be an object or array", 400)
        if _nesting_exceeds(parsed, self._max_depth):
            logger.info("request_body_too_deep", max_depth=self._max_depth)
            raise AppError("Invalid JSON body: nesting too deep", 400)
        return parsed

    def _parse_form(self, raw: bytes, charset: str):
        if charset != "utf-8":
            raise AppError(f'unsupported charset "{charset.upper()}"', 415)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AppError("Invalid form body: could not decode request body", 400) from exc
        if count_parameters(text) > self._parameter_limit:
            raise AppError("too many parameters", 413)
        return parse_query(text, parameter_limit=self._parameter_limit)
