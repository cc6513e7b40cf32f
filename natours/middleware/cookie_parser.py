"""Cookie parsing middleware."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Any
from urllib.parse import unquote

from starlette.requests import Request, cookie_parser
from starlette.responses import Response

from natours.middleware.pipeline import Middleware, RequestContext

_JSON_PREFIX = "j:"
_SIGNED_PREFIX = "s:"


def sign_value(value: str, secret: str) -> str:
    """Sign ``value`` as ``value.<base64 hmac-sha256>`` (padding stripped)."""
    mac = hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).digest()
    return f"{value}.{base64.b64encode(mac).decode().rstrip('=')}"


def unsign_value(signed: str, secret: str) -> str | bool:
    """Return the original value, or False when the signature does not match."""
    value, dot, _ = signed.rpartition(".")
    if not dot:
        return False
    return value if hmac.compare_digest(sign_value(value, secret), signed) else False


def decode_json_cookie(value: Any) -> Any:
    """Decode ``j:``-prefixed values; anything else (or invalid JSON) is returned as-is."""
    if not isinstance(value, str) or not value.startswith(_JSON_PREFIX):
        return value
    try:
        return json.loads(value[len(_JSON_PREFIX):])
    except ValueError:
        return value


class CookieParser(Middleware):
    """Parse the Cookie header into ``context.cookies``, percent-decoding values.

    With a secret, ``s:``-prefixed cookies are verified and moved to
    ``context.signed_cookies``; tampered ones map to False.
    """

    def __init__(self, secret: str = "") -> None:
        self._secret = secret

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        header = request.headers.get("cookie")
        if not header:
            return None
        cookies: dict[str, Any] = {name: unquote(value) for name, value in cookie_parser(header).items()}

        if self._secret:
            signed = {}
            for name, value in list(cookies.items()):
                if value.startswith(_SIGNED_PREFIX):
                    signed[name] = unsign_value(value[len(_SIGNED_PREFIX):], self._secret)
                    del cookies[name]
            context.signed_cookies = {name: decode_json_cookie(v) for name, v in signed.items()}

        context.cookies = {name: decode_json_cookie(v) for name, v in cookies.items()}
        return None
