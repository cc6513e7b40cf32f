"""Checkout webhook handler.

Verifies payment-processor signatures over the raw request bytes before any
event is trusted, then hands the event to callbacks registered per event
type. Signature header format::

    Stripe-Signature: t=<unix ts>,v1=<hex hmac-sha256>[,v1=<hex>...]

where each ``v1`` is HMAC-SHA256(secret, "<ts>." + raw body).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable

import structlog
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from natours.errors import AppError
from natours.middleware.pipeline import RequestContext

logger = structlog.get_logger()

SIGNATURE_HEADER = "stripe-signature"
SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE = 300  # 5 minutes

EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


class WebhookSignatureError(Exception):
    """The signature header is missing, malformed, stale or does not match."""


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    if timestamp is None:
        raise WebhookSignatureError("Unable to extract timestamp and signatures from header")
    if not signatures:
        raise WebhookSignatureError("No signatures found with expected scheme")
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE,
    now: float | None = None,
) -> int:
    """Verify ``header`` against ``payload``; return the signed timestamp.

    Raises WebhookSignatureError on any failure.
    """
    if not header:
        raise WebhookSignatureError("Missing signature header")
    timestamp, signatures = _parse_header(header)
    expected = compute_signature(secret, timestamp, payload)

    matched = False
    for candidate in signatures:
        # No early exit: compare against every candidate
        if hmac.compare_digest(expected, candidate):
            matched = True
    if not matched:
        raise WebhookSignatureError("No signatures found matching the expected signature for payload")

    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Timestamp outside the tolerance zone")
    return timestamp


class CheckoutWebhook:
    """Webhook handler for checkout events; reads ``context.raw_body``."""

    def __init__(self, secret: str, tolerance: int = DEFAULT_TOLERANCE) -> None:
        self._secret = secret
        self._tolerance = tolerance
        self._callbacks: dict[str, list[EventCallback]] = defaultdict(list)

    def on(self, event_type: str) -> Callable[[EventCallback], EventCallback]:
        """Register a callback for ``event_type`` (e.g. ``checkout.session.completed``)."""

        def decorator(callback: EventCallback) -> EventCallback:
            self._callbacks[event_type].append(callback)
            return callback

        return decorator

    async def __call__(self, request: Request, context: RequestContext) -> Response:
        if not self._secret:
            logger.error("webhook_secret_missing", path=context.path)
            raise AppError("Webhook signing secret not configured", 500)

        payload = context.raw_body or b""
        try:
            verify_signature(payload, request.headers.get(SIGNATURE_HEADER, ""), self._secret, self._tolerance)
        except WebhookSignatureError as exc:
            logger.warning("webhook_signature_invalid", reason=str(exc), request_id=context.request_id)
            raise AppError(f"Webhook error: {exc}", 400) from exc

        try:
            event = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as exc:
            raise AppError("Webhook error: invalid payload", 400) from exc
        if not isinstance(event, dict):
            raise AppError("Webhook error: invalid payload", 400)

        event_type = str(event.get("type", ""))
        logger.info("webhook_event_received", event_type=event_type, event_id=event.get("id"))
        for callback in self._callbacks.get(event_type, ()):
            await callback(event)
        return JSONResponse({"received": True})
