"""Natours web application: pipeline assembly and ASGI wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Mapping

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import Response

from natours.config.loader import NatoursSettings, load_settings
from natours.logging_config import setup_logging
from natours.middleware.body_parser import BodyParser
from natours.middleware.compression import Compression
from natours.middleware.cookie_parser import CookieParser
from natours.middleware.cors import CrossOrigin
from natours.middleware.dispatcher import NotFound, RouteDispatcher
from natours.middleware.error_handler import ErrorHandler, Renderer
from natours.middleware.parameter_pollution import ParameterPollutionGuard
from natours.middleware.pipeline import MiddlewarePipeline, RequestContext
from natours.middleware.rate_limiter import RateLimiter
from natours.middleware.request_logger import RequestLogger
from natours.middleware.request_sanitizer import MarkupSanitizer, OperatorKeySanitizer
from natours.middleware.security_headers import SecurityHeaders
from natours.middleware.static_assets import StaticAssets
from natours.middleware.timestamp import RequestTimestamp
from natours.middleware.webhook import WebhookPassthrough
from natours.routes.mounts import build_mounts
from natours.routes.router import Handler, SubRouter
from natours.store import redis as redis_store
from natours.store.rate_limit import MemoryStore, RateLimitStore, RedisStore
from natours.webhooks.checkout import CheckoutWebhook

logger = structlog.get_logger()

# Security-critical order. WebhookPassthrough must precede BodyParser so the
# webhook handler sees the exact bytes its signature was computed over.
PIPELINE_ORDER: tuple[str, ...] = (
    "StaticAssets",
    "CrossOrigin",
    "SecurityHeaders",
    "RequestLogger",
    "RateLimiter",
    "WebhookPassthrough",
    "BodyParser",
    "CookieParser",
    "OperatorKeySanitizer",
    "MarkupSanitizer",
    "ParameterPollutionGuard",
    "Compression",
    "RequestTimestamp",
    "RouteDispatcher",
    "NotFound",
)

_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _build_store(settings: NatoursSettings) -> RateLimitStore:
    if settings.rate_limit_backend == "redis":
        return RedisStore()
    return MemoryStore()


def _build_pipeline(
    settings: NatoursSettings,
    routers: Mapping[str, SubRouter] | None = None,
    webhook_handler: Handler | None = None,
    renderer: Renderer | None = None,
    store: RateLimitStore | None = None,
) -> MiddlewarePipeline:
    """Build the ordered pipeline; raises if the result deviates from PIPELINE_ORDER."""
    error_handler = ErrorHandler(
        environment=settings.environment,
        api_prefix=settings.api_prefix,
        renderer=renderer,
    )
    if webhook_handler is None:
        webhook_handler = CheckoutWebhook(settings.webhook_secret, settings.webhook_tolerance_seconds)

    pipeline = MiddlewarePipeline(error_handler, parameter_limit=settings.parameter_limit)
    pipeline.add(StaticAssets(settings.static_root))                       # 1: assets skip all parsing
    pipeline.add(CrossOrigin(settings.cors_origin))                         # 2: answers every OPTIONS
    pipeline.add(SecurityHeaders(settings.csp_directives))                  # 3
    pipeline.add(RequestLogger(), enabled=settings.is_development)         # 4: development only
    pipeline.add(
        RateLimiter(
            store or _build_store(settings),
            max_requests=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        prefix=settings.api_prefix,
    )                                                                       # 5: API paths only
    pipeline.add(WebhookPassthrough(settings.webhook_path, webhook_handler))  # 6: raw body
    pipeline.add(BodyParser(settings.body_limit_bytes, settings.parameter_limit))  # 7
    pipeline.add(CookieParser(settings.cookie_secret))                      # 8
    pipeline.add(OperatorKeySanitizer())                                    # 9
    pipeline.add(MarkupSanitizer())                                         # 10
    pipeline.add(
        ParameterPollutionGuard(settings.hpp_whitelist, keep=settings.parameter_pollution_keep)
    )                                                                       # 11
    pipeline.add(Compression(settings.compression_threshold))               # 12
    pipeline.add(RequestTimestamp())                                        # 13
    pipeline.add(RouteDispatcher(build_mounts(routers)))                    # 14
    pipeline.add(NotFound())                                                # 15

    if tuple(pipeline.names) != PIPELINE_ORDER:
        raise RuntimeError(f"Pipeline order mismatch: {pipeline.names}")
    return pipeline


def create_app(
    settings: NatoursSettings | None = None,
    routers: Mapping[str, SubRouter] | None = None,
    webhook_handler: Handler | None = None,
    renderer: Renderer | None = None,
    store: RateLimitStore | None = None,
) -> FastAPI:
    """Create the ASGI app. Collaborators (routers, webhook handler, renderer) are injected here."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = settings or load_settings()
        setup_logging(log_level=active.log_level, json_format=active.log_json)

        # Init redis (non-fatal if unavailable; the limiter then fails closed)
        if active.rate_limit_backend == "redis" and store is None:
            await redis_store.init_redis(active.redis_url, pool_size=active.redis_pool_size)

        app.state.settings = active
        app.state.pipeline = _build_pipeline(active, routers, webhook_handler, renderer, store)
        logger.info(
            "natours_started",
            environment=active.environment,
            host=active.listen_host,
            port=active.listen_port,
        )

        yield

        await redis_store.close_redis()
        logger.info("natours_stopped")

    app = FastAPI(
        title="Natours",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.api_route("/{path:path}", methods=_METHODS, include_in_schema=False)
    async def handle_request(request: Request, path: str) -> Response:
        """Catch-all: every request goes through the pipeline."""
        active: NatoursSettings = request.app.state.settings
        context = RequestContext.from_request(request, trust_proxy=active.trust_proxy)
        return await request.app.state.pipeline.handle(request, context)

    return app


app = create_app()
