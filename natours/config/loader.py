"""Typed application settings loaded with pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Filter and sort fields that may legitimately repeat in a query string
# (range queries such as ?duration=5&duration=9).
DEFAULT_HPP_WHITELIST = [
    "duration",
    "ratingAverage",
    "ratingQuantity",
    "maxGroupSize",
    "difficulty",
    "price",
]

STRIPE_JS_ORIGIN = "https://js.stripe.com/v3/"
MAPTILER_ORIGIN = "https://api.maptiler.com/maps/dataviz/"


def _default_csp_directives() -> dict[str, list[str]]:
    return {
        "default-src": ["'self'", STRIPE_JS_ORIGIN],
        "img-src": ["'self'", MAPTILER_ORIGIN],
        "script-src": ["'self'", STRIPE_JS_ORIGIN],
    }


class NatoursSettings(BaseSettings):
    """Application configuration, overridden by NATOURS_* env vars."""

    model_config = SettingsConfigDict(
        env_prefix="NATOURS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "production"] = "production"
    log_level: str = "info"
    log_json: bool = True
    listen_host: str = "127.0.0.1"
    listen_port: int = 3000

    # Honour X-Forwarded-For when identifying clients (app runs behind a proxy)
    trust_proxy: bool = True

    static_root: str = str(_PROJECT_ROOT / "public")
    cors_origin: str = "*"
    csp_directives: dict[str, list[str]] = Field(default_factory=_default_csp_directives)

    # Rate limiting
    api_prefix: str = "/api"
    rate_limit_max: int = Field(100, gt=0)
    rate_limit_window_seconds: int = Field(60 * 60, gt=0)
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"
    redis_pool_size: int = Field(10, gt=0)

    # Payment webhook (receives the raw body)
    webhook_path: str = "/webhook-checkout"
    webhook_secret: str = ""
    webhook_tolerance_seconds: int = Field(300, ge=0, le=3600)

    # Body and cookie parsing
    body_limit_bytes: int = Field(10 * 1024, gt=0)
    parameter_limit: int = Field(1000, gt=0)
    cookie_secret: str = ""

    # Parameter pollution
    hpp_whitelist: list[str] = Field(default_factory=lambda: list(DEFAULT_HPP_WHITELIST))
    parameter_pollution_keep: Literal["first", "last"] = "last"

    compression_threshold: int = Field(1024, ge=0)

    @field_validator("api_prefix", "webhook_path")
    @classmethod
    def _must_be_absolute_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"must start with '/': {v!r}")
        return v.rstrip("/") or "/"

    @field_validator("csp_directives")
    @classmethod
    def _normalise_directives(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        return {name.strip().lower(): list(values) for name, values in v.items()}

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


_settings: NatoursSettings | None = None


def get_settings() -> NatoursSettings:
    """Get or create the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings() -> NatoursSettings:
    """Load settings from env vars and validate them once."""
    global _settings
    _settings = NatoursSettings()
    logger.info(
        "config_loaded",
        environment=_settings.environment,
        port=_settings.listen_port,
        rate_limit_backend=_settings.rate_limit_backend,
    )
    return _settings
