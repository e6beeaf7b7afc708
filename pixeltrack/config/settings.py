"""pixeltrack configuration settings."""

from __future__ import annotations

import os
import re
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

DEFAULT_URL_PATTERNS = ["*://sp.analytics.yahoo.com/*"]
DEFAULT_RESOURCE_TYPES = ["script", "image"]
DEFAULT_CANCELLATION_ERRORS = ["net::ERR_ABORTED", "NS_BINDING_ABORTED"]

# <scheme>://<host><path>, as in browser extension match patterns
MATCH_PATTERN_RE = re.compile(r"^(\*|https?)://(\*|(?:\*\.)?[^/*]+)(/.*)$")


def _csv_env(var_name: str) -> list[str]:
    raw = os.getenv(var_name, "")
    return [item.strip().lower().rstrip(".") for item in raw.split(",") if item.strip()]


def _pattern_env(var_name: str) -> list[str]:
    raw = os.getenv(var_name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _bool_env(var_name: str) -> bool:
    return os.getenv(var_name, "").strip().lower() in {"1", "true", "yes", "on"}


class CorrelatorConfig(BaseModel):
    """Lifecycle correlation and eviction settings."""

    damper_ms: int = Field(default_factory=lambda: int(os.getenv("PIXELTRACK_DAMPER_MS", "5000")))
    count_transport_errors: bool = Field(
        default_factory=lambda: _bool_env("PIXELTRACK_COUNT_TRANSPORT_ERRORS")
    )
    cancellation_errors: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CANCELLATION_ERRORS)
    )

    @field_validator("damper_ms")
    @classmethod
    def _validate_damper(cls, value: int) -> int:
        if value < 0:
            raise ValueError("PIXELTRACK_DAMPER_MS must be >= 0")
        return value


class ScopeConfig(BaseModel):
    """Which requests the network layer hands to the engine."""

    url_patterns: list[str] = Field(
        default_factory=lambda: _pattern_env("PIXELTRACK_URL_PATTERNS") or list(DEFAULT_URL_PATTERNS)
    )
    resource_types: list[str] = Field(default_factory=lambda: list(DEFAULT_RESOURCE_TYPES))

    @field_validator("url_patterns")
    @classmethod
    def _validate_patterns(cls, value: list[str]) -> list[str]:
        patterns = [pattern.strip() for pattern in value if pattern.strip()]
        if not patterns:
            raise ValueError("url_patterns cannot be empty")
        for pattern in patterns:
            if not MATCH_PATTERN_RE.match(pattern):
                raise ValueError(f"Invalid URL match pattern: {pattern}")
        return patterns


class BrowserConfig(BaseModel):
    """Browser layer configuration."""

    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    user_agent: str | None = None
    locale: str = "en-US"
    navigation_timeout_ms: int = 30000
    event_queue_size: int = 10000

    @field_validator("event_queue_size")
    @classmethod
    def _validate_queue_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("event_queue_size must be >= 1")
        return value


class TargetURLPolicyConfig(BaseModel):
    """Which pages a managed tab may be opened on."""

    allowed_domains: list[str] = Field(
        default_factory=lambda: _csv_env("PIXELTRACK_ALLOWED_TARGET_DOMAINS")
    )
    denied_domains: list[str] = Field(
        default_factory=lambda: _csv_env("PIXELTRACK_DENIED_TARGET_DOMAINS")
    )
    block_private_network_targets: bool = True


class APIConfig(BaseModel):
    """API/security and runtime controls from environment."""

    api_token: str = Field(default_factory=lambda: os.getenv("PIXELTRACK_API_TOKEN", ""))
    allowed_origins: list[str] = Field(
        default_factory=lambda: APIConfig.parse_allowed_origins(
            os.getenv("PIXELTRACK_ALLOWED_ORIGINS", "")
        )
    )
    signals_ledger_path: Path | None = Field(
        default_factory=lambda: Path(os.environ["PIXELTRACK_SIGNALS_LEDGER"])
        if os.getenv("PIXELTRACK_SIGNALS_LEDGER")
        else None
    )
    signal_history_limit: int = 1000

    @staticmethod
    def parse_allowed_origins(value: str) -> list[str]:
        if not value.strip():
            return ["http://localhost", "http://127.0.0.1"]
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        if "*" in origins:
            raise ValueError("PIXELTRACK_ALLOWED_ORIGINS cannot include '*'")
        return origins

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_origins cannot be empty")
        for origin in value:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"Invalid CORS origin: {origin}")
        return value

    @field_validator("signal_history_limit")
    @classmethod
    def _validate_history_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("signal_history_limit must be >= 1")
        return value


class InspectorConfig(BaseModel):
    """Root configuration for a pixeltrack process."""

    correlator: CorrelatorConfig = Field(default_factory=CorrelatorConfig)
    scope: ScopeConfig = Field(default_factory=ScopeConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    target_url_policy: TargetURLPolicyConfig = Field(default_factory=TargetURLPolicyConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("PIXELTRACK_LOG_LEVEL", "INFO"))
