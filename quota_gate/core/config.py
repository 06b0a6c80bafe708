"""Settings for quota-gate, read from the environment.

``APP_ENV`` (development, testing, staging, production) picks the
``.env.<env>`` file at the project root, when one exists. Each concern has its
own prefixed settings class: ``APP_``, ``RATE_LIMIT_`` and ``LOG_``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

# .env files resolve against the project root, not the working directory
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings do not inherit env_file, so the file is loaded into
# os.environ before any settings class is instantiated.
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


# Settings fields come from the environment, not constructor arguments.
def _build_app_settings() -> "AppSettings":
    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required for operational routes",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for operational routes",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Admission engine configuration.

    The built-in policy table lives in ``quota_gate.services.policies``; this
    class only carries deployment knobs and per-policy overrides.
    """

    enabled: bool = Field(
        True,
        description="Enable admission checks (when false every request is admitted)",
    )
    backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Window store backend: per-process memory or shared Redis",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL (used when backend=redis)",
    )
    redis_timeout_seconds: float = Field(
        0.5,
        description="Socket connect/read timeout for Redis calls",
        gt=0,
    )
    key_prefix: str = Field(
        "quota_gate:",
        description="Namespace prefix for keys in the shared store",
    )
    forwarded_header: str = Field(
        "X-Forwarded-For",
        description="Header carrying the forwarded-address chain",
    )
    shard_count: int = Field(
        64,
        description="Number of lock shards in the in-memory window store",
        ge=1,
    )
    sweep_interval_seconds: float = Field(
        900.0,
        description="Interval between background sweeps (0 disables the sweeper)",
        ge=0,
    )
    sweep_grace_factor: float = Field(
        1.0,
        description="Counters expired for more than this many windows are removed",
        ge=0,
    )
    include_headers: bool = Field(
        True,
        description="Include Retry-After and X-RateLimit-* headers when throttling",
    )
    allowlist: str | None = Field(
        None,
        description="Comma-separated identities exempt from allowlist-aware policies",
    )
    bans_enabled: bool = Field(
        False,
        description="Temporarily ban identities that repeatedly exceed their quota",
    )
    policy_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description='JSON mapping of policy name to overridden fields, e.g. {"authentication": {"limit": 3}}',
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log output format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Log destination",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate request correlation ids",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """All settings, built once at import time. Invalid values fail startup."""

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
