"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_log_settings() -> "LogSettings":
    return LogSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


def _build_throttle_settings() -> "ThrottleSettings":
    return ThrottleSettings()


def _build_quota_settings() -> "QuotaSettings":
    return QuotaSettings()


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' for structured output or 'plain'",
    )
    output: str = Field("stdout", description="Log destination: 'stdout' or 'file'")
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file' (defaults to logs/app.log)",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on admin routes",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class ThrottleSettings(BaseSettings):
    """Per-client request throttling.

    The general profile applies to every request; the auth and admin
    profiles share its window but carry their own quotas.
    """

    enabled: bool = Field(
        True,
        description="Enable per-client request throttling",
    )
    window_duration_ms: int = Field(
        900_000,
        description="Length of a throttle window in milliseconds (15 minutes)",
        ge=1,
    )
    max_requests_per_window: int = Field(
        100,
        description="Requests admitted per client per window (general profile)",
        ge=1,
    )
    auth_max_attempts: int = Field(
        10,
        description="Failed authentication attempts allowed per client per window",
        ge=1,
    )
    admin_max_requests: int = Field(
        200,
        description="Admin requests allowed per client per window",
        ge=1,
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For hop as client identifier",
    )
    fallback_client_key: str = Field(
        "unknown",
        description="Shared key for clients whose address cannot be determined",
        min_length=1,
    )
    sweep_interval_seconds: float = Field(
        60.0,
        description="Background sweep period for expired records (0 disables)",
        ge=0,
    )
    include_headers: bool = Field(
        True,
        description="Attach X-RateLimit-* headers to responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="THROTTLE_",
        case_sensitive=False,
    )


class QuotaSettings(BaseSettings):
    """Outbound quota for external research APIs (PubMed, arXiv, bioRxiv)."""

    enabled: bool = Field(
        True,
        description="Enforce quotas on outbound research API calls",
    )

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    throttle: ThrottleSettings = Field(default_factory=_build_throttle_settings)
    quota: QuotaSettings = Field(default_factory=_build_quota_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - nested settings are created via default_factory
# so env loading works.
settings = Settings()
