"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gatekeeper.adapters.rate_limit.base import WindowStrategy


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


# Placeholder HMAC key accepted only outside production.
DEV_HMAC_KEY = "dev_verification_key_change_me"


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return LogSettings()  # type: ignore[call-arg]


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    See _build_log_settings() for rationale about the type ignore.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_store_settings() -> "StoreSettings":
    return StoreSettings()  # type: ignore[call-arg]


def _build_verification_settings() -> "VerificationSettings":
    return VerificationSettings()  # type: ignore[call-arg]


def _build_quota_settings() -> "QuotaSettings":
    return QuotaSettings()  # type: ignore[call-arg]


def _build_session_settings() -> "SessionSettings":
    return SessionSettings()  # type: ignore[call-arg]


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' for structured output or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
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

    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on internal endpoints",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for internal endpoints",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-scope quota enforcement on public endpoints",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers alongside Retry-After when throttling",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For address as the client IP (behind a proxy)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Shared store (Redis) connection configuration."""

    url: str = Field(
        "redis://127.0.0.1:6379/0",
        description="Redis connection URL",
        validation_alias=AliasChoices("STORE_URL", "REDIS_URL", "REDIS_URI"),
    )
    socket_timeout_seconds: float = Field(
        2.0,
        description="Per-command socket timeout",
        gt=0,
    )
    connect_timeout_seconds: float = Field(
        2.0,
        description="Socket connect timeout",
        gt=0,
    )
    retry_attempts: int = Field(
        2,
        description="Client-level retries on connection errors before giving up",
        ge=0,
    )
    backoff_base_seconds: float = Field(
        0.05,
        description="Base delay of the exponential reconnect backoff",
        gt=0,
    )
    backoff_cap_seconds: float = Field(
        2.0,
        description="Upper bound of the reconnect backoff",
        gt=0,
    )
    loopback_fallback: bool = Field(
        True,
        description="Re-target 127.0.0.1 once when the configured host cannot be resolved",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
        populate_by_name=True,
    )


class VerificationSettings(BaseSettings):
    """One-time verification code configuration."""

    hmac_key: str = Field(
        DEV_HMAC_KEY,
        description="Server secret used to HMAC verification codes",
    )
    code_length: int = Field(6, description="Number of digits per code", ge=4, le=10)
    code_ttl_seconds: int = Field(600, description="Code lifetime", ge=1)
    max_attempts: int = Field(5, description="Wrong attempts before lockout", ge=1)
    attempts_ttl_seconds: int | None = Field(
        None,
        description="Lifetime of the failed-attempt counter (defaults to max(code TTL, 60))",
        ge=1,
    )
    lockout_seconds: int = Field(3600, description="Lockout duration", ge=1)
    expose_code: bool = Field(
        False,
        description="Return the raw code in API responses (development only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="VERIFICATION_",
        case_sensitive=False,
    )

    @property
    def effective_attempts_ttl_seconds(self) -> int:
        if self.attempts_ttl_seconds is not None:
            return self.attempts_ttl_seconds
        return max(self.code_ttl_seconds, 60)


class QuotaSettings(BaseSettings):
    """Per-scope quota policies."""

    signup_ip_capacity: int = Field(5, ge=1)
    signup_ip_window_seconds: int = Field(3600, ge=1)
    signup_ip_strategy: WindowStrategy = "sliding"

    resend_email_capacity: int = Field(3, ge=1)
    resend_email_window_seconds: int = Field(3600, ge=1)
    resend_email_strategy: WindowStrategy = "sliding"

    resend_ip_capacity: int = Field(10, ge=1)
    resend_ip_window_seconds: int = Field(3600, ge=1)
    resend_ip_strategy: WindowStrategy = "sliding"

    check_ip_capacity: int = Field(60, ge=1)
    check_ip_window_seconds: int = Field(3600, ge=1)
    check_ip_strategy: WindowStrategy = "fixed"

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )


class SessionSettings(BaseSettings):
    """Server-side session configuration."""

    ttl_seconds: int = Field(
        5 * 24 * 60 * 60,
        description="Session lifetime, also the fallback TTL when rewriting records",
        ge=1,
    )
    cookie_name: str = Field("session", description="Session cookie name")
    cookie_secure: bool = Field(False, description="Mark the session cookie Secure")

    model_config = SettingsConfigDict(
        env_prefix="SESSION_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    verification: VerificationSettings = Field(default_factory=_build_verification_settings)
    quota: QuotaSettings = Field(default_factory=_build_quota_settings)
    session: SessionSettings = Field(default_factory=_build_session_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
