"""
Unified configuration for headshot-studio.

This module provides a single Settings class for every tunable of the job
orchestration core and its HTTP adapter. Nothing about concurrency, rate
limits, retries or retention is hardcoded elsewhere.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Settings for the headshot-studio service.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "headshot-studio"
    LOG_LEVEL: str = "INFO"

    # Dispatch
    MAX_GLOBAL_CONCURRENCY: int = 4
    MAX_INFLIGHT_PER_CLIENT: int = 2
    DISPATCH_POLL_INTERVAL_SECONDS: float = 1.0

    # Provider admission, in limits/slowapi rate string syntax
    CLIENT_RATE_LIMIT: str = "5/minute"
    PROVIDER_RATE_LIMIT: str = "60/minute"

    # Retry
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 30.0

    # Retention
    PENDING_RETENTION_SECONDS: int = 3600
    COMPLETED_RETENTION_SECONDS: int = 86400
    ORPHAN_RESULT_RETENTION_SECONDS: int = 300
    JOB_RECORD_GRACE_SECONDS: int = 86400
    JANITOR_INTERVAL_SECONDS: float = 60.0

    # Transform provider
    PROVIDER_BASE_URL: str = ""
    PROVIDER_API_KEY: str = ""
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    # Artifact storage
    ARTIFACT_BACKEND: str = "memory"  # "memory" or "local"
    ARTIFACT_DIR: str = "tmp/artifacts"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    ALLOWED_IMAGE_TYPES: tuple[str, ...] = ("image/jpeg", "image/png", "image/webp")

    # HTTP adapter
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8081
    UPLOAD_RATE_LIMIT: str = "10/minute"

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore",
    )


# Global settings instance
settings = Settings()  # type: ignore
