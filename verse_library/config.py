"""
Verse Library — Application Configuration
==========================================

What:  Centralized configuration management using Pydantic Settings.
How:   Values are read from environment variables (or a .env file), validated
       on import and exposed through the singleton `settings` object.
Who:   Imported by every module that needs a tunable value (TTL, cache sizes,
       gateway endpoint, retry policy, refresh cadence).
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every value has a development default. Deployments talking to a real
    backend MUST set GATEWAY_BASE_URL and GATEWAY_API_KEY.
    """

    # ── Catalog Cache ─────────────────────────────────────────────────────
    # What: How long a fetched catalog is served before a refresh is preferred
    # Valid range: 1 minute to 7 days
    cache_ttl_seconds: int = Field(default=24 * 60 * 60, ge=60, le=7 * 24 * 60 * 60)

    # What: Capacity of the two bounded query caches (FIFO eviction)
    search_cache_size: int = Field(default=50, ge=1, le=1000)
    filter_cache_size: int = Field(default=10, ge=1, le=100)

    # What: Directory holding the persisted cache records (one JSON file each)
    storage_root: str = Field(default="./storage")

    # ── Remote Content Gateway ────────────────────────────────────────────
    # What: Base URL of the PostgREST-style backend
    # Format: https://<project>.example.co  (the /rest/v1 prefix is appended)
    gateway_base_url: str = Field(
        default="http://localhost:54321",
        description="Base URL of the hosted content backend",
    )
    gateway_api_key: str = Field(default="", description="Anonymous/public API key")
    gateway_access_token: str = Field(default="", description="Signed-in user's bearer token")
    gateway_user_id: str = Field(default="", description="Signed-in user's id")

    # What: Per-request timeout for gateway calls, in seconds
    gateway_timeout: float = Field(default=10.0, gt=0, le=120)

    # ── Retry Configuration ───────────────────────────────────────────────
    # What: Tenacity retry settings for transient gateway failures
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_min_wait: int = Field(default=1, ge=1, le=30)
    retry_max_wait: int = Field(default=10, ge=1, le=120)

    # ── Circuit Breaker ───────────────────────────────────────────────────
    # What: After N consecutive failures, stop calling the gateway for M seconds
    cb_failure_threshold: int = Field(default=5, ge=1, le=20)
    cb_recovery_timeout: int = Field(default=60, ge=0, le=600)

    # ── Background Refresh ────────────────────────────────────────────────
    background_refresh_enabled: bool = Field(default=True)
    # What: Minimum time between two background refreshes (default 6 hours)
    background_refresh_interval: int = Field(default=6 * 60 * 60, ge=60)
    background_refresh_on_foreground: bool = Field(default=True)
    # What: How often the periodic task wakes up to check the interval
    background_refresh_tick: float = Field(default=60.0, gt=0)

    # ── Progress ──────────────────────────────────────────────────────────
    # What: Reading time credited when the caller does not report one
    default_time_spent_seconds: int = Field(default=60, ge=0)
    haptics_enabled: bool = Field(default=True)
    notifications_enabled: bool = Field(default=True)

    # ── Server ────────────────────────────────────────────────────────────
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: str = Field(default="http://localhost:8081")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    def validate_required_for_production(self) -> None:
        """
        Checks that the gateway is configured well enough to reach a backend.

        Raises:
            ValueError listing every missing setting.
        """
        errors = []
        if not self.gateway_base_url:
            errors.append("GATEWAY_BASE_URL is not set.")
        if not self.gateway_api_key:
            errors.append(
                "GATEWAY_API_KEY is not set. "
                "Use the public API key from the backend project settings."
            )
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance imported throughout the application
settings = Settings()
