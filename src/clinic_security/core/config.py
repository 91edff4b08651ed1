"""Environment-driven settings.

Every option maps to an upper-case environment variable of the same name;
a local ``.env`` file is read when present.
"""

import re

from croniter import croniter
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")
_SCHEMA_NAME = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Runtime configuration for the API, the CLI and the background sweep."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="PostgreSQL async connection string",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not _SCHEMA_NAME.match(v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # JWT
    jwt_secret_key: str = Field(min_length=32, description="Secret key for signing JWTs (minimum 32 characters)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=30,
        description="Access token expiration in minutes",
        gt=0,
    )
    jwt_refresh_token_expire_days: int = Field(
        default=7,
        description="Refresh token expiration in days",
        gt=0,
    )

    # Searchable hashing of identifiers stored encrypted at rest
    search_hash_key: str = Field(
        min_length=32,
        description="HMAC key for searchable email hashes (hex-encoded 32 bytes or a 32+ character secret)",
    )

    # Geolocation
    geolocation_enabled: bool = Field(
        default=True,
        description="Enable IP geolocation enrichment of location baselines",
    )
    geolocation_api_url: str = Field(
        default="http://ip-api.com/json",
        description="Base URL of the IP geolocation JSON endpoint",
    )
    geolocation_timeout: float = Field(
        default=3.0,
        description="Per-lookup timeout in seconds",
        gt=0,
    )
    geolocation_batch_size: int = Field(
        default=10,
        description="Maximum concurrent lookups per batch",
        gt=0,
    )
    geolocation_batch_delay: float = Field(
        default=1.5,
        description="Seconds to wait between lookup batches",
        ge=0,
    )

    # Behavioral baselines
    baseline_window_days: int = Field(
        default=30,
        description="Trailing window, in days, aggregated into each baseline",
        gt=0,
    )
    baseline_recalc_enabled: bool = Field(
        default=True,
        description="Enable the daily baseline recalculation scheduler",
    )
    baseline_recalc_cron: str = Field(
        default="0 3 * * *",
        description="Cron expression for the baseline recalculation sweep",
    )

    @field_validator("baseline_recalc_cron")
    @classmethod
    def validate_baseline_recalc_cron(cls, v: str) -> str:
        if not croniter.is_valid(v):
            msg = f"Invalid baseline_recalc_cron expression: {v!r}"
            raise ValueError(msg)
        return v

    # Anomaly detection
    anomaly_min_location_history: int = Field(
        default=5,
        description="Logins required in the location baseline before unknown IPs are flagged",
        ge=0,
    )
    anomaly_min_action_history: int = Field(
        default=10,
        description="Actions required in the access baseline before unseen actions are flagged",
        ge=0,
    )
    anomaly_time_tolerance_hours: int = Field(
        default=2,
        description="Hours around the average login hour that are not flagged",
        ge=0,
        le=12,
    )

    # Audit log
    audit_immutability_on_startup: bool = Field(
        default=True,
        description="Install audit log immutability guards during application startup",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Minimum Loguru level (TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL)",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            msg = f"Invalid log_level: {v!r}"
            raise ValueError(msg)
        return level

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )
    cors_origin_regex: str = Field(
        default="",
        description="Regex pattern for allowed CORS origins",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, development, staging)",
    )

    @property
    def is_production(self) -> bool:
        """Whether raw internal error text must be withheld from API responses."""
        return self.environment.strip().lower() == "production"

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )
    rate_limit_per_minute: int = Field(
        default=200,
        description="Maximum API requests per minute per IP address",
        gt=0,
    )
    login_rate_limit_per_minute: int = Field(
        default=10,
        description="Maximum POST /auth/login attempts per minute per IP address",
        gt=0,
    )
    trusted_proxy_headers: str = Field(
        default="CF-Connecting-IP,X-Forwarded-For,X-Real-IP",
        description="Comma-separated list of HTTP headers to check for real client IP, in priority order",
    )

    @property
    def trusted_proxy_header_list(self) -> list[str]:
        """Proxy headers consulted for the client IP, highest priority first. Empty disables them."""
        return _split_csv(self.trusted_proxy_headers)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()  # type: ignore[call-arg]
