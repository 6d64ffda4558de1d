"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_RESOLUTION = 0
MAX_RESOLUTION = 15


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

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
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # Aggregation layers
    aggregate_resolutions: str = Field(
        default="8,6,4",
        description="Comma-separated H3 resolutions materialized by rollup; the finest is kept live incrementally",
    )

    @field_validator("aggregate_resolutions")
    @classmethod
    def validate_aggregate_resolutions(cls, v: str) -> str:
        parts = [p.strip() for p in v.split(",") if p.strip()]
        if not parts:
            msg = "aggregate_resolutions must list at least one resolution"
            raise ValueError(msg)
        try:
            values = [int(p) for p in parts]
        except ValueError as exc:
            msg = f"aggregate_resolutions must be integers, got {v!r}"
            raise ValueError(msg) from exc
        if any(r < MIN_RESOLUTION or r > MAX_RESOLUTION for r in values):
            msg = f"aggregate_resolutions must be between {MIN_RESOLUTION} and {MAX_RESOLUTION}"
            raise ValueError(msg)
        if len(set(values)) != len(values):
            msg = "aggregate_resolutions must not contain duplicates"
            raise ValueError(msg)
        return ",".join(str(r) for r in values)

    @property
    def aggregate_resolution_list(self) -> list[int]:
        """Configured resolutions ordered finest first."""
        return sorted((int(p) for p in self.aggregate_resolutions.split(",")), reverse=True)

    @property
    def base_resolution(self) -> int:
        """The finest configured resolution, maintained by incremental aggregation."""
        return self.aggregate_resolution_list[0]

    # Range queries
    query_max_cells: int = Field(
        default=50_000,
        description="Maximum estimated cell count a bounding-box query may enumerate",
        gt=0,
    )
    unbounded_query_max_cells: int = Field(
        default=5_000,
        description="Maximum stored cells an unbounded (no bounding box) query may return",
        gt=0,
    )
    query_batch_size: int = Field(
        default=500,
        description="Cell ids per batched aggregate lookup",
        gt=0,
        le=1000,
    )

    # Rollup scheduling
    rollup_enabled: bool = Field(
        default=True,
        description="Enable the background rollup loop for dirty polls",
    )
    rollup_interval_seconds: int = Field(
        default=3 * 60 * 60,
        description="Seconds between scheduled rollup passes",
        ge=60,
    )
    rollup_scan_batch_size: int = Field(
        default=1000,
        description="Responses read per batch during a rollup scan",
        gt=0,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )
    cors_origin_regex: str = Field(
        default="",
        description="Regex pattern for allowed CORS origins",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )
    rate_limit_per_minute: int = Field(
        default=600,
        description="Maximum API requests per minute per IP address",
        gt=0,
    )
    trusted_proxy_headers: str = Field(
        default="CF-Connecting-IP,X-Forwarded-For,X-Real-IP",
        description="Comma-separated list of HTTP headers to check for real client IP, in priority order",
    )

    @property
    def trusted_proxy_header_list(self) -> list[str]:
        """Parse trusted proxy headers string into a list."""
        if not self.trusted_proxy_headers.strip():
            return []
        return [h.strip() for h in self.trusted_proxy_headers.split(",") if h.strip()]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
