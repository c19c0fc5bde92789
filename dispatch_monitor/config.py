"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Polling Configuration
    polling_enabled: bool = Field(
        default=True,
        description="Start the polling orchestrator on application startup",
    )
    poll_interval_ms: int = Field(
        default=30000,
        ge=1000,
        description="Milliseconds between poll cycles (fixed rate)",
    )
    cache_ttl_ms: int = Field(
        default=15000,
        ge=0,
        le=30000,
        description="Lifetime of a cached job fetch result in milliseconds",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum number of jobs requested per fetch",
    )
    upstream_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single upstream fetch",
    )
    stop_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Max seconds to wait for an in-flight cycle on shutdown",
    )

    # GPS Verification
    proximity_threshold_miles: float = Field(
        default=2.0,
        gt=0,
        description="Maximum vehicle-to-site distance counted as on site (inclusive)",
    )
    schedule_timezone: str = Field(
        default="UTC",
        description="IANA timezone used to decide whether a job is due today",
    )

    # Alert Rule Thresholds
    arrival_completion_hours: float = Field(
        default=4.0,
        gt=0,
        description="Hours after arrival before a missing completion raises an alert",
    )
    location_mismatch_miles: float = Field(
        default=10.0,
        gt=0,
        description="Distance above which an on-site job raises a location mismatch",
    )
    alert_history_size: int = Field(
        default=1000,
        ge=0,
        description="Alert lifecycle events kept in memory",
    )
    change_history_size: int = Field(
        default=10,
        ge=0,
        description="Committed changes kept per job",
    )
    change_history_jobs: int = Field(
        default=5000,
        ge=0,
        description="Jobs with change history kept in memory",
    )

    # Upstream Job Source
    job_source_url: Optional[str] = Field(
        default=None, description="Base URL of the job/work-order API"
    )
    job_source_api_key: Optional[str] = Field(
        default=None, description="Bearer token for the job API"
    )

    # Upstream Telemetry Source
    telemetry_source_url: Optional[str] = Field(
        default=None, description="Base URL of the vehicle telemetry API"
    )
    telemetry_source_api_key: Optional[str] = Field(
        default=None, description="Bearer token for the telemetry API"
    )

    # History Sink
    history_database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL URL for poll history (logs only when unset)",
    )

    # Event Bus
    event_bus_buffer_size: int = Field(
        default=1000,
        ge=0,
        description="Events buffered for SSE reconnection replay",
    )

    # Sentry Configuration
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry traces sample rate (0.0-1.0)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
