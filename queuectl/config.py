"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.

Job tunables (max_retries, backoff_base, job_timeout_ms) are not settings:
they live in the persisted config table so every worker process sees the
operator's latest values.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ``QUEUECTL_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUEUECTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///queue.db"
    database_busy_timeout_ms: int = 5000
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Worker Configuration
    worker_poll_interval_seconds: float = 0.3
    pid_file: str = "workers.json"
    log_output_limit: int = 65535

    # Dashboard
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 3000

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "queuectl"
    log_level: str = "INFO"
    log_format: str = "console"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
