"""Application configuration and settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_name: str = "MCA Jobs API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API
    api_v1_prefix: str = "/api/v1"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_credentials: bool = True
    cors_methods: list[str] = ["*"]
    cors_headers: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"

    # Job storage ("memory" keeps everything in-process)
    job_store_backend: Literal["memory", "supabase"] = "memory"

    # Supabase Configuration
    supabase_url: str | None = None
    supabase_key: str | None = None  # Service role key (not anon key!)
    supabase_job_table: str = "batch_job"
    supabase_mirror_table: str = "orgmeter_entity"
    supabase_crm_table: str = "crm_entity"
    supabase_funder_table: str = "funder"

    # OrgMeter API Configuration
    orgmeter_api_url: str = "https://app.orgmeter.com/api/main/v1"
    orgmeter_timeout_seconds: float = 30.0
    orgmeter_request_delay_seconds: float = 0.1  # Throttle between paged requests
    orgmeter_max_count_pages: int = 1000  # Safety cap when counting by paging

    # Job defaults
    default_batch_size: int = 20
    max_batch_size: int = 100

    # Engine
    run_registry_capacity: int = 64  # Max concurrently live job runs per process
    job_heartbeat_stale_seconds: int = 900  # Running job without a checkpoint for 15min is orphaned
    reaper_interval_seconds: int = 300
    reaper_enabled: bool = True
    reap_on_startup: bool = True
    shutdown_timeout_seconds: int = 30  # Graceful shutdown timeout


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
