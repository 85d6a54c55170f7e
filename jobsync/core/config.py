from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "jobsync-api"
    environment: str = "dev"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    trigger_secret: str | None = None
    admin_secret: str | None = None
    source_timeout_seconds: float = 10.0
    source_user_agent: str = "jobsync-aggregator/1.0"
    usajobs_api_key: str | None = None
    usajobs_email: str | None = None
    findwork_api_key: str | None = None
    top_sources: list[str] = ["remotive", "remoteok", "himalayas"]
    incremental_since_days: int = 2
    max_jobs_full: int = 1000
    max_jobs_incremental: int = 100
    max_jobs_top: int = 200
    upsert_batch_size: int = 50
    max_description_length: int = 5000
    stale_after_days: int = 60
    expire_after_days: int = 90
    incremental_budget_seconds: float = 55.0
    full_budget_seconds: float = 280.0
    source_status_ttl_seconds: float = 3600.0
    otel_enabled: bool = True
    otel_service_name: str = "jobsync"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="JOBSYNC_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
