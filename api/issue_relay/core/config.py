from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "issue-relay-api"
    environment: str = "dev"
    job_store_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    job_max_retries: int = 3
    job_batch_size: int = 5
    job_stale_after_seconds: int = 600
    cron_secret: str | None = None
    publish_max_attempts: int = 3
    publish_initial_delay_seconds: float = 1.0
    rate_limit_requests_per_hour: int = 20
    rate_limit_window_seconds: float = 3600.0
    rate_limit_sweep_interval_seconds: float = 60.0
    title_rate_limit_per_hour: int = 50
    trigger_rate_limit_per_hour: int = 120
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 10.0
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_content_model: str = "gpt-4o-mini"
    openai_title_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 60.0
    otel_enabled: bool = True
    otel_service_name: str = "issue-relay-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="IR_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
