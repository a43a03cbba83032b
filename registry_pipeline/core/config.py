from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    worker_name: str | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    poll_interval_seconds: float = 10.0
    batch_size: int = 1
    max_backoff_seconds: float = 60.0
    dedupe_interval_seconds: float = 3600.0
    dedupe_window_limit: int = 5000
    news_window_days: int = 90
    trust_scheme: Literal["signal", "completeness"] = "signal"
    index_max_pages: int = 50
    index_page_delay_seconds: float = 0.5
    http_timeout_seconds: float = 15.0
    http_user_agent: str = "registry-pipeline-indexer/1.0"
    otel_enabled: bool = True
    otel_service_name: str = "registry-pipeline"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="RP_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
