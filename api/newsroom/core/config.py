from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "newsroom-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    concurrent_modification_retries: int = 1
    topic_max_depth: int = 64
    strict_topic_ids: bool = False
    story_name_max_length: int = 50
    story_content_min_length: int = 5
    story_content_max_length: int = 500
    rejection_reason_min_length: int = 5
    rejection_reason_max_length: int = 500
    topic_name_max_length: int = 50
    otel_enabled: bool = True
    otel_service_name: str = "newsroom-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="NR_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
