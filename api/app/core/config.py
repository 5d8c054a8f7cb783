from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "afftools-postback-api"
    environment: str = "dev"
    host: str = "0.0.0.0"
    port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "AFF_PORT"))
    downstream_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("AFF_DOWNSTREAM_URL", "SUPABASE_FUNCTION_URL"),
    )
    downstream_api_key: str | None = None
    downstream_timeout_seconds: float = 10.0
    downstream_retry_once: bool = False
    accept_parameter_aliases: bool = False
    include_payout_in_ack: bool = False
    expose_error_details: bool = False
    postback_base_url: str | None = None
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    otel_enabled: bool = True
    otel_service_name: str = "afftools-postback-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="AFF_", extra="ignore", populate_by_name=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
