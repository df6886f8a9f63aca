from functools import lru_cache
from typing import Literal

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, case_sensitive=False)

    app_env: Literal["development", "test", "production"] = "development"
    frontend_base_url: AnyHttpUrl
    database_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False

    strava_client_id: str
    strava_client_secret: str
    strava_redirect_uri: AnyHttpUrl
    strava_scope: str = "read,activity:read_all"
    strava_authorize_base: AnyHttpUrl = "https://www.strava.com/oauth/authorize"
    strava_token_url: AnyHttpUrl = "https://www.strava.com/oauth/token"
    strava_api_base: str = "https://www.strava.com/api/v3"
    strava_webhook_verify_token: str = Field(default="")
    strava_request_timeout_seconds: float = Field(default=20.0)
    strava_max_attempts: int = Field(default=3, ge=1)
    strava_rate_limit_max_wait_seconds: float = Field(default=15.0)

    token_refresh_buffer_seconds: int = Field(default=3600)
    sync_page_size: int = Field(default=50, ge=1, le=200)
    sync_max_pages: int = Field(default=10, ge=1)
    manual_sync_lookback_days: int = Field(default=30, ge=1)

    sync_scheduler_enabled: bool = Field(default=True)
    sync_interval_minutes: int = Field(default=30, ge=1)
    sync_lookback_hours: int = Field(default=2, ge=1)
    sync_jitter_seconds: int = Field(default=0, ge=0)

    auth0_domain: str
    auth0_audience: str
    auth0_client_secret: str
    auth0_algorithms: list[str] = Field(default_factory=lambda: ["RS256"])
    auth0_jwks_cache_ttl: int = 3600


@lru_cache
def get_settings() -> Settings:
    return Settings()
