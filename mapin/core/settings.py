from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    app_name: str = "Map'In Chat Server"
    api_v1_prefix: str = "/v1"
    database_url: str = "sqlite:///./mapin.db"

    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 30

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:8081"])

    message_page_size: int = 50
    message_max_length: int = 2000
    transaction_max_attempts: int = 5

    change_dispatcher_enabled: bool = True
    change_dispatcher_poll_ms: int = 50
    change_dispatcher_batch_size: int = 100
    change_dispatcher_max_attempts: int = 8

    ws_heartbeat_sec: int = 30
    ws_idle_timeout_sec: int = 120
    ws_max_command_bytes: int = 4096
    ws_max_subscriptions_per_connection: int = 20
    ws_rate_limit_window_sec: int = 10
    ws_rate_limit_max_commands: int = 40

    media_root: str = "./media"
    media_max_upload_mb: int = 25

    deep_link_scheme: str = "mapin"
    deep_link_default_route: str = "map"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()
