"""Application configuration settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    database_url: str = Field(
        description="Database connection URL used by SQLAlchemy to connect to the DB",
        min_length=1,
    )
    secret_key: str = Field(
        description="Secret key for signing JWT tokens", min_length=1
    )
    access_token_expire_minutes: int = Field(
        description="Number of minutes before access tokens expire",
        gt=0,
    )
    event_bus_mode: Literal["local", "redis"] = Field(
        default="redis",
        description="Inter-process fan-out mode for notification events",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL used by the distributed notification bus",
    )
    redis_event_channel: str = Field(
        default="chat3d.notifications",
        description="Pub/sub channel shared by every backend instance",
        min_length=1,
    )
    sse_heartbeat_interval_seconds: float = Field(
        default=25.0,
        description="Seconds between heartbeat comments on an open event stream",
        gt=0,
    )
    notification_default_limit: int = Field(
        default=100,
        description="Page size used when a notification listing omits the limit",
        ge=1,
    )
    notification_max_limit: int = Field(
        default=500,
        description="Upper bound applied to any notification listing",
        ge=1,
    )
    stream_replay_page_size: int = Field(
        default=200,
        description="Rows loaded per page while replaying a backlog to a stream",
        ge=1,
    )
    stream_replay_max_events: int = Field(
        default=1000,
        description="Maximum backlog replayed on a single stream connection",
        ge=1,
    )
    stream_max_pending_frames: int = Field(
        default=1000,
        description="Outbound frames a slow stream may queue before it is dropped",
        ge=1,
    )
    store_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to event store reads while serving streams",
        gt=0,
    )
    cors_allowed_origins: str = Field(
        default="http://localhost,http://localhost:5173",
        description="Comma separated list of origins allowed by CORS",
    )
    log_level: str = Field(default="INFO", description="Root logging level")

    @field_validator("event_bus_mode", mode="before")
    @classmethod
    def _normalize_event_bus_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def cors_origins(self) -> list[str]:
        """Return the configured CORS origins as a list."""

        return [
            origin.strip()
            for origin in self.cors_allowed_origins.split(",")
            if origin.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
