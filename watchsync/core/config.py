"""Application configuration for the watch-party signaling server and clients."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, ge=1, le=65535)
    log_level: str = Field(default="INFO")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    ice_servers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    ])

    room_grace_seconds: float = Field(default=0.0, ge=0)
    auto_create_rooms: bool = Field(default=False)

    signaling_url: str = Field(default="ws://localhost:3001/api/rtc/signaling")
    reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_seconds: float = Field(default=1.0, gt=0)

    negotiation_timeout_seconds: float = Field(default=30.0, gt=0)
    ping_interval_seconds: float = Field(default=5.0, gt=0)
    sync_interval_seconds: float = Field(default=5.0, gt=0)
    drift_threshold_seconds: float = Field(default=2.0, ge=0)
    seek_threshold_seconds: float = Field(default=1.0, ge=0)

    @field_validator("cors_allow_origins", "ice_servers", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
