"""Client-side call controller settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Settings for :class:`starlight.voice.controller.ConnectionController`.

    Values are read from ``STARLIGHT_*`` environment variables.
    """

    server_url: str = Field(default="ws://localhost:8080/ws", description="Signaling websocket URL")
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_base_delay: float = Field(
        default=2.0, ge=0, description="Seconds; attempt N waits N times this value."
    )
    sample_interval: float = Field(default=2.0, gt=0, description="Seconds between quality samples")
    heartbeat_interval: float = Field(default=30.0, ge=0, description="Seconds between heartbeats")
    open_timeout: float = Field(default=10.0, gt=0, description="Signaling socket open timeout")
    history_size: int = Field(default=10, ge=1, description="Quality samples kept in history")
    quality_window: int = Field(default=3, ge=1, description="Recent samples used for classification")

    model_config = SettingsConfigDict(env_prefix="STARLIGHT_", extra="ignore")


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
