import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Iterator

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_STUN_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
    "stun:stun3.l.google.com:19302",
    "stun:stun4.l.google.com:19302",
)


def _env_list(value: Any, *, json_allowed: bool) -> list[Any]:
    """Accept a list, a JSON array (when allowed) or a comma separated string."""

    if value in (None, "", Ellipsis):
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if not isinstance(value, str):
        return [value]
    if json_allowed and value.lstrip().startswith(("[", "{")):
        parsed = json.loads(value)
        return list(parsed) if isinstance(parsed, list) else [parsed]
    return [item.strip() for item in value.split(",") if item.strip()]


class IceServer(BaseModel):
    """One entry of the browser ``RTCIceServer`` list."""

    urls: list[str] = Field(default_factory=list, description="STUN/TURN URLs")
    username: str | None = Field(default=None, description="TURN username")
    credential: str | None = Field(default=None, description="TURN credential")

    @field_validator("urls", mode="before")
    @classmethod
    def normalise_urls(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = [value]
        return [str(url) for url in _env_list(value, json_allowed=False)]


class Settings(BaseSettings):
    """Signaling server settings loaded from environment variables."""

    app_name: str = Field(default="Starlight Signaling", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    host: str = Field(default="0.0.0.0", description="Interface the server binds to")
    port: int = Field(default=8080, description="Port the server listens on")
    log_level: str = Field(default="INFO", description="Root log level")

    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by CORS; a comma separated list or JSON array in the environment.",
    )

    heartbeat_interval_seconds: float = Field(
        default=30.0,
        description="Interval between liveness pings; a socket silent for a whole interval is terminated.",
    )

    webrtc_ice_servers: Annotated[list[IceServer], NoDecode] = Field(
        default_factory=list,
        description="Complete ICE server entries, as a JSON array of RTCIceServer objects.",
    )
    webrtc_stun_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Extra STUN URLs, each published as its own entry.",
    )
    webrtc_turn_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="TURN URLs published as one entry sharing the TURN credentials.",
    )
    webrtc_turn_username: str | None = Field(default=None, description="Username for the TURN entry.")
    webrtc_turn_credential: str | None = Field(default=None, description="Credential for the TURN entry.")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, value: Any) -> list[Any]:
        return _env_list(value, json_allowed=True) or ["*"]

    @field_validator("webrtc_ice_servers", mode="before")
    @classmethod
    def parse_ice_servers(cls, value: Any) -> list[Any]:
        return [
            {"urls": entry} if isinstance(entry, (str, list, tuple)) else entry
            for entry in _env_list(value, json_allowed=True)
        ]

    @field_validator("webrtc_stun_servers", "webrtc_turn_servers", mode="before")
    @classmethod
    def parse_urls(cls, value: Any) -> list[Any]:
        return _env_list(value, json_allowed=True)

    def iter_ice_servers(self) -> Iterator[IceServer]:
        yield from self.webrtc_ice_servers
        for url in self.webrtc_stun_servers:
            yield IceServer(urls=[url])
        if self.webrtc_turn_servers:
            yield IceServer(
                urls=self.webrtc_turn_servers,
                username=self.webrtc_turn_username,
                credential=self.webrtc_turn_credential,
            )

    @property
    def webrtc_ice_servers_payload(self) -> list[dict[str, Any]]:
        """ICE servers in the browser ``RTCIceServer`` shape, public STUN when none are configured."""

        servers = list(self.iter_ice_servers()) or [IceServer(urls=[url]) for url in DEFAULT_STUN_SERVERS]
        return [server.model_dump(mode="json", exclude_none=True) for server in servers]


@lru_cache
def get_settings() -> Settings:
    return Settings()
