from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client engine settings loaded from ``FLURRY_*`` environment variables."""

    log_level: str = Field(default="INFO", description="Level used by configure_logging")

    api_base_url: str = Field(
        default="http://localhost:4000/api",
        description="Base URL of the message HTTP API",
    )
    realtime_url: str = Field(
        default="ws://localhost:4000/ws",
        description="URL of the live bidirectional event channel",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        description="Transport timeout applied by the HTTP message service adapter",
    )

    typing_idle_timeout_seconds: float = Field(
        default=3.0,
        description="Inactivity window after which a typing-stopped signal is emitted",
    )
    highlight_duration_seconds: float = Field(
        default=1.0,
        description="How long a scroll target stays highlighted",
    )
    recording_tick_seconds: float = Field(
        default=1.0,
        description="Period of the recording duration counter",
    )
    recording_content_type: str = Field(
        default="audio/webm",
        description="Content type of finalized voice recordings",
    )
    recording_file_name: str = Field(
        default="voice-message.webm",
        description="File name used when uploading voice recordings",
    )
    temp_id_prefix: str = Field(
        default="local",
        description="Prefix of identifiers assigned to optimistic messages",
    )

    model_config = SettingsConfigDict(
        env_prefix="FLURRY_",
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("api_base_url", "realtime_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator(
        "http_timeout_seconds",
        "typing_idle_timeout_seconds",
        "highlight_duration_seconds",
        "recording_tick_seconds",
    )
    @classmethod
    def ensure_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timing values must be positive")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().upper()
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
