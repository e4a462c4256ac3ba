"""Configuration management using pydantic-settings."""

from pydantic import Field, BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class SocketSettings(BaseModel):
    """Phoenix socket settings."""
    heartbeat_interval: float = 30.0
    timeout: float = Field(default=10.0, description="Seconds before a push reports timeout")
    index_topic: str = "message_threads:index"


class TypingSettings(BaseModel):
    """Local typing indicator settings."""
    delay: float = Field(default=2.0, description="Inactivity before typing stops")


class LogSettings(BaseModel):
    """Log file settings."""
    file: str = "phxchat.log"
    level: str = "INFO"


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PHXCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    socket: SocketSettings = Field(default_factory=SocketSettings)
    typing: TypingSettings = Field(default_factory=TypingSettings)
    log: LogSettings = Field(default_factory=LogSettings)


def load_settings() -> Settings:
    """Load settings from environment and .env file."""
    return Settings()
