"""Application settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nexflow.errors import ConfigurationError
from nexflow.events.bus import EventBusConfig
from nexflow.router.config import RouterConfig


def _config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix=prefix,
        case_sensitive=False,
        extra="ignore",
    )


class RouterSettings(BaseSettings):
    """Message router settings."""

    model_config = _config("NEXFLOW_ROUTER_")

    max_message_length: int = Field(default=10000, ge=1, le=100000)
    validation_enabled: bool = Field(default=True)
    retry_max_attempts: int = Field(default=3, ge=0, le=10)
    retry_initial_delay_ms: int = Field(default=100, ge=1)
    retry_max_delay_ms: int = Field(default=5000, ge=1)
    retry_backoff_multiplier: float = Field(default=2.0, gt=1.0)
    max_output_tokens: int = Field(default=1000, ge=1)

    def to_config(self) -> RouterConfig:
        return RouterConfig(
            max_message_length=self.max_message_length,
            validation_enabled=self.validation_enabled,
            retry_max_attempts=self.retry_max_attempts,
            retry_initial_delay=self.retry_initial_delay_ms / 1000,
            retry_max_delay=self.retry_max_delay_ms / 1000,
            retry_backoff_multiplier=self.retry_backoff_multiplier,
            max_output_tokens=self.max_output_tokens,
        )


class EventBusSettings(BaseSettings):
    """Event bus settings."""

    model_config = _config("NEXFLOW_EVENTBUS_")

    enabled: bool = Field(default=True)
    batch_size: int = Field(default=100, ge=1, le=10000)
    flush_interval_ms: int = Field(default=100, ge=1, le=60000)
    buffer_size: int = Field(default=1000, ge=1, le=100000)
    enable_logging: bool = Field(default=True)

    def to_config(self) -> EventBusConfig:
        return EventBusConfig(
            batch_size=self.batch_size,
            flush_interval=self.flush_interval_ms / 1000,
            channel_capacity=self.buffer_size,
        )


class TelegramSettings(BaseSettings):
    """Telegram connector settings."""

    model_config = _config("NEXFLOW_TELEGRAM_")

    enabled: bool = Field(default=False)
    bot_token: str | None = Field(default=None)
    allowed_users: list[str] = Field(default_factory=list)
    allowed_chats: list[str] = Field(default_factory=list)
    webhook_url: str | None = Field(default=None)
    webhook_listen: str = Field(default="0.0.0.0")  # noqa: S104
    webhook_port: int = Field(default=8443, ge=1, le=65535)

    @model_validator(mode="after")
    def _check_enabled(self) -> TelegramSettings:
        if not self.enabled:
            return self
        if not self.bot_token:
            raise ValueError("telegram bot_token is required when telegram is enabled")
        if not self.allowed_users and not self.allowed_chats:
            raise ValueError("telegram requires at least one of allowed_users or allowed_chats when enabled")
        return self


class WebSettings(BaseSettings):
    """WebSocket connector settings."""

    model_config = _config("NEXFLOW_WEB_")

    enabled: bool = Field(default=False)
    host: str = Field(default="localhost")
    port: int = Field(default=8765, ge=1, le=65535)


class DiscordSettings(BaseSettings):
    """Discord connector settings (mock transport only)."""

    model_config = _config("NEXFLOW_DISCORD_")

    enabled: bool = Field(default=False)


class LLMSettings(BaseSettings):
    """LLM provider settings."""

    model_config = _config("NEXFLOW_LLM_")

    provider: Literal["mock", "openai"] = Field(default="mock")
    model: str = Field(default="gpt-4o-mini")
    api_key: str | None = Field(default=None)
    api_base: str | None = Field(default=None)
    timeout_seconds: int = Field(default=90, ge=1)
    history_window: int = Field(default=50, ge=1)


class SkillSettings(BaseSettings):
    """Skill runtime settings."""

    model_config = _config("NEXFLOW_SKILLS_")

    directory: str | None = Field(default=None)
    timeout_seconds: int = Field(default=30, ge=1)

    def resolve_directory(self) -> Path | None:
        if not self.directory:
            return None
        return Path(self.directory).expanduser().resolve()


class Settings(BaseModel):
    """All settings, one section per component."""

    router: RouterSettings = Field(default_factory=RouterSettings)
    eventbus: EventBusSettings = Field(default_factory=EventBusSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    web: WebSettings = Field(default_factory=WebSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    skills: SkillSettings = Field(default_factory=SkillSettings)


def load_settings() -> Settings:
    """Load settings from the environment and ``.env``; invalid values raise ConfigurationError."""
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc
