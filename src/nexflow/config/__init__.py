"""Configuration package."""

from nexflow.config.settings import (
    DiscordSettings,
    EventBusSettings,
    LLMSettings,
    RouterSettings,
    Settings,
    SkillSettings,
    TelegramSettings,
    WebSettings,
    load_settings,
)

__all__ = [
    "DiscordSettings",
    "EventBusSettings",
    "LLMSettings",
    "RouterSettings",
    "Settings",
    "SkillSettings",
    "TelegramSettings",
    "WebSettings",
    "load_settings",
]
