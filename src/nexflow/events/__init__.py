"""Event bus and event types."""

from nexflow.events.bus import EventBus, EventBusConfig, EventHandler, Subscription
from nexflow.events.logger import EventLogger
from nexflow.events.types import (
    BaseEvent,
    ConnectorEvent,
    EventType,
    LLMPublishedEvent,
    RouterEvent,
    SessionEvent,
    SkillEvent,
    TaskEvent,
    UserEvent,
)

__all__ = [
    "BaseEvent",
    "ConnectorEvent",
    "EventBus",
    "EventBusConfig",
    "EventHandler",
    "EventLogger",
    "EventType",
    "LLMPublishedEvent",
    "RouterEvent",
    "SessionEvent",
    "SkillEvent",
    "Subscription",
    "TaskEvent",
    "UserEvent",
]
