"""Typed lifecycle events published on the event bus."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    CONNECTOR_STARTED = "connector.started"
    CONNECTOR_STOPPED = "connector.stopped"
    CONNECTOR_ERROR = "connector.error"
    CONNECTOR_MESSAGE = "connector.message"

    ROUTER_STARTED = "router.started"
    ROUTER_STOPPED = "router.stopped"
    ROUTER_ERROR = "router.error"
    ROUTER_MESSAGE = "router.message"

    ORCHESTRATOR_STARTED = "orchestrator.started"
    ORCHESTRATOR_STOPPED = "orchestrator.stopped"
    ORCHESTRATOR_ERROR = "orchestrator.error"
    ORCHESTRATOR_TASK = "orchestrator.task"

    LLM_REQUEST = "llm.request"
    LLM_RESPONSE = "llm.response"
    LLM_ERROR = "llm.error"

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"

    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    SESSION_ENDED = "session.ended"

    SKILL_STARTED = "skill.started"
    SKILL_COMPLETED = "skill.completed"
    SKILL_FAILED = "skill.failed"

    TASK_CREATED = "task.created"
    TASK_STARTED = "task.started"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"


ERROR_EVENT_TYPES: frozenset[str] = frozenset({
    EventType.CONNECTOR_ERROR,
    EventType.ROUTER_ERROR,
    EventType.ORCHESTRATOR_ERROR,
    EventType.LLM_ERROR,
    EventType.SKILL_FAILED,
    EventType.TASK_FAILED,
})

_HEADER_FIELDS = frozenset({"type", "timestamp", "metadata"})


@dataclass(frozen=True, kw_only=True)
class BaseEvent:
    """Common event header. ``type`` may be any string; known types live in ``EventType``."""

    type: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_metadata(self) -> dict[str, Any]:
        """Flatten header and payload into a log-friendly mapping."""
        data: dict[str, Any] = {"timestamp": self.timestamp.isoformat(), **self.metadata}
        for f in fields(self):
            if f.name in _HEADER_FIELDS:
                continue
            value = getattr(self, f.name)
            if value is None or value == "":
                continue
            if isinstance(value, BaseException):
                value = str(value)
            data[f.name] = value
        return data


@dataclass(frozen=True, kw_only=True)
class ConnectorEvent(BaseEvent):
    connector_name: str
    user_id: str = ""
    channel_id: str = ""
    message: str = ""
    error: BaseException | None = None


@dataclass(frozen=True, kw_only=True)
class RouterEvent(BaseEvent):
    message_id: str = ""
    session_id: str = ""
    user_id: str = ""
    content: str = ""
    source: str = ""
    error: BaseException | None = None


@dataclass(frozen=True, kw_only=True)
class LLMPublishedEvent(BaseEvent):
    provider_name: str
    model: str = ""
    tokens: int = 0
    cost: float = 0.0
    duration: float = 0.0
    error: BaseException | None = None


@dataclass(frozen=True, kw_only=True)
class UserEvent(BaseEvent):
    user_id: str
    email: str = ""
    channel: str = ""


@dataclass(frozen=True, kw_only=True)
class SessionEvent(BaseEvent):
    session_id: str
    user_id: str = ""
    message_count: int = 0


@dataclass(frozen=True, kw_only=True)
class SkillEvent(BaseEvent):
    skill_name: str
    input: str = ""
    output: str = ""
    error: BaseException | None = None
    duration: float = 0.0


@dataclass(frozen=True, kw_only=True)
class TaskEvent(BaseEvent):
    task_id: str
    session_id: str = ""
    skill_name: str = ""
    status: str = ""
    input: str = ""
    output: str = ""
    error: str = ""


def connector_started(name: str) -> ConnectorEvent:
    return ConnectorEvent(type=EventType.CONNECTOR_STARTED, connector_name=name)


def connector_stopped(name: str) -> ConnectorEvent:
    return ConnectorEvent(type=EventType.CONNECTOR_STOPPED, connector_name=name)


def connector_message(name: str, user_id: str, channel_id: str, content: str) -> ConnectorEvent:
    return ConnectorEvent(
        type=EventType.CONNECTOR_MESSAGE,
        connector_name=name,
        user_id=user_id,
        channel_id=channel_id,
        message=content,
    )


def connector_error(name: str, error: BaseException, *, user_id: str = "", channel_id: str = "") -> ConnectorEvent:
    return ConnectorEvent(
        type=EventType.CONNECTOR_ERROR,
        connector_name=name,
        user_id=user_id,
        channel_id=channel_id,
        error=error,
    )


def router_message(message_id: str, session_id: str, user_id: str, content: str, source: str) -> RouterEvent:
    return RouterEvent(
        type=EventType.ROUTER_MESSAGE,
        message_id=message_id,
        session_id=session_id,
        user_id=user_id,
        content=content,
        source=source,
    )


def router_error(user_id: str, error: BaseException, source: str) -> RouterEvent:
    return RouterEvent(type=EventType.ROUTER_ERROR, user_id=user_id, error=error, source=source)


def router_lifecycle(event_type: EventType, content: str) -> RouterEvent:
    return RouterEvent(type=event_type, content=content, source="router")
