"""Domain entities."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class Channel(StrEnum):
    TELEGRAM = "telegram"
    DISCORD = "discord"
    WEB = "web"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TaskStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class User:
    """A person known to the system, identified independently of any transport."""

    id: str
    channel: Channel
    channel_id: str
    created_at: datetime = field(default_factory=_now)

    @classmethod
    def new(cls, channel: Channel | str, channel_id: str) -> User:
        return cls(id=_new_id(), channel=Channel(channel), channel_id=channel_id)


@dataclass(frozen=True)
class Session:
    id: str
    user_id: str
    created_at: datetime = field(default_factory=_now)
    last_activity_at: datetime = field(default_factory=_now)

    @classmethod
    def new(cls, user_id: str) -> Session:
        return cls(id=_new_id(), user_id=user_id)

    def touch(self) -> Session:
        return replace(self, last_activity_at=_now())


@dataclass(frozen=True)
class ChatMessage:
    """One persisted turn of a conversation."""

    id: str
    session_id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=_now)

    @classmethod
    def new(cls, session_id: str, role: Role | str, content: str) -> ChatMessage:
        return cls(id=_new_id(), session_id=session_id, role=Role(role), content=content)


@dataclass(frozen=True)
class Task:
    """A skill invocation tracked against a session."""

    id: str
    session_id: str
    skill: str
    input: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    output: str = ""
    error: str = ""
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def new(cls, session_id: str, skill: str, input: dict[str, Any] | None = None) -> Task:  # noqa: A002
        return cls(id=_new_id(), session_id=session_id, skill=skill, input=dict(input or {}))

    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING

    def start(self) -> Task:
        return replace(self, status=TaskStatus.RUNNING, updated_at=_now())

    def complete(self, output: str) -> Task:
        return replace(self, status=TaskStatus.COMPLETED, output=output, error="", updated_at=_now())

    def fail(self, error: str) -> Task:
        return replace(self, status=TaskStatus.FAILED, error=error, updated_at=_now())
