"""Domain entities and repository ports."""

from nexflow.domain.entities import Channel, ChatMessage, Role, Session, Task, TaskStatus, User
from nexflow.domain.repositories import (
    InMemoryMessageRepository,
    InMemorySessionRepository,
    InMemoryTaskRepository,
    InMemoryUserRepository,
    MessageRepository,
    SessionRepository,
    TaskRepository,
    UserRepository,
)

__all__ = [
    "Channel",
    "ChatMessage",
    "InMemoryMessageRepository",
    "InMemorySessionRepository",
    "InMemoryTaskRepository",
    "InMemoryUserRepository",
    "MessageRepository",
    "Role",
    "Session",
    "SessionRepository",
    "Task",
    "TaskRepository",
    "TaskStatus",
    "User",
    "UserRepository",
]
