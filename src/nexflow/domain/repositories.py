"""Repository ports and in-memory implementations.

The in-memory variants are what the server runs with by default; a persistent
store only has to satisfy the same protocols.
"""

from __future__ import annotations

from typing import Protocol

from nexflow.domain.entities import Channel, ChatMessage, Session, Task, User
from nexflow.errors import AlreadyExistsError, NotFoundError, RepositoryError


class UserRepository(Protocol):
    async def create(self, user: User) -> None: ...

    async def find_by_id(self, user_id: str) -> User | None: ...

    async def find_by_channel(self, channel: Channel | str, channel_id: str) -> User | None: ...

    async def list(self) -> list[User]: ...

    async def delete(self, user_id: str) -> None: ...


class SessionRepository(Protocol):
    async def create(self, session: Session) -> None: ...

    async def find_by_id(self, session_id: str) -> Session | None: ...

    async def find_by_user_id(self, user_id: str) -> list[Session]: ...

    async def update(self, session: Session) -> None: ...

    async def delete(self, session_id: str) -> None: ...


class MessageRepository(Protocol):
    async def create(self, message: ChatMessage) -> None: ...

    async def find_by_id(self, message_id: str) -> ChatMessage | None: ...

    async def find_by_session_id(self, session_id: str) -> list[ChatMessage]: ...

    async def delete(self, message_id: str) -> None: ...

    async def delete_by_session_id(self, session_id: str) -> None: ...


class TaskRepository(Protocol):
    async def create(self, task: Task) -> None: ...

    async def find_by_id(self, task_id: str) -> Task | None: ...

    async def find_by_session_id(self, session_id: str) -> list[Task]: ...

    async def update(self, task: Task) -> None: ...

    async def delete(self, task_id: str) -> None: ...


class InMemoryUserRepository:
    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._by_channel: dict[tuple[str, str], str] = {}

    async def create(self, user: User) -> None:
        key = (str(user.channel), user.channel_id)
        if user.id in self._users or key in self._by_channel:
            raise AlreadyExistsError(f"user already exists: {user.channel}:{user.channel_id}")
        self._users[user.id] = user
        self._by_channel[key] = user.id

    async def find_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def find_by_channel(self, channel: Channel | str, channel_id: str) -> User | None:
        user_id = self._by_channel.get((str(channel), channel_id))
        return self._users.get(user_id) if user_id else None

    async def list(self) -> list[User]:
        return sorted(self._users.values(), key=lambda u: u.created_at)

    async def delete(self, user_id: str) -> None:
        user = self._users.pop(user_id, None)
        if user is None:
            raise NotFoundError(f"user not found: {user_id}")
        self._by_channel.pop((str(user.channel), user.channel_id), None)


class InMemorySessionRepository:
    def __init__(self, users: UserRepository | None = None) -> None:
        self._users = users
        self._sessions: dict[str, Session] = {}

    async def create(self, session: Session) -> None:
        if session.id in self._sessions:
            raise AlreadyExistsError(f"session already exists: {session.id}")
        if self._users is not None and await self._users.find_by_id(session.user_id) is None:
            raise RepositoryError(f"session references unknown user: {session.user_id}")
        self._sessions[session.id] = session

    async def find_by_id(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def find_by_user_id(self, user_id: str) -> list[Session]:
        # Most recently active first.
        sessions = [s for s in self._sessions.values() if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.last_activity_at, reverse=True)

    async def update(self, session: Session) -> None:
        if session.id not in self._sessions:
            raise NotFoundError(f"session not found: {session.id}")
        self._sessions[session.id] = session

    async def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise NotFoundError(f"session not found: {session_id}")


class InMemoryMessageRepository:
    def __init__(self) -> None:
        self._messages: dict[str, ChatMessage] = {}

    async def create(self, message: ChatMessage) -> None:
        if message.id in self._messages:
            raise AlreadyExistsError(f"message already exists: {message.id}")
        self._messages[message.id] = message

    async def find_by_id(self, message_id: str) -> ChatMessage | None:
        return self._messages.get(message_id)

    async def find_by_session_id(self, session_id: str) -> list[ChatMessage]:
        # Insertion order doubles as chronological order.
        return [m for m in self._messages.values() if m.session_id == session_id]

    async def delete(self, message_id: str) -> None:
        if self._messages.pop(message_id, None) is None:
            raise NotFoundError(f"message not found: {message_id}")

    async def delete_by_session_id(self, session_id: str) -> None:
        for message_id in [m.id for m in self._messages.values() if m.session_id == session_id]:
            del self._messages[message_id]


class InMemoryTaskRepository:
    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    async def create(self, task: Task) -> None:
        if task.id in self._tasks:
            raise AlreadyExistsError(f"task already exists: {task.id}")
        self._tasks[task.id] = task

    async def find_by_id(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    async def find_by_session_id(self, session_id: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.session_id == session_id]

    async def update(self, task: Task) -> None:
        if task.id not in self._tasks:
            raise NotFoundError(f"task not found: {task.id}")
        self._tasks[task.id] = task

    async def delete(self, task_id: str) -> None:
        if self._tasks.pop(task_id, None) is None:
            raise NotFoundError(f"task not found: {task_id}")
