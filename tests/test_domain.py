from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from nexflow.domain import (
    Channel,
    ChatMessage,
    InMemoryMessageRepository,
    InMemorySessionRepository,
    InMemoryTaskRepository,
    InMemoryUserRepository,
    Role,
    Session,
    Task,
    TaskStatus,
    User,
)
from nexflow.errors import AlreadyExistsError, NotFoundError, RepositoryError


@pytest.mark.asyncio
async def test_user_repository_enforces_channel_uniqueness() -> None:
    users = InMemoryUserRepository()
    user = User.new("telegram", "42")
    await users.create(user)

    with pytest.raises(AlreadyExistsError):
        await users.create(User.new(Channel.TELEGRAM, "42"))

    await users.create(User.new(Channel.WEB, "42"))
    assert await users.find_by_channel("telegram", "42") == user
    assert len(await users.list()) == 2

    await users.delete(user.id)
    assert await users.find_by_channel(Channel.TELEGRAM, "42") is None
    with pytest.raises(NotFoundError, match="user not found"):
        await users.delete(user.id)


@pytest.mark.asyncio
async def test_session_repository_checks_owner_and_orders_by_activity() -> None:
    users = InMemoryUserRepository()
    sessions = InMemorySessionRepository(users)
    user = User.new(Channel.WEB, "alice")
    await users.create(user)

    with pytest.raises(RepositoryError, match="unknown user"):
        await sessions.create(Session.new("missing"))

    older = Session.new(user.id)
    newer = Session(id="s-new", user_id=user.id, last_activity_at=older.last_activity_at + timedelta(seconds=5))
    await sessions.create(older)
    await sessions.create(newer)

    assert [s.id for s in await sessions.find_by_user_id(user.id)] == ["s-new", older.id]

    touched = replace(older.touch(), last_activity_at=newer.last_activity_at + timedelta(seconds=5))
    await sessions.update(touched)
    assert (await sessions.find_by_user_id(user.id))[0].id == older.id

    await sessions.delete("s-new")
    with pytest.raises(NotFoundError):
        await sessions.update(newer)


@pytest.mark.asyncio
async def test_message_repository_keeps_chronological_order() -> None:
    messages = InMemoryMessageRepository()
    first = ChatMessage.new("s1", Role.USER, "hi")
    second = ChatMessage.new("s1", "assistant", "hello")
    await messages.create(first)
    await messages.create(second)
    await messages.create(ChatMessage.new("s2", Role.USER, "other"))

    assert [m.content for m in await messages.find_by_session_id("s1")] == ["hi", "hello"]

    await messages.delete(first.id)
    assert await messages.find_by_id(first.id) is None
    await messages.delete_by_session_id("s1")
    assert await messages.find_by_session_id("s1") == []
    assert len(await messages.find_by_session_id("s2")) == 1


@pytest.mark.asyncio
async def test_task_lifecycle_transitions() -> None:
    tasks = InMemoryTaskRepository()
    task = Task.new("s1", "weather", {"city": "Paris"})
    await tasks.create(task)

    assert task.is_pending()
    running = task.start()
    assert running.status == TaskStatus.RUNNING
    done = running.complete("sunny")
    assert (done.status, done.output, done.error) == (TaskStatus.COMPLETED, "sunny", "")
    failed = running.fail("boom")
    assert (failed.status, failed.error) == (TaskStatus.FAILED, "boom")

    await tasks.update(done)
    assert (await tasks.find_by_id(task.id)).status == TaskStatus.COMPLETED
    assert [t.id for t in await tasks.find_by_session_id("s1")] == [task.id]
    with pytest.raises(AlreadyExistsError):
        await tasks.create(task)
