"""In-memory connectors used by tests and the interactive console."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from loguru import logger

from nexflow.channels.base import Connector, Message, Response
from nexflow.channels.stream import DEFAULT_CAPACITY, MessageStream
from nexflow.domain.entities import Channel, User
from nexflow.domain.repositories import InMemoryUserRepository, UserRepository
from nexflow.errors import ConnectorError


class MockConnector(Connector):
    """Connector with no external I/O.

    Inbound messages are injected with ``send_test_message``; outbound
    responses are recorded and exposed through ``get_responses``.
    """

    name = "mock"
    channel = Channel.WEB

    def __init__(self, users: UserRepository | None = None, *, capacity: int = DEFAULT_CAPACITY) -> None:
        self._users = users if users is not None else InMemoryUserRepository()
        self._capacity = capacity
        self._incoming = MessageStream(capacity)
        self._running = False
        self._responses: list[tuple[str, Response]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            raise ConnectorError(f"{self.name} connector is already running")
        self._running = True
        logger.info("{}.connector.start mode=mock", self.name)

    async def stop(self) -> None:
        if not self._running:
            raise ConnectorError(f"{self.name} connector is not running")
        self._running = False
        self._incoming.close()
        self._incoming = MessageStream(self._capacity)
        logger.info("{}.connector.stopped", self.name)

    def incoming(self) -> AsyncIterator[Message]:
        return self._incoming

    async def send_response(self, user_id: str, response: Response) -> None:
        if not self._running:
            raise ConnectorError(f"{self.name} connector is not running")
        self._responses.append((user_id, response))
        logger.debug("{}.connector.send user_id={} content_len={}", self.name, user_id, len(response.content))

    async def get_user(self, channel_user_id: str) -> User | None:
        return await self._users.find_by_channel(self.channel, channel_user_id)

    async def create_user(self, channel_user_id: str) -> User:
        if await self._users.find_by_channel(self.channel, channel_user_id) is not None:
            raise ConnectorError(f"user already exists: {channel_user_id}")
        user = User.new(self.channel, channel_user_id)
        await self._users.create(user)
        return user

    async def send_test_message(
        self,
        user_id: str,
        channel_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not self._running:
            raise ConnectorError(f"{self.name} connector is not running")
        message = Message(user_id=user_id, channel_id=channel_id, content=content, metadata=dict(metadata or {}))
        if not self._incoming.offer(message):
            raise ConnectorError("incoming channel is full")

    def get_responses(self) -> list[tuple[str, Response]]:
        return list(self._responses)

    def clear_responses(self) -> None:
        self._responses.clear()


class MockTelegramConnector(MockConnector):
    name = "telegram"
    channel = Channel.TELEGRAM


class MockWebConnector(MockConnector):
    name = "web"
    channel = Channel.WEB


class MockDiscordConnector(MockConnector):
    name = "discord"
    channel = Channel.DISCORD
