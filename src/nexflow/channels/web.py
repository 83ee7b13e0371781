"""WebSocket connector for browser and script clients.

Clients send JSON frames ``{"user_id": ..., "content": ..., "metadata": {...}}``.
A connection is bound to the ``user_id`` of the frames it sends and receives
every reply addressed to that user as ``{"type": "response", ...}``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any

import websockets
from loguru import logger
from websockets.asyncio.server import Server, ServerConnection, serve

from nexflow.channels.base import Connector, Message, Response
from nexflow.channels.stream import DEFAULT_CAPACITY, MessageStream
from nexflow.domain.entities import Channel, User
from nexflow.domain.repositories import UserRepository
from nexflow.errors import ConnectorError


def response_frame(response: Response) -> str:
    return json.dumps(
        {
            "type": "response",
            "kind": str(response.kind),
            "content": response.content,
            "caption": response.caption,
            "media": response.media,
            "buttons": [asdict(b) for b in response.buttons or ()],
            "metadata": response.metadata,
        },
        ensure_ascii=False,
        default=str,
    )


def parse_frame(raw: str | bytes) -> Message:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ConnectorError(f"invalid frame: {exc}") from exc
    if not isinstance(data, dict):
        raise ConnectorError("invalid frame: expected an object")
    user_id = data.get("user_id")
    content = data.get("content")
    metadata = data.get("metadata") or {}
    if not isinstance(user_id, str) or not user_id:
        raise ConnectorError("invalid frame: user_id must be a non-empty string")
    if not isinstance(content, str):
        raise ConnectorError("invalid frame: content must be a string")
    if not isinstance(metadata, dict):
        raise ConnectorError("invalid frame: metadata must be an object")
    channel_id = data.get("channel_id") or user_id
    return Message(user_id=user_id, channel_id=str(channel_id), content=content, metadata=metadata)


class WebConnector(Connector):
    name = "web"

    def __init__(
        self,
        users: UserRepository,
        *,
        host: str = "localhost",
        port: int = 8765,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        self._users = users
        self._host = host
        self._port = port
        self._capacity = capacity
        self._incoming = MessageStream(capacity)
        self._server: Server | None = None
        self._connections: dict[str, set[Any]] = {}
        self._running = False

    @property
    def url(self) -> str:
        return f"ws://{self._host}:{self._port}"

    @property
    def is_running(self) -> bool:
        return self._running

    def incoming(self) -> AsyncIterator[Message]:
        return self._incoming

    async def start(self) -> None:
        if self._running:
            raise ConnectorError("web connector is already running")
        self._server = await serve(self._handle_client, self._host, self._port)
        self._running = True
        logger.info("web.connector.start url={}", self.url)

    async def stop(self) -> None:
        if not self._running:
            raise ConnectorError("web connector is not running")
        self._running = False
        self._incoming.close()
        self._incoming = MessageStream(self._capacity)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._connections.clear()
        logger.info("web.connector.stopped")

    async def get_user(self, channel_user_id: str) -> User | None:
        return await self._users.find_by_channel(Channel.WEB, channel_user_id)

    async def create_user(self, channel_user_id: str) -> User:
        user = User.new(Channel.WEB, channel_user_id)
        await self._users.create(user)
        return user

    async def send_response(self, user_id: str, response: Response) -> None:
        if not self._running:
            raise ConnectorError("web connector is not running")
        connections = list(self._connections.get(user_id, ()))
        if not connections:
            raise ConnectorError(f"no open connection for user: {user_id}")
        frame = response_frame(response)
        for ws in connections:
            try:
                await ws.send(frame)
            except websockets.ConnectionClosed:
                self._unbind(user_id, ws)

    async def _handle_client(self, ws: ServerConnection) -> None:
        bound: set[str] = set()
        logger.info("web.client.connected remote={}", ws.remote_address)
        try:
            async for raw in ws:
                user_id = await self._handle_frame(ws, raw)
                if user_id is not None:
                    bound.add(user_id)
        except websockets.ConnectionClosed:
            pass
        finally:
            for user_id in bound:
                self._unbind(user_id, ws)
            logger.info("web.client.disconnected remote={}", ws.remote_address)

    async def _handle_frame(self, ws: Any, raw: str | bytes) -> str | None:
        try:
            message = parse_frame(raw)
        except ConnectorError as exc:
            await ws.send(json.dumps({"type": "error", "error": str(exc)}))
            return None

        self._connections.setdefault(message.user_id, set()).add(ws)
        if not self._incoming.offer(message):
            logger.warning("web.connector.drop reason=incoming channel full user_id={}", message.user_id)
            await ws.send(json.dumps({"type": "error", "error": "incoming channel is full"}))
        return message.user_id

    def _unbind(self, user_id: str, ws: Any) -> None:
        connections = self._connections.get(user_id)
        if connections is None:
            return
        connections.discard(ws)
        if not connections:
            self._connections.pop(user_id, None)
