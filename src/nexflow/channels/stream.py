"""Bounded inbound message queue that doubles as a finite async iterator."""

from __future__ import annotations

import asyncio
from typing import cast

from nexflow.channels.base import Message

DEFAULT_CAPACITY = 100

_CLOSED = object()


class MessageStream:
    """Queue of inbound messages; iteration ends once ``close`` is called."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=capacity + 1)
        self._capacity = capacity
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def offer(self, message: Message) -> bool:
        """Enqueue without blocking. Returns False when full or closed."""
        if self._closed or self._queue.qsize() >= self._capacity:
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # One slot is reserved for the sentinel.
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> MessageStream:
        return self

    async def __anext__(self) -> Message:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the sentinel for any other reader.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return cast(Message, item)
