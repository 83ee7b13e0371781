"""Batched in-process event bus."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from nexflow.errors import ConfigurationError
from nexflow.events.types import BaseEvent

EventHandler = Callable[[BaseEvent], Awaitable[None]]

DEFAULT_HANDLER_TIMEOUT = 30.0


@dataclass(frozen=True)
class EventBusConfig:
    """Event bus tuning knobs. Durations are in seconds."""

    batch_size: int = 100
    flush_interval: float = 0.1
    channel_capacity: int = 1000
    handler_timeout: float = DEFAULT_HANDLER_TIMEOUT

    def validate(self) -> None:
        if self.batch_size <= 0:
            raise ConfigurationError("eventbus: batch_size must be positive")
        if self.flush_interval <= 0:
            raise ConfigurationError("eventbus: flush_interval must be positive")
        if self.channel_capacity <= 0:
            raise ConfigurationError("eventbus: channel_capacity must be positive")
        if self.handler_timeout <= 0:
            raise ConfigurationError("eventbus: handler_timeout must be positive")


@dataclass(frozen=True, eq=False)
class Subscription:
    id: str
    types: frozenset[str]
    handler: EventHandler


class EventBus:
    """Publish/subscribe bus that buffers events and dispatches them in batches.

    ``publish`` never blocks: events go into a bounded queue and are dropped with
    a warning when it is full. A consumer task moves queued events into a buffer
    which is flushed when it reaches ``batch_size`` and on every ``flush_interval``
    tick. Every (event, subscription) pair is dispatched on its own task, bounded
    by ``handler_timeout``; handler failures are logged and never propagate.
    """

    def __init__(self, config: EventBusConfig | None = None) -> None:
        self._config = config or EventBusConfig()
        self._config.validate()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._buffer: list[BaseEvent] = []
        self._queue: asyncio.Queue[BaseEvent] = asyncio.Queue(maxsize=self._config.channel_capacity)
        self._consumer: asyncio.Task[None] | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._dispatching: set[asyncio.Task[None]] = set()
        self._background: set[asyncio.Task[Any]] = set()
        self._running = False
        self._closed = False

    @property
    def config(self) -> EventBusConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._closed = False
        self._consumer = asyncio.create_task(self._consume(), name="eventbus.consumer")
        self._ticker = asyncio.create_task(self._tick(), name="eventbus.ticker")
        logger.info(
            "eventbus.start batch_size={} flush_interval={} capacity={}",
            self._config.batch_size,
            self._config.flush_interval,
            self._config.channel_capacity,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._closed = True
        for task in (self._consumer, self._ticker):
            if task is not None:
                task.cancel()
        await asyncio.gather(*(t for t in (self._consumer, self._ticker) if t is not None), return_exceptions=True)
        self._consumer = None
        self._ticker = None

        # Final drain: whatever is still queued gets one last flush.
        while not self._queue.empty():
            self._buffer.append(self._queue.get_nowait())
        self._flush()
        await self._wait_dispatching()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._queue = asyncio.Queue(maxsize=self._config.channel_capacity)
        logger.info("eventbus.stopped")

    def subscribe(self, types: str | Iterable[str], handler: EventHandler) -> Subscription:
        type_set = frozenset(str(t) for t in ([types] if isinstance(types, str) else types))
        subscription = Subscription(id=uuid.uuid4().hex, types=type_set, handler=handler)
        for event_type in type_set:
            self._subscriptions.setdefault(event_type, []).append(subscription)
        logger.debug("eventbus.subscribe id={} types={}", subscription.id, sorted(type_set))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        for event_type in subscription.types:
            remaining = [s for s in self._subscriptions.get(event_type, []) if s.id != subscription.id]
            if remaining:
                self._subscriptions[event_type] = remaining
            else:
                self._subscriptions.pop(event_type, None)
        logger.debug("eventbus.unsubscribe id={}", subscription.id)

    def subscription_count(self, event_type: str) -> int:
        return len(self._subscriptions.get(event_type, ()))

    def all_subscription_counts(self) -> dict[str, int]:
        return {event_type: len(subs) for event_type, subs in self._subscriptions.items()}

    def publish(self, event: BaseEvent | None) -> None:
        if event is None:
            logger.warning("eventbus.publish.nil_event")
            return
        if self._closed:
            logger.warning("eventbus.publish.closed type={}", event.type)
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("eventbus.drop reason=event channel full, dropping event type={}", event.type)

    def publish_async(self, event: BaseEvent | None) -> asyncio.Task[None]:
        async def _publish() -> None:
            self.publish(event)

        task = asyncio.create_task(_publish())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            self._buffer.append(event)
            if len(self._buffer) >= self._config.batch_size:
                self._flush()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._config.flush_interval)
            self._flush()

    def _flush(self) -> None:
        if not self._buffer:
            return
        batch, self._buffer = self._buffer, []
        for event in batch:
            for subscription in list(self._subscriptions.get(event.type, ())):
                task = asyncio.create_task(self._dispatch(subscription, event))
                self._dispatching.add(task)
                task.add_done_callback(self._dispatching.discard)

    async def _dispatch(self, subscription: Subscription, event: BaseEvent) -> None:
        try:
            await asyncio.wait_for(subscription.handler(event), timeout=self._config.handler_timeout)
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            logger.warning(
                "eventbus.handler.timeout subscription={} type={} timeout={}",
                subscription.id,
                event.type,
                self._config.handler_timeout,
            )
        except Exception:
            logger.exception("eventbus.handler.error subscription={} type={}", subscription.id, event.type)

    async def _wait_dispatching(self) -> None:
        while self._dispatching:
            await asyncio.gather(*list(self._dispatching), return_exceptions=True)
