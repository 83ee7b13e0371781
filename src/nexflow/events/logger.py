"""Event subscriber that mirrors bus traffic into the application log."""

from __future__ import annotations

from loguru import logger

from nexflow.events.bus import EventBus, Subscription
from nexflow.events.types import ERROR_EVENT_TYPES, BaseEvent, EventType


class EventLogger:
    def __init__(self) -> None:
        self._subscription: Subscription | None = None

    async def handle(self, event: BaseEvent) -> None:
        level = "ERROR" if event.type in ERROR_EVENT_TYPES else "INFO"
        logger.log(level, "event.received type={} metadata={}", event.type, event.to_metadata())

    def attach(self, bus: EventBus) -> Subscription:
        """Subscribe to every known event type."""
        if self._subscription is None:
            self._subscription = bus.subscribe(list(EventType), self.handle)
        return self._subscription

    def detach(self, bus: EventBus) -> None:
        if self._subscription is not None:
            bus.unsubscribe(self._subscription)
            self._subscription = None
