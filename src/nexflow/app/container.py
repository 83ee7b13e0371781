"""Build a runnable application from settings."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import AsyncGenerator
from contextlib import suppress
from dataclasses import dataclass

from loguru import logger

from nexflow.channels.base import Connector
from nexflow.config.settings import Settings
from nexflow.domain.repositories import (
    InMemoryMessageRepository,
    InMemorySessionRepository,
    InMemoryTaskRepository,
    InMemoryUserRepository,
    UserRepository,
)
from nexflow.events.bus import EventBus
from nexflow.events.logger import EventLogger
from nexflow.orchestrator.ports import LLMProvider, SkillRuntime
from nexflow.orchestrator.service import ChatOrchestrator
from nexflow.router.router import MessageRouter


@dataclass
class App:
    """Running set of components. Start order: bus, then router; stop in reverse."""

    settings: Settings
    bus: EventBus | None
    users: UserRepository
    orchestrator: ChatOrchestrator
    router: MessageRouter
    event_logger: EventLogger | None = None

    @property
    def connectors(self) -> list[str]:
        return self.router.list_connectors()

    async def start(self) -> None:
        if self.bus is not None:
            await self.bus.start()
            if self.event_logger is not None:
                self.event_logger.attach(self.bus)
        await self.router.start()
        logger.info("app.started connectors={}", self.connectors)

    async def stop(self) -> None:
        try:
            await self.router.stop()
        finally:
            if self.bus is not None:
                if self.event_logger is not None:
                    self.event_logger.detach(self.bus)
                await self.bus.stop()
        logger.info("app.stopped")

    @contextlib.asynccontextmanager
    async def graceful_shutdown(self) -> AsyncGenerator[asyncio.Event, None]:
        """Yield an event that is set on SIGINT or SIGTERM."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        handled_signals: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
                handled_signals.append(sig)
            except (NotImplementedError, RuntimeError):
                continue
        try:
            yield stop_event
        finally:
            for sig in handled_signals:
                with suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(sig)


def build_llm(settings: Settings) -> LLMProvider:
    if settings.llm.provider == "openai":
        from nexflow.llm.openai import OpenAIProvider

        return OpenAIProvider(
            api_key=settings.llm.api_key,
            model=settings.llm.model,
            base_url=settings.llm.api_base,
            timeout=settings.llm.timeout_seconds,
        )
    from nexflow.llm.mock import MockLLMProvider

    return MockLLMProvider(model=settings.llm.model)


def build_skills(settings: Settings) -> SkillRuntime:
    from nexflow.skills.runtime import LocalSkillRuntime, MockSkillRuntime

    directory = settings.skills.resolve_directory()
    if directory is None:
        return MockSkillRuntime()
    return LocalSkillRuntime(directory, timeout=settings.skills.timeout_seconds)


def build_connectors(settings: Settings, users: UserRepository) -> list[Connector]:
    connectors: list[Connector] = []
    if settings.telegram.enabled:
        from nexflow.channels.telegram import TelegramConfig, TelegramConnector

        config = TelegramConfig(
            bot_token=settings.telegram.bot_token or "",
            allowed_users=set(settings.telegram.allowed_users),
            allowed_chats=set(settings.telegram.allowed_chats),
            webhook_url=settings.telegram.webhook_url,
            webhook_listen=settings.telegram.webhook_listen,
            webhook_port=settings.telegram.webhook_port,
        )
        connectors.append(TelegramConnector(config, users))
    if settings.web.enabled:
        from nexflow.channels.web import WebConnector

        connectors.append(WebConnector(users, host=settings.web.host, port=settings.web.port))
    if settings.discord.enabled:
        from nexflow.channels.mock import MockDiscordConnector

        connectors.append(MockDiscordConnector(users))
    return connectors


def build_app(
    settings: Settings,
    *,
    llm: LLMProvider | None = None,
    skills: SkillRuntime | None = None,
    connectors: list[Connector] | None = None,
) -> App:
    """Wire repositories, providers, orchestrator, router and connectors."""
    bus = EventBus(settings.eventbus.to_config()) if settings.eventbus.enabled else None
    if bus is None:
        logger.info("app.eventbus.disabled")

    users = InMemoryUserRepository()
    orchestrator = ChatOrchestrator(
        users=users,
        sessions=InMemorySessionRepository(users),
        messages=InMemoryMessageRepository(),
        tasks=InMemoryTaskRepository(),
        llm=llm or build_llm(settings),
        skills=skills or build_skills(settings),
        event_bus=bus,
        model=settings.llm.model,
        history_window=settings.llm.history_window,
    )
    router = MessageRouter(bus, orchestrator=orchestrator, config=settings.router.to_config())
    for connector in connectors if connectors is not None else build_connectors(settings, users):
        router.register_connector(connector)

    event_logger = EventLogger() if bus is not None and settings.eventbus.enable_logging else None
    return App(
        settings=settings,
        bus=bus,
        users=users,
        orchestrator=orchestrator,
        router=router,
        event_logger=event_logger,
    )
