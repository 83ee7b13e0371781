"""Message router: fans messages in from connectors and replies through them."""

from __future__ import annotations

import asyncio
from enum import StrEnum

from loguru import logger

from nexflow.channels.base import Connector, Message, Response, ResponseKind
from nexflow.domain.entities import Role, User
from nexflow.errors import ConnectorError, OrchestratorError, ValidationError
from nexflow.events import types as events
from nexflow.events.bus import EventBus
from nexflow.events.types import BaseEvent, EventType
from nexflow.orchestrator.ports import OrchestrationOptions, OrchestrationRequest, Orchestrator
from nexflow.router.config import RouterConfig
from nexflow.router.retry import RetryHandler
from nexflow.router.validator import MessageValidator

VALIDATION_ERROR_REPLY = "Sorry, your message could not be processed. Please check the format and try again."
IDENTITY_ERROR_REPLY = "Sorry, I encountered an error processing your request."
GENERATION_ERROR_REPLY = "Sorry, I encountered an error generating a response."


class RouterState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class MessageRouter:
    """Coordinate connectors, the orchestrator and the event bus.

    One worker task per connector drains its ``incoming`` sequence; each
    message is handled on its own task so a slow orchestration never blocks
    the worker. Replies across users are therefore not ordered.
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        *,
        orchestrator: Orchestrator | None = None,
        config: RouterConfig | None = None,
    ) -> None:
        self._config = config or RouterConfig()
        self._config.validate()
        self._bus = event_bus
        self._orchestrator = orchestrator
        self._validator = MessageValidator(
            enabled=self._config.validation_enabled,
            max_message_length=self._config.max_message_length,
        )
        self._retry = RetryHandler(self._config.retry)
        self._connectors: dict[str, Connector] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._handlers: set[asyncio.Task[None]] = set()
        self._state = RouterState.IDLE
        self._lock = asyncio.Lock()

    @property
    def state(self) -> RouterState:
        return self._state

    @property
    def config(self) -> RouterConfig:
        return self._config

    def set_orchestrator(self, orchestrator: Orchestrator | None) -> None:
        self._orchestrator = orchestrator

    def register_connector(self, connector: Connector) -> None:
        if connector.name in self._connectors:
            logger.warning("router.connector.replace name={}", connector.name)
        self._connectors[connector.name] = connector
        logger.info("router.connector.registered name={}", connector.name)

    async def unregister_connector(self, name: str) -> None:
        async with self._lock:
            connector = self._connectors.pop(name, None)
            if connector is None:
                return
            worker = self._workers.pop(name, None)
            if worker is not None:
                worker.cancel()
                await asyncio.gather(worker, return_exceptions=True)
            if connector.is_running:
                try:
                    await connector.stop()
                except Exception:
                    logger.exception("router.connector.stop.error name={}", name)
                else:
                    self._publish(events.connector_stopped(name))
            logger.info("router.connector.unregistered name={}", name)

    def get_connector(self, name: str) -> Connector | None:
        return self._connectors.get(name)

    def list_connectors(self) -> list[str]:
        return list(self._connectors)

    async def start(self) -> None:
        async with self._lock:
            if self._state == RouterState.RUNNING:
                logger.warning("router.start.already_running")
                return
            if self._orchestrator is None:
                logger.warning("router.start.no_orchestrator messages will be dropped")

            connectors = dict(self._connectors)
            logger.info("router.start connectors={}", list(connectors))
            for name, connector in connectors.items():
                if connector.is_running:
                    continue
                try:
                    await connector.start()
                except Exception as exc:
                    self._publish(events.connector_error(name, exc))
                    raise ConnectorError(f"failed to start connector {name}: {exc}") from exc
                self._publish(events.connector_started(name))

            for name, connector in connectors.items():
                self._workers[name] = asyncio.create_task(self._process_messages(connector), name=f"router.{name}")
            self._state = RouterState.RUNNING
            self._publish(events.router_lifecycle(EventType.ROUTER_STARTED, "message router started"))

    async def stop(self) -> None:
        async with self._lock:
            if self._state != RouterState.RUNNING and not any(c.is_running for c in self._connectors.values()):
                return
            logger.info("router.stop")
            pending = [*self._workers.values(), *self._handlers]
            self._workers.clear()
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for name, connector in list(self._connectors.items()):
                if not connector.is_running:
                    continue
                try:
                    await connector.stop()
                except Exception:
                    logger.exception("router.connector.stop.error name={}", name)
                    continue
                self._publish(events.connector_stopped(name))

            self._state = RouterState.STOPPED
            self._publish(events.router_lifecycle(EventType.ROUTER_STOPPED, "message router stopped"))
            logger.info("router.stopped")

    async def _process_messages(self, connector: Connector) -> None:
        logger.debug("router.worker.start connector={}", connector.name)
        async for message in connector.incoming():
            task = asyncio.create_task(self.handle_message(connector, message))
            self._handlers.add(task)
            task.add_done_callback(self._handlers.discard)
        logger.debug("router.worker.exit connector={}", connector.name)

    async def handle_message(self, connector: Connector, message: Message) -> None:
        try:
            await self._handle(connector, message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("router.message.error connector={} user_id={}", connector.name, message.user_id)

    async def _handle(self, connector: Connector, message: Message) -> None:
        source = connector.name
        self._publish(events.connector_message(source, message.user_id, message.channel_id, message.content))

        orchestrator = self._orchestrator
        if orchestrator is None:
            logger.warning("router.message.dropped reason=no orchestrator connector={} user_id={}", source, message.user_id)
            return

        try:
            self._validator.validate(message)
        except ValidationError as exc:
            logger.warning("router.message.invalid connector={} user_id={} error={}", source, message.user_id, exc)
            self._publish(events.router_error(message.user_id, exc, source))
            await self._send_error(connector, message.user_id, VALIDATION_ERROR_REPLY)
            return

        try:
            user = await self._resolve_user(connector, message.user_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("router.user.error connector={} user_id={} error={}", source, message.user_id, exc)
            self._publish(events.router_error(message.user_id, exc, source))
            await self._send_error(connector, message.user_id, IDENTITY_ERROR_REPLY)
            return

        request = OrchestrationRequest(
            user_id=user.id,
            content=message.content,
            options=OrchestrationOptions(max_output_tokens=self._config.max_output_tokens),
        )
        try:
            response = await self._retry.do("orchestrator.process_message", lambda: orchestrator.process_message(request))
            if not response.success:
                raise OrchestratorError(response.error or "orchestrator reported failure", retryable=False)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("router.orchestrator.error connector={} user_id={} error={}", source, user.id, exc)
            self._publish(events.router_error(user.id, exc, source))
            await self._send_error(connector, message.user_id, GENERATION_ERROR_REPLY)
            return

        assistant = response.assistant_message
        if assistant is None or assistant.role != Role.ASSISTANT:
            logger.warning("router.message.no_reply connector={} user_id={}", source, user.id)
            return

        reply = Response(
            content=assistant.content,
            kind=ResponseKind.TEXT,
            metadata={"message_id": assistant.id, "session_id": assistant.session_id},
        )
        try:
            await connector.send_response(message.user_id, reply)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("router.send.error connector={} user_id={} error={}", source, message.user_id, exc)
            self._publish(events.router_error(user.id, exc, source))
            return

        if response.tasks:
            logger.info("router.message.tasks connector={} tasks={}", source, [t.id for t in response.tasks])
        self._publish(events.router_message(assistant.id, assistant.session_id, user.id, assistant.content, source))

    async def _resolve_user(self, connector: Connector, channel_user_id: str) -> User:
        user = await connector.get_user(channel_user_id)
        if user is not None:
            return user
        return await connector.create_user(channel_user_id)

    async def _send_error(self, connector: Connector, user_id: str, text: str) -> None:
        try:
            await connector.send_response(user_id, Response(content=text, metadata={"error": True}))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("router.send_error.failed connector={} user_id={} error={}", connector.name, user_id, exc)
            self._publish(events.router_error(user_id, exc, connector.name))

    def _publish(self, event: BaseEvent) -> None:
        if self._bus is not None:
            self._bus.publish(event)
