"""Conversation orchestrator backed by repositories, an LLM provider and a skill runtime."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

from loguru import logger

from nexflow.domain.entities import ChatMessage, Role, Session, Task
from nexflow.domain.repositories import MessageRepository, SessionRepository, TaskRepository, UserRepository
from nexflow.errors import NotFoundError, OrchestratorError, ProviderError
from nexflow.events.bus import EventBus
from nexflow.events.types import (
    BaseEvent,
    EventType,
    LLMPublishedEvent,
    SessionEvent,
    SkillEvent,
    TaskEvent,
)
from nexflow.orchestrator.ports import (
    CompletionRequest,
    CompletionResponse,
    LLMMessage,
    LLMProvider,
    OrchestrationRequest,
    OrchestrationResponse,
    SkillExecution,
    SkillRuntime,
    ToolDefinition,
)

DEFAULT_HISTORY_WINDOW = 50


class ChatOrchestrator:
    """Turn a user message into an assistant reply and keep the conversation persisted."""

    def __init__(
        self,
        *,
        users: UserRepository,
        sessions: SessionRepository,
        messages: MessageRepository,
        tasks: TaskRepository,
        llm: LLMProvider,
        skills: SkillRuntime | None = None,
        event_bus: EventBus | None = None,
        model: str = "",
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._messages = messages
        self._tasks = tasks
        self._llm = llm
        self._skills = skills
        self._bus = event_bus
        self._model = model
        self._history_window = history_window

    async def process_message(self, request: OrchestrationRequest) -> OrchestrationResponse:
        user = await self._users.find_by_id(request.user_id)
        if user is None:
            raise OrchestratorError(f"user not found: {request.user_id}", retryable=False)

        session = await self._latest_or_new_session(user.id)
        user_message = ChatMessage.new(session.id, Role.USER, request.content)
        await self._messages.create(user_message)

        try:
            history = await self._history(session.id)
            completion = await self._complete(history, request)
        except asyncio.CancelledError:
            await self._discard(user_message)
            raise
        except Exception as exc:
            await self._discard(user_message)
            self._publish(BaseEvent(type=EventType.ORCHESTRATOR_ERROR, metadata={"error": str(exc)}))
            raise OrchestratorError(
                f"failed to generate response: {exc}", retryable=getattr(exc, "retryable", True)
            ) from exc

        assistant = ChatMessage.new(session.id, Role.ASSISTANT, completion.message.content)
        await self._messages.create(assistant)
        await self._sessions.update(session.touch())

        tasks = [await self._create_task(session.id, call.name, call.arguments) for call in completion.tool_calls]
        logger.info(
            "orchestrator.message user_id={} session_id={} tokens={} tasks={}",
            user.id,
            session.id,
            completion.tokens.total,
            len(tasks),
        )
        return OrchestrationResponse(success=True, assistant_message=assistant, tasks=tasks)

    async def get_conversation(self, session_id: str) -> list[ChatMessage]:
        await self._require_session(session_id)
        return await self._messages.find_by_session_id(session_id)

    async def get_user_sessions(self, user_id: str) -> list[Session]:
        return await self._sessions.find_by_user_id(user_id)

    async def create_session(self, user_id: str) -> Session:
        if await self._users.find_by_id(user_id) is None:
            raise NotFoundError(f"user not found: {user_id}")
        session = Session.new(user_id)
        await self._sessions.create(session)
        self._publish(SessionEvent(type=EventType.SESSION_CREATED, session_id=session.id, user_id=user_id))
        logger.info("orchestrator.session.created session_id={} user_id={}", session.id, user_id)
        return session

    async def execute_skill(self, session_id: str, skill_name: str, input: dict[str, Any]) -> SkillExecution:  # noqa: A002
        if self._skills is None:
            raise OrchestratorError("no skill runtime configured", retryable=False)
        await self._require_session(session_id)

        task = await self._create_task(session_id, skill_name, input)
        task = task.start()
        await self._tasks.update(task)
        self._publish_task(EventType.TASK_STARTED, task)
        self._publish(SkillEvent(type=EventType.SKILL_STARTED, skill_name=skill_name, input=_dumps(input)))

        started = time.monotonic()
        try:
            result = await self._skills.execute(skill_name, input)
        except asyncio.CancelledError:
            await self._tasks.update(task.fail("cancelled"))
            raise
        except Exception as exc:
            logger.exception("orchestrator.skill.error skill={} task_id={}", skill_name, task.id)
            result = SkillExecution(success=False, error=str(exc))
        duration = time.monotonic() - started

        if result.success:
            task = task.complete(result.output)
            self._publish(
                SkillEvent(
                    type=EventType.SKILL_COMPLETED,
                    skill_name=skill_name,
                    input=_dumps(input),
                    output=result.output,
                    duration=duration,
                )
            )
            self._publish_task(EventType.TASK_COMPLETED, task)
        else:
            task = task.fail(result.error)
            self._publish(
                SkillEvent(
                    type=EventType.SKILL_FAILED,
                    skill_name=skill_name,
                    input=_dumps(input),
                    error=RuntimeError(result.error),
                    duration=duration,
                )
            )
            self._publish_task(EventType.TASK_FAILED, task)
        await self._tasks.update(task)
        logger.info("orchestrator.skill.done skill={} task_id={} status={}", skill_name, task.id, task.status)
        return result

    async def get_session_tasks(self, session_id: str) -> list[Task]:
        return await self._tasks.find_by_session_id(session_id)

    async def _latest_or_new_session(self, user_id: str) -> Session:
        sessions = await self._sessions.find_by_user_id(user_id)
        if sessions:
            return sessions[0]
        return await self.create_session(user_id)

    async def _require_session(self, session_id: str) -> Session:
        session = await self._sessions.find_by_id(session_id)
        if session is None:
            raise NotFoundError(f"session not found: {session_id}")
        return session

    async def _history(self, session_id: str) -> list[LLMMessage]:
        messages = await self._messages.find_by_session_id(session_id)
        recent = messages[-self._history_window :] if self._history_window > 0 else messages
        return [LLMMessage(role=str(m.role), content=m.content) for m in recent]

    async def _complete(self, history: list[LLMMessage], request: OrchestrationRequest) -> CompletionResponse:
        completion_request = CompletionRequest(
            messages=history,
            model=request.options.model or self._model,
            max_tokens=request.options.max_output_tokens,
        )
        tools = await self._tool_definitions()
        provider = getattr(self._llm, "name", type(self._llm).__name__)
        self._publish(
            LLMPublishedEvent(type=EventType.LLM_REQUEST, provider_name=provider, model=completion_request.model)
        )
        started = time.monotonic()
        try:
            if tools:
                completion = await self._llm.generate_with_tools(completion_request, tools)
            else:
                completion = await self._llm.generate(completion_request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._publish(
                LLMPublishedEvent(
                    type=EventType.LLM_ERROR,
                    provider_name=provider,
                    model=completion_request.model,
                    duration=time.monotonic() - started,
                    error=exc,
                )
            )
            if isinstance(exc, ProviderError):
                raise
            raise ProviderError(f"{provider}: {exc}") from exc

        self._publish(
            LLMPublishedEvent(
                type=EventType.LLM_RESPONSE,
                provider_name=provider,
                model=completion.model or completion_request.model,
                tokens=completion.tokens.total,
                cost=self._llm.estimate_cost(completion_request),
                duration=time.monotonic() - started,
            )
        )
        return completion

    async def _tool_definitions(self) -> list[ToolDefinition]:
        if self._skills is None:
            return []
        definitions = []
        for name in await self._skills.list():
            skill = await self._skills.get_skill(name)
            definitions.append(
                ToolDefinition(
                    name=name,
                    description=str(skill.get("description", "")),
                    parameters=dict(skill.get("parameters", {})),
                )
            )
        return definitions

    async def _create_task(self, session_id: str, skill_name: str, input: dict[str, Any]) -> Task:  # noqa: A002
        task = Task.new(session_id, skill_name, input)
        await self._tasks.create(task)
        self._publish_task(EventType.TASK_CREATED, task)
        return task

    async def _discard(self, message: ChatMessage) -> None:
        try:
            await self._messages.delete(message.id)
        except NotFoundError:
            pass

    def _publish_task(self, event_type: EventType, task: Task) -> None:
        self._publish(
            TaskEvent(
                type=event_type,
                task_id=task.id,
                session_id=task.session_id,
                skill_name=task.skill,
                status=str(task.status),
                input=_dumps(task.input),
                output=task.output,
                error=task.error,
            )
        )

    def _publish(self, event: BaseEvent) -> None:
        if self._bus is not None:
            self._bus.publish(event)


def _dumps(value: dict[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str) if value else ""
