"""Ports consumed and exposed by the orchestrator, with their data shapes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from nexflow.domain.entities import ChatMessage, Session, Task


@dataclass(frozen=True)
class LLMMessage:
    role: str
    content: str


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompletionRequest:
    messages: list[LLMMessage]
    model: str = ""
    max_tokens: int = 0
    temperature: float | None = None


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0
    total: int = 0


@dataclass(frozen=True)
class CompletionResponse:
    message: LLMMessage
    tokens: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class LLMProvider(Protocol):
    name: str

    async def generate(self, request: CompletionRequest) -> CompletionResponse: ...

    async def generate_with_tools(
        self, request: CompletionRequest, tools: list[ToolDefinition]
    ) -> CompletionResponse: ...

    def stream(self, request: CompletionRequest) -> AsyncIterator[str]: ...

    def estimate_cost(self, request: CompletionRequest) -> float: ...


@dataclass(frozen=True)
class SkillExecution:
    success: bool
    output: str = ""
    error: str = ""


class SkillRuntime(Protocol):
    async def execute(self, skill_name: str, input: dict[str, Any]) -> SkillExecution: ...  # noqa: A002

    async def validate(self, skill_name: str) -> None: ...

    async def list(self) -> list[str]: ...

    async def get_skill(self, name: str) -> dict[str, Any]: ...


@dataclass(frozen=True)
class OrchestrationOptions:
    max_output_tokens: int = 1000
    model: str = ""


@dataclass(frozen=True)
class OrchestrationRequest:
    user_id: str
    content: str
    options: OrchestrationOptions = field(default_factory=OrchestrationOptions)


@dataclass(frozen=True)
class OrchestrationResponse:
    success: bool
    assistant_message: ChatMessage | None = None
    tasks: list[Task] = field(default_factory=list)
    error: str | None = None


class Orchestrator(Protocol):
    async def process_message(self, request: OrchestrationRequest) -> OrchestrationResponse: ...

    async def get_conversation(self, session_id: str) -> list[ChatMessage]: ...

    async def get_user_sessions(self, user_id: str) -> list[Session]: ...

    async def create_session(self, user_id: str) -> Session: ...

    async def execute_skill(self, session_id: str, skill_name: str, input: dict[str, Any]) -> SkillExecution: ...  # noqa: A002

    async def get_session_tasks(self, session_id: str) -> list[Task]: ...
