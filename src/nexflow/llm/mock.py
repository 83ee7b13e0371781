"""Deterministic in-process LLM provider."""

from __future__ import annotations

from collections.abc import AsyncIterator

from nexflow.orchestrator.ports import (
    CompletionRequest,
    CompletionResponse,
    LLMMessage,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)

COST_PER_TOKEN = 0.00002


class MockLLMProvider:
    name = "mock"

    def __init__(
        self,
        *,
        reply: str | None = None,
        tool_calls: list[ToolCall] | None = None,
        error: Exception | None = None,
        model: str = "mock-model",
    ) -> None:
        self._reply = reply
        self._tool_calls = list(tool_calls or [])
        self._error = error
        self._model = model
        self.requests: list[CompletionRequest] = []

    async def generate(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        content = self._reply if self._reply is not None else f"Mock response for {len(request.messages)} messages"
        prompt_tokens = sum(len(m.content.split()) for m in request.messages)
        output_tokens = len(content.split())
        return CompletionResponse(
            message=LLMMessage(role="assistant", content=content),
            tokens=TokenUsage(input=prompt_tokens, output=output_tokens, total=prompt_tokens + output_tokens),
            model=request.model or self._model,
        )

    async def generate_with_tools(self, request: CompletionRequest, tools: list[ToolDefinition]) -> CompletionResponse:
        response = await self.generate(request)
        known = {tool.name for tool in tools}
        calls = [call for call in self._tool_calls if call.name in known]
        return CompletionResponse(message=response.message, tokens=response.tokens, model=response.model, tool_calls=calls)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        response = await self.generate(request)
        words = response.message.content.split(" ")
        for index, word in enumerate(words):
            yield word if index == len(words) - 1 else f"{word} "

    def estimate_cost(self, request: CompletionRequest) -> float:
        return (request.max_tokens or 100) * COST_PER_TOKEN
