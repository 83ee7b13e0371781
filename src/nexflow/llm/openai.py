"""OpenAI-compatible chat completions provider."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
from loguru import logger

from nexflow.errors import ConfigurationError, ProviderError
from nexflow.orchestrator.ports import (
    CompletionRequest,
    CompletionResponse,
    LLMMessage,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_SECONDS = 90
# Rough blended price per token; cost is an estimate, not billing.
COST_PER_TOKEN = 0.000002


def build_payload(
    request: CompletionRequest, model: str, tools: list[ToolDefinition] | None = None, *, stream: bool = False
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": request.model or model,
        "messages": [{"role": m.role, "content": m.content} for m in request.messages],
    }
    if request.max_tokens > 0:
        payload["max_tokens"] = request.max_tokens
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    if tools:
        payload["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters or {"type": "object", "properties": {}},
                },
            }
            for tool in tools
        ]
    if stream:
        payload["stream"] = True
    return payload


def parse_completion(body: dict[str, Any]) -> CompletionResponse:
    choices = body.get("choices") or []
    if not choices:
        raise ProviderError("openai: response has no choices", retryable=False)
    message = choices[0].get("message") or {}
    calls = []
    for raw in message.get("tool_calls") or []:
        function = raw.get("function") or {}
        try:
            arguments = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError:
            arguments = {"raw": function.get("arguments")}
        calls.append(ToolCall(id=raw.get("id", ""), name=function.get("name", ""), arguments=arguments))
    usage = body.get("usage") or {}
    return CompletionResponse(
        message=LLMMessage(role=message.get("role", "assistant"), content=message.get("content") or ""),
        tokens=TokenUsage(
            input=usage.get("prompt_tokens", 0),
            output=usage.get("completion_tokens", 0),
            total=usage.get("total_tokens", 0),
        ),
        model=body.get("model", ""),
        tool_calls=calls,
    )


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not api_key:
            raise ConfigurationError("openai: api_key is required")
        if not model:
            raise ConfigurationError("openai: model is required")
        self._api_key = api_key
        self._model = model
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout

    async def generate(self, request: CompletionRequest) -> CompletionResponse:
        return parse_completion(await self._post(build_payload(request, self._model)))

    async def generate_with_tools(self, request: CompletionRequest, tools: list[ToolDefinition]) -> CompletionResponse:
        return parse_completion(await self._post(build_payload(request, self._model, tools)))

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        payload = build_payload(request, self._model, stream=True)
        try:
            async with (
                aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout)) as session,
                session.post(self._url, json=payload, headers=self._headers) as response,
            ):
                if response.status != 200:
                    raise _status_error(response.status, await response.text())
                async for raw_line in response.content:
                    line = raw_line.decode("utf-8").strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:") :].strip()
                    if data == "[DONE]":
                        return
                    chunk = json.loads(data)
                    for choice in chunk.get("choices") or []:
                        delta = (choice.get("delta") or {}).get("content")
                        if delta:
                            yield delta
        except aiohttp.ClientError as exc:
            raise ProviderError(f"openai: stream failed: {exc!s}") from exc

    def estimate_cost(self, request: CompletionRequest) -> float:
        prompt_tokens = sum(len(m.content) for m in request.messages) // 4
        return (prompt_tokens + (request.max_tokens or 0)) * COST_PER_TOKEN

    @property
    def _url(self) -> str:
        return f"{self._base_url}/chat/completions"

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        logger.debug("openai.request model={} messages={}", payload["model"], len(payload["messages"]))
        try:
            async with (
                aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout)) as session,
                session.post(self._url, json=payload, headers=self._headers) as response,
            ):
                text = await response.text()
                if response.status != 200:
                    raise _status_error(response.status, text)
        except aiohttp.ClientError as exc:
            raise ProviderError(f"openai: request failed: {exc!s}") from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProviderError(f"openai: invalid JSON response: {exc}", retryable=False) from exc


def _status_error(status: int, body: str) -> ProviderError:
    message = body
    try:
        message = json.loads(body).get("error", {}).get("message") or body
    except (json.JSONDecodeError, AttributeError):
        pass
    retryable = status == 429 or status >= 500
    return ProviderError(f"openai: request failed with status {status}: {message}", retryable=retryable)
