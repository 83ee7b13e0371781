"""Conversation orchestration."""

from nexflow.orchestrator.ports import (
    CompletionRequest,
    CompletionResponse,
    LLMMessage,
    LLMProvider,
    OrchestrationOptions,
    OrchestrationRequest,
    OrchestrationResponse,
    Orchestrator,
    SkillExecution,
    SkillRuntime,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from nexflow.orchestrator.service import ChatOrchestrator

__all__ = [
    "ChatOrchestrator",
    "CompletionRequest",
    "CompletionResponse",
    "LLMMessage",
    "LLMProvider",
    "OrchestrationOptions",
    "OrchestrationRequest",
    "OrchestrationResponse",
    "Orchestrator",
    "SkillExecution",
    "SkillRuntime",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
]
