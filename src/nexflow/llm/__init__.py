"""LLM provider implementations."""

from nexflow.llm.mock import MockLLMProvider
from nexflow.llm.openai import OpenAIProvider

__all__ = ["MockLLMProvider", "OpenAIProvider"]
