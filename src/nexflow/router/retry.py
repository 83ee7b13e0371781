"""Exponential backoff retries."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from nexflow.errors import RetryExhaustedError
from nexflow.router.config import RetryConfig

T = TypeVar("T")


def is_retryable_error(error: BaseException | None) -> bool:
    """Everything is retryable except cancellation, deadline expiry and errors flagged ``retryable = False``."""
    if error is None:
        return False
    if isinstance(error, (asyncio.CancelledError, TimeoutError)):
        return False
    return getattr(error, "retryable", True) is not False


class RetryHandler:
    def __init__(self, config: RetryConfig | None = None) -> None:
        self._config = config or RetryConfig()
        self._config.validate()

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def do(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or the attempt budget is spent.

        Sleeps between attempts honour cancellation of the calling task.
        Non-retryable errors are raised immediately; exhaustion raises
        ``RetryExhaustedError`` chained to the last failure.
        """
        attempts = self._config.max_attempts
        if attempts <= 1:
            return await operation()

        delay = self._config.initial_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if not is_retryable_error(exc):
                    raise
                if attempt >= attempts:
                    raise RetryExhaustedError(attempts, exc) from exc
                logger.warning(
                    "retry.attempt operation={} attempt={} max_attempts={} delay={:.3f}s error={}",
                    name,
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
            await asyncio.sleep(delay)
            delay = min(delay * self._config.backoff_multiplier, self._config.max_delay)
