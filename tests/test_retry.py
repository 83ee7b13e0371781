from __future__ import annotations

import asyncio

import pytest

import nexflow.router.retry as retry_module
from nexflow.errors import ConfigurationError, OrchestratorError, RetryExhaustedError, ValidationError
from nexflow.router import RetryConfig, RetryHandler, is_retryable_error


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    real_sleep = asyncio.sleep

    async def _fake_sleep(delay: float) -> None:
        recorded.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(retry_module.asyncio, "sleep", _fake_sleep)
    return recorded


def _flaky(failures: int, error: Exception | None = None):
    calls = {"count": 0}

    async def _operation() -> str:
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error or RuntimeError(f"failure {calls['count']}")
        return "ok"

    return _operation, calls


@pytest.mark.asyncio
async def test_succeeds_on_third_attempt_with_exponential_delays(sleeps: list[float]) -> None:
    handler = RetryHandler(RetryConfig(max_attempts=3, initial_delay=0.1, max_delay=5.0, backoff_multiplier=2.0))
    operation, calls = _flaky(2)

    result = await handler.do("process", operation)

    assert result == "ok"
    assert calls["count"] == 3
    assert sleeps == pytest.approx([0.1, 0.2])


@pytest.mark.asyncio
async def test_delay_is_capped_by_max_delay(sleeps: list[float]) -> None:
    handler = RetryHandler(RetryConfig(max_attempts=5, initial_delay=1.0, max_delay=3.0, backoff_multiplier=2.0))
    operation, _ = _flaky(10)

    with pytest.raises(RetryExhaustedError):
        await handler.do("process", operation)

    assert sleeps == pytest.approx([1.0, 2.0, 3.0, 3.0])


@pytest.mark.asyncio
async def test_exhaustion_wraps_last_error(sleeps: list[float]) -> None:
    handler = RetryHandler(RetryConfig(max_attempts=3))
    operation, calls = _flaky(3)

    with pytest.raises(RetryExhaustedError, match="operation failed after 3 attempts: failure 3") as exc_info:
        await handler.do("process", operation)

    assert calls["count"] == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, RuntimeError)
    assert exc_info.value.__cause__ is exc_info.value.last_error
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately(sleeps: list[float]) -> None:
    handler = RetryHandler(RetryConfig(max_attempts=3))
    operation, calls = _flaky(5, OrchestratorError("user not found", retryable=False))

    with pytest.raises(OrchestratorError, match="user not found"):
        await handler.do("process", operation)

    assert calls["count"] == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_timeout_error_is_not_retried(sleeps: list[float]) -> None:
    handler = RetryHandler(RetryConfig(max_attempts=3))
    operation, calls = _flaky(5, TimeoutError("deadline"))

    with pytest.raises(TimeoutError):
        await handler.do("process", operation)

    assert calls["count"] == 1


@pytest.mark.parametrize("attempts", [0, 1])
@pytest.mark.asyncio
async def test_single_attempt_returns_raw_error(attempts: int, sleeps: list[float]) -> None:
    handler = RetryHandler(RetryConfig(max_attempts=attempts))
    operation, calls = _flaky(1)

    with pytest.raises(RuntimeError, match="failure 1"):
        await handler.do("process", operation)

    assert calls["count"] == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_cancellation_during_backoff_stops_retrying() -> None:
    handler = RetryHandler(RetryConfig(max_attempts=5, initial_delay=5.0, max_delay=5.0))
    operation, calls = _flaky(10)

    task = asyncio.create_task(handler.do("process", operation))
    while calls["count"] == 0:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=1.0)
    assert calls["count"] == 1


def test_is_retryable_error() -> None:
    assert is_retryable_error(RuntimeError("x")) is True
    assert is_retryable_error(OrchestratorError("x")) is True
    assert is_retryable_error(None) is False
    assert is_retryable_error(asyncio.CancelledError()) is False
    assert is_retryable_error(TimeoutError()) is False
    assert is_retryable_error(ValidationError("content", "bad")) is False
    assert is_retryable_error(OrchestratorError("x", retryable=False)) is False


@pytest.mark.parametrize(
    ("config", "message"),
    [
        (RetryConfig(max_attempts=-1), "non-negative"),
        (RetryConfig(initial_delay=0), "initial_delay"),
        (RetryConfig(max_delay=0), "max_delay must be positive"),
        (RetryConfig(initial_delay=2.0, max_delay=1.0), "greater than or equal"),
        (RetryConfig(backoff_multiplier=1.0), "backoff_multiplier"),
    ],
)
def test_invalid_retry_config(config: RetryConfig, message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        RetryHandler(config)


def test_zero_attempts_skips_delay_checks() -> None:
    RetryHandler(RetryConfig(max_attempts=0, initial_delay=0))
