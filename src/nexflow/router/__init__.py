"""Message routing: validation, retries and the connector router."""

from nexflow.router.config import RetryConfig, RouterConfig
from nexflow.router.retry import RetryHandler, is_retryable_error
from nexflow.router.router import MessageRouter, RouterState
from nexflow.router.validator import MessageValidator

__all__ = [
    "MessageRouter",
    "MessageValidator",
    "RetryConfig",
    "RetryHandler",
    "RouterConfig",
    "RouterState",
    "is_retryable_error",
]
