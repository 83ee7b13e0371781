"""Exception hierarchy shared by all components."""

from __future__ import annotations


class NexflowError(Exception):
    """Base class for every error raised by nexflow."""

    retryable = True


class ConfigurationError(NexflowError):
    """Invalid configuration detected at construction time."""

    retryable = False


class ValidationError(NexflowError):
    """Inbound message violates a validation rule."""

    retryable = False

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"validation error for {field}: {message}")
        self.field = field
        self.message = message


class ConnectorError(NexflowError):
    """Transport adapter failure (lifecycle, identity, delivery)."""


class TransportError(ConnectorError):
    """Delivery failure reported by the remote chat API."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class BotBlockedError(TransportError):
    def __init__(self) -> None:
        super().__init__("bot was blocked by the user")


class UserDeactivatedError(TransportError):
    def __init__(self) -> None:
        super().__init__("user is deactivated")


class BotKickedError(TransportError):
    def __init__(self) -> None:
        super().__init__("bot was kicked from the group chat")


class ChatNotFoundError(TransportError):
    def __init__(self) -> None:
        super().__init__("chat not found")


class MessageTooLongError(TransportError):
    def __init__(self) -> None:
        super().__init__("message is too long")


class RateLimitedError(TransportError):
    """Remote API asked us to slow down; carries the advisory delay in seconds."""

    def __init__(self, retry_after: float | None = None) -> None:
        detail = f", retry after {retry_after:g}s" if retry_after is not None else ""
        super().__init__(f"rate limit exceeded{detail}")
        self.retry_after = retry_after


class RepositoryError(NexflowError):
    """Persistence failure."""


class NotFoundError(RepositoryError):
    retryable = False


class AlreadyExistsError(RepositoryError):
    retryable = False


class OrchestratorError(NexflowError):
    """Conversation processing failed."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderError(NexflowError):
    """LLM provider call failed."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class SkillError(NexflowError):
    """Skill lookup or execution failed."""

    retryable = False


class RetryExhaustedError(NexflowError):
    """All retry attempts failed."""

    retryable = False

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
