"""Router configuration."""

from __future__ import annotations

from dataclasses import dataclass

from nexflow.errors import ConfigurationError


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff policy. Delays are in seconds."""

    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0

    def validate(self) -> None:
        if self.max_attempts < 0:
            raise ConfigurationError("retry max_attempts must be non-negative")
        if self.max_attempts == 0:
            return
        if self.initial_delay <= 0:
            raise ConfigurationError("retry initial_delay must be positive")
        if self.max_delay <= 0:
            raise ConfigurationError("retry max_delay must be positive")
        if self.max_delay < self.initial_delay:
            raise ConfigurationError("retry max_delay must be greater than or equal to initial_delay")
        if self.backoff_multiplier <= 1.0:
            raise ConfigurationError("retry backoff_multiplier must be greater than 1.0")


@dataclass(frozen=True)
class RouterConfig:
    max_message_length: int = 10000
    validation_enabled: bool = True
    retry_max_attempts: int = 3
    retry_initial_delay: float = 0.1
    retry_max_delay: float = 5.0
    retry_backoff_multiplier: float = 2.0
    max_output_tokens: int = 1000

    @property
    def retry(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
        )

    def validate(self) -> None:
        if self.max_message_length <= 0:
            raise ConfigurationError("max_message_length must be positive")
        if self.max_output_tokens <= 0:
            raise ConfigurationError("max_output_tokens must be positive")
        self.retry.validate()
