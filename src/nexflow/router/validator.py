"""Inbound message validation."""

from __future__ import annotations

from nexflow.channels.base import Message
from nexflow.errors import ValidationError


class MessageValidator:
    def __init__(self, *, enabled: bool = True, max_message_length: int = 10000) -> None:
        self._enabled = enabled
        self._max_message_length = max_message_length

    @property
    def enabled(self) -> bool:
        return self._enabled

    def validate(self, message: Message | None) -> None:
        """Raise ``ValidationError`` for an unacceptable message; no-op when disabled."""
        if not self._enabled:
            return
        if message is None:
            raise ValidationError("message", "message cannot be nil")
        if not message.user_id:
            raise ValidationError("user_id", "user ID cannot be empty")
        if not message.content:
            raise ValidationError("content", "message content cannot be empty")
        if len(message.content) > self._max_message_length:
            raise ValidationError(
                "content",
                f"message content exceeds maximum length of {self._max_message_length} characters",
            )
