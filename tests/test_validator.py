from __future__ import annotations

import pytest

from nexflow.channels import Message
from nexflow.errors import ValidationError
from nexflow.router import MessageValidator


def _message(content: str = "hello", user_id: str = "user-1") -> Message:
    return Message(user_id=user_id, channel_id="chat-1", content=content)


def test_accepts_content_at_the_length_limit() -> None:
    validator = MessageValidator(max_message_length=10)

    validator.validate(_message("x" * 10))


def test_rejects_content_over_the_length_limit() -> None:
    validator = MessageValidator(max_message_length=10)

    with pytest.raises(ValidationError) as exc_info:
        validator.validate(_message("x" * 11))

    assert exc_info.value.field == "content"
    assert str(exc_info.value) == (
        "validation error for content: message content exceeds maximum length of 10 characters"
    )


@pytest.mark.parametrize(
    ("message", "field", "text"),
    [
        (None, "message", "message cannot be nil"),
        (_message(user_id=""), "user_id", "user ID cannot be empty"),
        (_message(content=""), "content", "message content cannot be empty"),
    ],
)
def test_rejects_incomplete_messages(message: Message | None, field: str, text: str) -> None:
    validator = MessageValidator()

    with pytest.raises(ValidationError, match=text) as exc_info:
        validator.validate(message)

    assert exc_info.value.field == field
    assert exc_info.value.message == text
    assert exc_info.value.retryable is False


def test_disabled_validator_accepts_anything() -> None:
    validator = MessageValidator(enabled=False, max_message_length=1)

    validator.validate(None)
    validator.validate(_message(content="", user_id=""))
    validator.validate(_message("too long"))
    assert validator.enabled is False
