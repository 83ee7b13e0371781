"""Base connector interface and the transport-level message model."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from nexflow.domain.entities import User


@dataclass(frozen=True)
class Message:
    """Message received from an external channel.

    ``user_id`` and ``channel_id`` are transport-local identifiers.
    """

    user_id: str
    channel_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class ResponseKind(StrEnum):
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"


@dataclass(frozen=True)
class Button:
    """Inline button. Exactly one of ``payload``, ``url`` or ``inline_query`` is expected."""

    label: str
    payload: str = ""
    url: str = ""
    inline_query: str = ""


@dataclass(frozen=True)
class Response:
    """Reply envelope handed to a connector."""

    content: str = ""
    kind: ResponseKind | str = ResponseKind.TEXT
    caption: str = ""
    media: str | None = None
    buttons: list[Button] | None = None
    edit_target_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return bool(self.metadata.get("error"))


class Connector(ABC):
    """Abstract base class for transport adapters."""

    name = "base"

    @abstractmethod
    async def start(self) -> None:
        """Start ingesting messages. Raises ConnectorError if already running."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop ingesting and end the ``incoming`` sequence. Raises ConnectorError if not running."""

    @abstractmethod
    async def send_response(self, user_id: str, response: Response) -> None:
        """Deliver one reply to a transport-local user."""

    @abstractmethod
    def incoming(self) -> AsyncIterator[Message]:
        """Return the inbound message sequence; it ends when the connector stops."""

    @property
    @abstractmethod
    def is_running(self) -> bool: ...

    @abstractmethod
    async def get_user(self, channel_user_id: str) -> User | None:
        """Resolve a transport-local id to a domain user, ``None`` when unknown."""

    @abstractmethod
    async def create_user(self, channel_user_id: str) -> User:
        """Create the domain user for a transport-local id."""


@runtime_checkable
class Inspectable(Protocol):
    """Connectors that record outbound responses for inspection in tests."""

    def get_responses(self) -> list[tuple[str, Response]]: ...

    def clear_responses(self) -> None: ...
