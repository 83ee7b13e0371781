"""Transport connectors."""

from nexflow.channels.base import Button, Connector, Inspectable, Message, Response, ResponseKind
from nexflow.channels.mock import MockConnector, MockDiscordConnector, MockTelegramConnector, MockWebConnector
from nexflow.channels.ratelimit import RateLimiter
from nexflow.channels.stream import MessageStream

__all__ = [
    "Button",
    "Connector",
    "Inspectable",
    "Message",
    "MessageStream",
    "MockConnector",
    "MockDiscordConnector",
    "MockTelegramConnector",
    "MockWebConnector",
    "RateLimiter",
    "Response",
    "ResponseKind",
]
