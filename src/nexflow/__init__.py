"""Multi-channel chat-bot message routing and orchestration."""

__version__ = "0.1.0"
