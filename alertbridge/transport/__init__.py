"""Chat transports."""

from .base import ChatTransport, InboundMessage, ServerError

__all__ = ["ChatTransport", "InboundMessage", "ServerError"]
