"""Exception taxonomy for the gateway.

Every ``GatewayError`` carries a message that is safe to show to a chat user;
the inbound event loop replies with ``str(exc)`` for these.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for user-facing gateway failures."""


class CommandSyntaxError(GatewayError):
    """Malformed command text; the message is the usage line."""

    def __init__(self, usage: str):
        super().__init__(usage)
        self.usage = usage


class UnknownEntityError(GatewayError):
    """A host or service name did not resolve."""


class UnknownContactError(GatewayError):
    """A backend contact or chat identity did not resolve."""


class PolicyConfigError(GatewayError):
    """A delivery policy names a channel we do not know."""


class TransportError(Exception):
    """Recoverable chat transport failure; triggers a reconnect."""
