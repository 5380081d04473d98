"""What the session manager needs from a chat transport."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Callable

from ..contacts import Presence

CANCEL = "cancel"
CONTINUE = "continue"


@dataclass(frozen=True)
class ServerError:
    """Error stanza reported by the chat server."""

    severity: str
    condition: str = ""
    text: str = ""

    def __str__(self) -> str:
        detail = f": {self.text}" if self.text else ""
        return f"{self.severity}/{self.condition}{detail}"


@dataclass(frozen=True)
class InboundMessage:
    sender: str
    body: str | None = None
    error: ServerError | None = None


MessageHandler = Callable[[InboundMessage], None]
PresenceHandler = Callable[[str, Presence], None]
ErrorHandler = Callable[[BaseException], None]


class ChatTransport(abc.ABC):
    """A single connection to the chat network.

    Message callbacks may fire on the transport's own thread and must not
    block; presence callbacks may fire on any thread.  ``send`` must be safe
    to call from any thread.
    """

    @abc.abstractmethod
    def connect(self) -> None:
        """Open the connection; blocks until the stream is up."""

    @abc.abstractmethod
    def authenticate(self) -> None:
        """Log in; blocks until the session is established."""

    @abc.abstractmethod
    def close(self) -> None: ...

    @abc.abstractmethod
    def send(self, address: str, text: str) -> None: ...

    @abc.abstractmethod
    def set_status(self, text: str) -> None:
        """Announce our own presence with a status line."""

    @abc.abstractmethod
    def set_message_handler(self, handler: MessageHandler) -> None: ...

    @abc.abstractmethod
    def set_presence_handler(self, handler: PresenceHandler) -> None: ...

    @abc.abstractmethod
    def set_error_handler(self, handler: ErrorHandler | None) -> None: ...

    @abc.abstractmethod
    def list_roster(self) -> list[str]: ...

    @abc.abstractmethod
    def add_to_roster(self, address: str, alias: str) -> None:
        """Add a roster entry and request a presence subscription."""

    @abc.abstractmethod
    def remove_from_roster(self, address: str) -> None: ...
