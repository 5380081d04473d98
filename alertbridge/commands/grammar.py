"""Chat command grammar: scanner, matchers, the registration table and invocations."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable, Union

from ..errors import CommandSyntaxError, UnknownEntityError
from ..events import NotificationEvent

if TYPE_CHECKING:
    from ..backend.base import Entity
    from ..context import GatewayContext
    from ..session import SessionManager

WORD = r"[^\s/]+"


class Scanner:
    """Cursor over one line of chat input."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.last: re.Match | None = None

    def _match(self, pattern: str, flags: int = 0) -> re.Match | None:
        return re.compile(pattern, flags).match(self.text, self.pos)

    def scan(self, pattern: str, flags: int = 0) -> str | None:
        m = self._match(pattern, flags)
        if m is None:
            return None
        self.last = m
        self.pos = m.end()
        return m.group(0)

    def skip(self, pattern: str, flags: int = 0) -> bool:
        return self.scan(pattern, flags) is not None

    def check(self, pattern: str, flags: int = 0) -> bool:
        return self._match(pattern, flags) is not None

    def skip_ws(self) -> None:
        self.skip(r"\s*")

    def token(self) -> str | None:
        self.skip_ws()
        return self.scan(r"\S+")

    def require_token(self, usage: str) -> str:
        tok = self.token()
        if not tok:
            raise CommandSyntaxError(usage)
        return tok

    def rest(self) -> str:
        return self.text[self.pos:]

    def rest_of_line(self) -> str:
        self.skip_ws()
        rest = self.rest().strip()
        self.pos = len(self.text)
        return rest

    def eos(self) -> bool:
        return self.pos >= len(self.text)


@dataclass(frozen=True)
class Literal:
    """Exact, case-insensitive command word."""

    word: str

    def match(self, token: str) -> tuple | None:
        return () if token.lower() == self.word.lower() else None


@dataclass(frozen=True)
class Pattern:
    """Regex over the whole command word; groups are passed to the handler."""

    regex: re.Pattern

    def match(self, token: str) -> tuple | None:
        m = self.regex.fullmatch(token)
        return m.groups() if m else None


Matcher = Union[Literal, Pattern]


@dataclass(frozen=True)
class ReplyTarget:
    """The recent notification a reply-addressed command resolved."""

    seq: int
    event: NotificationEvent
    entity: "Entity"


@dataclass(frozen=True)
class CommandInvocation:
    ctx: "GatewayContext"
    session: "SessionManager"
    sender: str
    scanner: Scanner
    token: str = ""
    groups: tuple = ()
    parent: ReplyTarget | None = None

    def reply(self, text: str) -> None:
        self.session.send(self.sender, text)

    def child(self, token: str, target: ReplyTarget) -> "CommandInvocation":
        return replace(self, token=token, groups=(), parent=target)


Handler = Callable[[CommandInvocation], None]


@dataclass(frozen=True)
class CommandSpec:
    matcher: Matcher
    handler: Handler
    name: str = ""


class CommandTable:
    """Ordered ``(matcher, handler)`` registrations; first match wins."""

    def __init__(self, specs: list[CommandSpec] | None = None):
        self._specs: list[CommandSpec] = list(specs or [])

    def register(self, matcher: Matcher, handler: Handler, name: str = "") -> None:
        self._specs.append(CommandSpec(matcher, handler, name or getattr(matcher, "word", "")))

    def resolve(self, token: str) -> tuple[CommandSpec, tuple] | None:
        for spec in self._specs:
            groups = spec.matcher.match(token)
            if groups is not None:
                return spec, groups
        return None

    def names(self) -> list[str]:
        return [s.name for s in self._specs if s.name]


def resolve_service_name(backend, host: "Entity", scanner: Scanner) -> "Entity":
    """Consume the longest service name of ``host`` at the scanner position."""
    for name in sorted(backend.service_names(host.name), key=len, reverse=True):
        if scanner.skip(re.escape(name), re.IGNORECASE):
            return backend.find_service(host.name, name)
    raise UnknownEntityError(f"Unknown service starting with {scanner.rest().strip()!r} for host {host.name}")


def scan_entity(inv: CommandInvocation, usage: str) -> "Entity":
    """Parse ``<host>`` or ``<host>/<service>`` from the invocation's input."""
    scanner = inv.scanner
    scanner.skip_ws()
    host_name = scanner.scan(WORD)
    if not host_name:
        raise CommandSyntaxError(usage)
    host = inv.ctx.backend.find_host(host_name)
    if host is None:
        raise UnknownEntityError(f"Unknown host {host_name}")
    if scanner.skip("/"):
        return resolve_service_name(inv.ctx.backend, host, scanner)
    return host
