"""Resolves the leading word of a chat message to a handler."""

from __future__ import annotations

from dataclasses import replace

import structlog

from ..errors import UnknownEntityError
from .grammar import CommandInvocation, CommandTable, resolve_service_name
from .handlers import show_detail

logger = structlog.get_logger(__name__)

FALLBACK_REPLY = "I'm sorry, I didn't quite catch that?"


class Router:
    """Command table first, then host / host/service lookup, then a polite shrug."""

    def __init__(self, table: CommandTable):
        self.table = table

    def route(self, inv: CommandInvocation) -> None:
        resolved = self.table.resolve(inv.token)
        if resolved is not None:
            spec, groups = resolved
            logger.debug("Invoking command", command=spec.name or inv.token, sender=inv.sender)
            spec.handler(replace(inv, token=inv.token.lower(), groups=groups))
            return

        backend = inv.ctx.backend
        host = backend.find_host(inv.token)
        if inv.scanner.skip("/"):
            if host is None:
                raise UnknownEntityError(f"Unknown host {inv.token}")
            show_detail(inv, resolve_service_name(backend, host, inv.scanner))
        elif host is not None:
            show_detail(inv, host)
        else:
            logger.debug("Unhandled message", sender=inv.sender, token=inv.token)
            inv.reply(FALLBACK_REPLY)
