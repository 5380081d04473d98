"""Command handlers and the startup registration table."""

from __future__ import annotations

import ast
import re
import time

import structlog

from .. import formatting
from ..errors import CommandSyntaxError, UnknownContactError, UnknownEntityError
from .grammar import CommandInvocation, CommandSpec, CommandTable, Literal, Pattern, ReplyTarget, scan_entity

logger = structlog.get_logger(__name__)

DEFAULT_ACK_COMMENT = "acknowledged."

CHECK_USAGE = "Usage: check <host> | check <host>/<service>"
ACK_USAGE = "Usage: ack <host>[/<service>] [comment]"
REPLY_USAGE = "Usage: @N ack [comment] | @N check, where N is 0-9"

HELP_TEXT = """Monitoring gateway commands:
status: get a status report
check <host | host/svc>: force a check of the named host or service
ack <host | host/svc> [comment]: acknowledge a host or service problem
<host | host/svc>: show details for a host or service
You can respond to a notification with its @ number, like so:
@N ack [comment]: acknowledge a host or service problem, with optional comment
@N check: force a check of the host or service referred to
admin help: roster maintenance commands"""

ADMIN_HELP = """Admin commands:
admin list-roster: show the chat roster
admin add <address> <alias>: add a contact and request a presence subscription
admin remove <address>: remove a contact from the roster
admin help: show this message"""


# -- shared actions ------------------------------------------------------

def show_detail(inv: CommandInvocation, entity) -> None:
    inv.reply(entity.render("xmpp"))


def request_check(inv: CommandInvocation, entity) -> None:
    deferred = inv.ctx.deferred
    if not entity.active_checks_enabled:
        deferred.register(entity, inv.sender)
        inv.reply(
            f"Active checks are disabled for {entity.display_name}; "
            "I'll report back when new results arrive."
        )
        return
    entity.force_check(time.time())
    deferred.register(entity, inv.sender)
    inv.reply(f"Forced a check of {entity.display_name}; I'll report back with the result.")


def acknowledge(inv: CommandInvocation, entity) -> None:
    field = inv.ctx.config.xmpp.contact_field
    author = inv.ctx.backend.find_contact_by_property(field, inv.sender)
    if author is None:
        raise UnknownContactError(f"No monitoring contact has chat address {inv.sender}")
    comment = inv.scanner.rest_of_line() or DEFAULT_ACK_COMMENT
    entity.acknowledge(author.name, comment)
    logger.info("Acknowledged problem", entity=entity.display_name, author=author.name)
    inv.reply(f"Acknowledged {entity.display_name}.")


# -- top-level commands --------------------------------------------------

def status(inv: CommandInvocation) -> None:
    backend = inv.ctx.backend
    if not backend.status_exists():
        inv.reply(formatting.BACKEND_DOWN)
        return
    inv.reply(formatting.status_summary(backend.status_report()))


def check(inv: CommandInvocation) -> None:
    request_check(inv, scan_entity(inv, CHECK_USAGE))


def ack(inv: CommandInvocation) -> None:
    acknowledge(inv, scan_entity(inv, ACK_USAGE))


def reply(inv: CommandInvocation) -> None:
    """``@N <subcommand>``: act on the Nth recent notification."""
    if len(inv.groups[0]) > 1:
        raise CommandSyntaxError(REPLY_USAGE)
    seq = int(inv.groups[0])
    event = inv.ctx.directory.recent(inv.sender, seq)
    if event is None:
        logger.debug("No recent notification in slot", sender=inv.sender, seq=seq)
        inv.reply(f"No record of notification {seq}, sorry.")
        return

    inv.scanner.skip_ws()
    word = inv.scanner.scan(r"\w+")
    if not word:
        raise CommandSyntaxError(REPLY_USAGE)
    resolved = REPLY_COMMANDS.resolve(word)
    if resolved is None:
        inv.reply(f"Unknown reply command {word}!")
        return

    entity = inv.ctx.backend.resolve(event)
    if entity is None:
        raise UnknownEntityError(f"Notification {seq} was about {event.display_name}, which no longer exists")
    spec, _ = resolved
    spec.handler(inv.child(word.lower(), ReplyTarget(seq=seq, event=event, entity=entity)))


def reply_ack(inv: CommandInvocation) -> None:
    acknowledge(inv, inv.parent.entity)


def reply_check(inv: CommandInvocation) -> None:
    request_check(inv, inv.parent.entity)


def admin(inv: CommandInvocation) -> None:
    roster = inv.session.roster
    sub = (inv.scanner.token() or "").lower()
    if sub == "list-roster":
        inv.reply("Roster: " + ", ".join(sorted(roster.list_roster())))
    elif sub == "add":
        address = inv.scanner.token()
        alias = inv.scanner.token()
        if not (address and alias):
            raise CommandSyntaxError("Usage: admin add <address> <alias>")
        roster.add_to_roster(address, alias)
        inv.reply(f"Added {address} ({alias}) to roster and requested presence subscription.")
    elif sub == "remove":
        address = inv.scanner.token()
        if not address:
            raise CommandSyntaxError("Usage: admin remove <address>")
        roster.remove_from_roster(address)
        inv.reply(f"Contact {address} removed from roster.")
    else:
        inv.reply(ADMIN_HELP)


def help_(inv: CommandInvocation) -> None:
    inv.reply(HELP_TEXT)


def restricted_eval(expression: str, namespace: dict):
    """Evaluate one expression with no builtins and no underscore names."""
    tree = ast.parse(expression, mode="eval")
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise ValueError(f"attribute {node.attr!r} is not accessible")
        if isinstance(node, ast.Name) and node.id.startswith("_"):
            raise ValueError(f"name {node.id!r} is not accessible")
    return eval(compile(tree, "<chat>", "eval"), {"__builtins__": {}}, dict(namespace))


def eval_(inv: CommandInvocation) -> None:
    expression = inv.scanner.rest_of_line()
    if not expression:
        raise CommandSyntaxError("Usage: eval <expression>")
    namespace = {
        "backend": inv.ctx.backend,
        "directory": inv.ctx.directory,
        "sender": inv.sender,
        "len": len,
        "sorted": sorted,
    }
    logger.warning("Evaluating chat expression", sender=inv.sender, expression=expression)
    try:
        result = repr(restricted_eval(expression, namespace))
    except Exception as e:
        result = f"Error: {type(e).__name__}: {e}"
    inv.reply(result)


REPLY_COMMANDS = CommandTable([
    CommandSpec(Literal("ack"), reply_ack, "ack"),
    CommandSpec(Literal("check"), reply_check, "check"),
])


def build_command_table(enable_eval: bool = False) -> CommandTable:
    table = CommandTable()
    table.register(Literal("status"), status)
    table.register(Literal("check"), check)
    table.register(Literal("ack"), ack)
    table.register(Pattern(re.compile(r"@(\d+)")), reply, name="@N")
    table.register(Literal("admin"), admin)
    table.register(Literal("help"), help_)
    if enable_eval:
        table.register(Literal("eval"), eval_)
    return table
