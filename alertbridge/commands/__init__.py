"""Chat command language."""

from .grammar import CommandInvocation, CommandTable, Literal, Pattern, ReplyTarget, Scanner
from .handlers import build_command_table
from .router import FALLBACK_REPLY, Router

__all__ = [
    "CommandInvocation",
    "CommandTable",
    "FALLBACK_REPLY",
    "Literal",
    "Pattern",
    "ReplyTarget",
    "Router",
    "Scanner",
    "build_command_table",
]
