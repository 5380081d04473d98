"""structlog configuration shared by the CLI and tests."""

from __future__ import annotations

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    stream = open(log_file, "a", buffering=1, encoding="utf-8") if log_file else sys.stderr

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(colors=log_file is None and stream.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )
