"""Command-line entry point.

Usage:
    alertbridge -c config/alertbridge.yaml          # run the gateway
    alertbridge -c config/alertbridge.yaml --eval   # also enable the 'eval' chat command
    alertbridge -c config/alertbridge.yaml --debug  # debug logging
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading

import structlog

from .backend.nagios import NagiosBackend
from .config import load_config
from .gateway import Gateway
from .logging_setup import configure_logging
from .transport.xmpp import xmpp_transport

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alertbridge", description="Chat and email gateway for Nagios")
    parser.add_argument("-c", "--config", default=None, help="Configuration file (YAML)")
    parser.add_argument(
        "-e", "--eval", action=argparse.BooleanOptionalAction, default=None,
        help="Enable the 'eval' chat command",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    if args.eval is not None:
        config.enable_eval = args.eval
    configure_logging("DEBUG" if args.debug else config.log_level, config.log_file)

    backend = NagiosBackend(config.nagios.var_dir, config.nagios.cache_dir, config.nagios.web_uri)
    gateway = Gateway(config, backend, transport_factory=xmpp_transport)

    stop = threading.Event()

    def _interrupted(signum, _frame) -> None:
        logger.info("Interrupted, exiting", signal=signum)
        stop.set()

    signal.signal(signal.SIGINT, _interrupted)
    signal.signal(signal.SIGTERM, _interrupted)

    gateway.start()
    while not stop.wait(1.0):
        pass
    gateway.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
