"""Composition root: wires the directory, commands, delivery and chat session."""

from __future__ import annotations

import threading
from typing import Callable

import structlog

from . import formatting
from .backend.base import MonitoringBackend
from .commands import Router, build_command_table
from .config import GatewayConfig
from .contacts import ContactDirectory, Presence
from .context import GatewayContext
from .deferred import DeferredCheckRegistry
from .intake import IntakeServer, create_app
from .mailer import SmtpMailer
from .policy import NotificationPolicyEngine
from .scheduler import RefreshScheduler
from .session import InboundEventLoop, SessionManager
from .transport.base import ChatTransport

logger = structlog.get_logger(__name__)

TransportFactory = Callable[[GatewayConfig], ChatTransport]


class Gateway:
    """Owns the long-lived components and supervises the chat session.

    The session worker thread is rebuilt from scratch (new transport, new
    session, new inbound loop) whenever it dies.
    """

    def __init__(
        self,
        config: GatewayConfig,
        backend: MonitoringBackend,
        transport_factory: TransportFactory,
        mailer: SmtpMailer | None = None,
    ):
        self.config = config
        self.backend = backend
        self.transport_factory = transport_factory

        self.directory = ContactDirectory()
        self.router = Router(build_command_table(enable_eval=config.enable_eval))
        self.deferred = DeferredCheckRegistry(backend, self.send)
        self.policy = NotificationPolicyEngine(
            backend,
            self.directory,
            self.send,
            mailer or SmtpMailer(config.smtp),
            contact_field=config.xmpp.contact_field,
        )
        self.ctx = GatewayContext(
            config=config,
            backend=backend,
            directory=self.directory,
            deferred=self.deferred,
            policy=self.policy,
            send=self.send,
        )
        self.scheduler = RefreshScheduler(self.tick, initial_interval=config.refresh.idle_interval)

        self.session: SessionManager | None = None
        self.loop: InboundEventLoop | None = None
        self.worker: threading.Thread | None = None
        self.http: IntakeServer | None = None
        self._lock = threading.Lock()
        self._stopping = False

        if config.enable_eval:
            logger.warning("The 'eval' chat command is enabled")

    # -- chat session ----------------------------------------------------

    def _build_session(self) -> tuple[SessionManager, InboundEventLoop]:
        transport = self.transport_factory(self.config)
        transport.set_presence_handler(self.on_presence)
        session = SessionManager(
            transport,
            connect_timeout=self.config.session.connect_timeout,
            retry_delay=self.config.session.retry_delay,
        )
        loop = InboundEventLoop(session, self.ctx, self.router)
        return session, loop

    def start_session(self) -> None:
        with self._lock:
            self.session, self.loop = self._build_session()
            self.session.announce(self.status_text())
            self.worker = threading.Thread(
                target=self.session.connect_and_run, name="chat-session", daemon=True
            )
            self.worker.start()
        logger.info("Chat session worker started")

    def watchdog(self) -> None:
        worker = self.worker
        if self._stopping or worker is None or worker.is_alive():
            return
        logger.error("Chat session worker died")
        self.session.close()
        logger.info("Restarting chat subsystem")
        self.start_session()

    def send(self, address: str, text: str) -> bool:
        session = self.session
        if session is None:
            logger.warning("No chat session, dropping message", to=address)
            return False
        return session.send(address, text)

    def on_presence(self, address: str, presence: Presence) -> None:
        """Presence callback; runs on transport threads."""
        if not self.directory.update_presence(address, presence):
            return
        try:
            self.policy.catch_up(address)
        except Exception:
            logger.exception("Catch-up failed", address=address)

    # -- periodic refresh ------------------------------------------------

    def status_text(self) -> str:
        if not self.backend.status_exists():
            logger.warning("Monitoring backend is not running")
            return formatting.BACKEND_DOWN
        return formatting.status_message(self.backend.status_report())

    def tick(self) -> int:
        """One refresh cycle; returns seconds until the next one."""
        self.backend.refresh()
        if self.session is not None:
            self.session.announce(self.status_text())
        self.watchdog()
        if self.backend.has_refresh_listeners():
            return self.config.refresh.busy_interval
        return self.config.refresh.idle_interval

    # -- process lifecycle -----------------------------------------------

    def start(self, serve_http: bool = True) -> None:
        self.start_session()
        if serve_http:
            self.http = IntakeServer(create_app(self), self.config.http.host, self.config.http.port)
            self.http.start()
        self.scheduler.start()
        logger.info("Gateway running")

    def stop(self) -> None:
        self._stopping = True
        self.scheduler.stop()
        if self.http is not None:
            self.http.stop()
        if self.loop is not None:
            self.loop.stop()
        if self.session is not None:
            self.session.close()
        logger.info("Gateway stopped")
