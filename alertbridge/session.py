"""Chat session lifecycle and the inbound message worker."""

from __future__ import annotations

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from enum import Enum
from typing import TYPE_CHECKING, Callable

import structlog

from .commands.grammar import WORD, CommandInvocation, Scanner
from .errors import GatewayError, TransportError
from .transport.base import CANCEL, CONTINUE, ChatTransport, InboundMessage

if TYPE_CHECKING:
    from .commands.router import Router
    from .context import GatewayContext

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"


class SessionManager:
    """Keeps exactly one transport connection up.

    Connect and authentication are bounded by ``connect_timeout``; failures
    close the transport, sleep ``retry_delay`` and try again, forever.  Once
    connected, any transport error triggers a full reconnect.
    """

    def __init__(
        self,
        transport: ChatTransport,
        connect_timeout: float = 15.0,
        retry_delay: float = 15.0,
        sleep: Callable[[float], object] | None = None,
    ):
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.retry_delay = retry_delay
        self.state = SessionState.DISCONNECTED

        self._closed = threading.Event()
        self._sleep = sleep or self._closed.wait
        self._send_lock = threading.Lock()
        self._reconnect_lock = threading.Lock()
        self._loop: "InboundEventLoop | None" = None
        self._status_text: str | None = None
        self._announced: str | None = None

    @property
    def roster(self) -> ChatTransport:
        return self.transport

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def attach(self, loop: "InboundEventLoop") -> None:
        self._loop = loop
        self.transport.set_message_handler(loop.enqueue)

    # -- connecting ------------------------------------------------------

    def _open(self) -> None:
        self.state = SessionState.CONNECTING
        self.transport.connect()
        logger.info("Connected to chat server")
        self.state = SessionState.AUTHENTICATING
        self.transport.authenticate()
        logger.debug("Authenticated")

    def _close_transport(self) -> None:
        try:
            self.transport.close()
        except Exception as e:
            logger.error("Failed to close connection", error=str(e))

    def connect(self) -> bool:
        """Block until connected; returns False only if the session was closed meanwhile."""
        while not self._closed.is_set():
            self.transport.set_error_handler(self._log_connect_error)
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chat-connect")
            try:
                executor.submit(self._open).result(timeout=self.connect_timeout)
            except FuturesTimeout:
                logger.warning("Timed out connecting to chat server", timeout=self.connect_timeout)
            except Exception as e:
                logger.error("Failed to connect", error=str(e))
            else:
                self.state = SessionState.CONNECTED
                self.transport.set_error_handler(self._reconnect_after)
                return True
            finally:
                executor.shutdown(wait=False)

            self.state = SessionState.DISCONNECTED
            self._close_transport()
            logger.info("Sleeping before retry", seconds=self.retry_delay)
            self._sleep(self.retry_delay)
        return False

    def _log_connect_error(self, exc: BaseException) -> None:
        logger.error("Transport error while connecting", error=str(exc))

    def _reconnect_after(self, exc: BaseException) -> None:
        if not self._reconnect_lock.acquire(blocking=False):
            return
        try:
            logger.warning("Reconnecting after transport error", error=str(exc))
            self.transport.set_error_handler(None)
            self.state = SessionState.DISCONNECTED
            self._close_transport()
            if self.connect():
                self.announce(force=True)
                logger.info("Successfully reconnected")
        finally:
            self._reconnect_lock.release()

    def connect_and_run(self) -> None:
        """Connect (retrying forever), then process inbound messages until stopped."""
        if self._loop is None:
            raise RuntimeError("no inbound event loop attached")
        if not self.connect():
            return
        self.announce(force=True)
        self._loop.run()

    # -- outbound --------------------------------------------------------

    def send(self, address: str, text: str) -> bool:
        if self.state is not SessionState.CONNECTED:
            logger.warning("Chat session down, dropping message", to=address)
            return False
        logger.debug("Sending message", to=address, text=text)
        try:
            with self._send_lock:
                self.transport.send(address, text)
        except TransportError as e:
            logger.error("Failed to send message", to=address, error=str(e))
            return False
        return True

    def announce(self, text: str | None = None, force: bool = False) -> None:
        """Publish our presence status line when it changed (or when forced)."""
        if text is not None:
            self._status_text = text
        if self._status_text is None or self.state is not SessionState.CONNECTED:
            return
        if force or self._status_text != self._announced:
            with self._send_lock:
                self.transport.set_status(self._status_text)
            self._announced = self._status_text

    def close(self) -> None:
        self._closed.set()
        self.transport.set_error_handler(None)
        self.state = SessionState.DISCONNECTED
        self._close_transport()


_STOP = object()


class InboundEventLoop:
    """Single worker draining inbound chat messages in arrival order.

    A failing command is reported back to its sender and never stops the
    loop; only a fatal server error (or ``stop()``) does.
    """

    def __init__(self, session: SessionManager, ctx: "GatewayContext", router: "Router"):
        self.session = session
        self.ctx = ctx
        self.router = router
        self.inbox: queue.Queue = queue.Queue()
        session.attach(self)

    def enqueue(self, item: InboundMessage) -> None:
        self.inbox.put(item)

    def stop(self) -> None:
        self.inbox.put(_STOP)

    def run(self) -> None:
        logger.debug("Beginning chat message processing")
        while True:
            item = self.inbox.get()
            if item is _STOP or not self.process(item):
                break
        logger.info("Chat message processing stopped")

    def process(self, msg: InboundMessage) -> bool:
        """Handle one inbound item; False means the loop has to stop."""
        if msg.error is not None:
            return self._server_error(msg)
        try:
            self.handle_message(msg)
        except GatewayError as e:
            logger.info("Command failed", sender=msg.sender, error=str(e))
            self._reply(msg.sender, str(e))
        except Exception as e:
            logger.exception("Error handling message", sender=msg.sender)
            self._reply(msg.sender, f"Oops. {e}")
        return True

    def _server_error(self, msg: InboundMessage) -> bool:
        error = msg.error
        if error.severity == CONTINUE:
            logger.warning("Server warning", error=str(error))
            return True
        if error.severity == CANCEL:
            logger.error("Unrecoverable error from chat server", error=str(error))
            self.session.close()
            return False
        logger.error("Unexpected error from chat server", error=str(error))
        return False

    def _reply(self, address: str, text: str) -> None:
        try:
            self.session.send(address, text)
        except Exception:
            logger.exception("Failed to report error to sender", sender=address)

    def handle_message(self, msg: InboundMessage) -> None:
        if not msg.body:
            logger.debug("Message with no body", sender=msg.sender)
            return
        self.ctx.directory.get_or_create(msg.sender)
        logger.debug("Message received", sender=msg.sender, body=msg.body)

        scanner = Scanner(msg.body)
        scanner.skip_ws()
        token = scanner.scan(WORD)
        if not token:
            logger.warning("Message without a command word", sender=msg.sender, body=msg.body)
            return
        self.router.route(CommandInvocation(
            ctx=self.ctx,
            session=self.session,
            sender=msg.sender,
            scanner=scanner,
            token=token,
        ))
