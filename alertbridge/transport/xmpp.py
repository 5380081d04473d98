"""XMPP transport built on slixmpp.

slixmpp is asyncio-based; the client lives on a private event loop thread and
every call from the gateway's threads is marshalled onto that loop.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from concurrent.futures import ThreadPoolExecutor

import slixmpp
import structlog

from ..contacts import Presence
from ..errors import TransportError
from .base import ChatTransport, ErrorHandler, InboundMessage, MessageHandler, PresenceHandler, ServerError

logger = structlog.get_logger(__name__)

PRESENCE_TYPES = {
    "available": Presence.AVAILABLE,
    "chat": Presence.CHAT,
    "away": Presence.AWAY,
    "dnd": Presence.DND,
    "xa": Presence.EXTENDED_AWAY,
    "unavailable": Presence.UNAVAILABLE,
}


def presence_from_type(ptype: str | None) -> Presence:
    return PRESENCE_TYPES.get((ptype or "").lower(), Presence.UNAVAILABLE)


class XMPPTransport(ChatTransport):
    """One slixmpp client session; build a new instance to start over."""

    def __init__(self, jid: str, password: str, call_timeout: float = 15.0):
        self.jid = jid
        self.password = password
        self.call_timeout = call_timeout

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._client: slixmpp.ClientXMPP | None = None
        self._stream_up = threading.Event()
        self._session_up = threading.Event()
        self._failure: str | None = None
        self._closing = False

        self._on_message: MessageHandler | None = None
        self._on_presence: PresenceHandler | None = None
        self._on_error: ErrorHandler | None = None

        # bare jid -> resource -> (priority, arrival, presence); io loop thread only
        self._resources: dict[str, dict[str, tuple[int, int, Presence]]] = {}
        self._arrivals = 0
        self._presence_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="xmpp-presence")

    # -- loop plumbing ---------------------------------------------------

    def _start_loop(self) -> None:
        loop = asyncio.new_event_loop()

        def run() -> None:
            asyncio.set_event_loop(loop)
            loop.run_forever()

        self._loop = loop
        self._thread = threading.Thread(target=run, name="xmpp-io", daemon=True)
        self._thread.start()

    def _call(self, fn, *args, **kwargs):
        """Run ``fn`` on the loop thread and wait for its (awaited) result."""
        if self._loop is None or self._client is None:
            raise TransportError("not connected")

        async def invoke():
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        future = asyncio.run_coroutine_threadsafe(invoke(), self._loop)
        return future.result(self.call_timeout)

    def _spawn(self, fn, *args, **kwargs) -> None:
        """Schedule ``fn`` on the loop thread without waiting."""
        if self._loop is None or self._client is None:
            raise TransportError("not connected")

        def run() -> None:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)

        self._loop.call_soon_threadsafe(run)

    def _wait_for(self, event: threading.Event, what: str) -> None:
        while not event.wait(0.25):
            if self._failure:
                raise TransportError(f"{what} failed: {self._failure}")
            if self._closing:
                raise TransportError(f"{what} aborted: transport closed")
        if self._failure:
            raise TransportError(f"{what} failed: {self._failure}")

    # -- slixmpp callbacks (loop thread) ---------------------------------

    def _build_client(self) -> None:
        client = slixmpp.ClientXMPP(self.jid, self.password)
        client.add_event_handler("connected", self._handle_connected)
        client.add_event_handler("connection_failed", self._handle_connection_failed)
        client.add_event_handler("failed_auth", self._handle_failed_auth)
        client.add_event_handler("session_start", self._handle_session_start)
        client.add_event_handler("disconnected", self._handle_disconnected)
        client.add_event_handler("message", self._handle_message)
        client.add_event_handler("presence", self._handle_presence)
        self._client = client

    def _handle_connected(self, _event) -> None:
        logger.info("XMPP stream connected", jid=self.jid)
        self._stream_up.set()

    def _handle_connection_failed(self, error) -> None:
        self._failure = str(error) or "connection failed"
        self._report_error(TransportError(self._failure))

    def _handle_failed_auth(self, _event) -> None:
        self._failure = "authentication failed"

    async def _handle_session_start(self, _event) -> None:
        self._client.send_presence()
        await self._client.get_roster()
        logger.debug("XMPP session started", jid=self.jid)
        self._session_up.set()

    def _handle_disconnected(self, reason) -> None:
        if self._closing:
            return
        logger.warning("XMPP stream disconnected", reason=str(reason))
        self._report_error(TransportError(f"disconnected: {reason}"))

    def _report_error(self, exc: BaseException) -> None:
        handler = self._on_error
        if handler is None or not self._session_up.is_set():
            return
        # the handler reconnects, which blocks; keep it off the io loop
        self._loop.run_in_executor(None, handler, exc)

    def _handle_message(self, msg) -> None:
        if self._on_message is None:
            return
        error = None
        if msg["type"] == "error":
            err = msg["error"]
            error = ServerError(severity=err["type"], condition=err["condition"], text=err["text"])
        body = msg["body"] or None
        self._on_message(InboundMessage(sender=str(msg["from"].bare), body=body, error=error))

    def _handle_presence(self, pres) -> None:
        ptype = pres["type"]
        if ptype not in PRESENCE_TYPES:
            # subscription requests, probes and errors
            return
        sender = pres["from"]
        address = str(sender.bare)
        if address == str(self._client.boundjid.bare):
            return
        state = self._aggregate_presence(address, sender.resource, ptype, pres["priority"])
        if self._on_presence is None:
            return
        # one worker keeps updates for a contact in arrival order
        self._presence_pool.submit(self._on_presence, address, state)

    def _aggregate_presence(self, address: str, resource: str, ptype: str, priority) -> Presence:
        """Fold one resource's presence into the contact's overall presence.

        The contact is unavailable only when no resource is online; otherwise
        the highest-priority resource wins, the most recent one on a tie.
        """
        resources = self._resources.setdefault(address, {})
        if ptype == "unavailable":
            resources.pop(resource, None)
        else:
            self._arrivals += 1
            resources[resource] = (int(priority or 0), self._arrivals, presence_from_type(ptype))
        if not resources:
            self._resources.pop(address, None)
            return Presence.UNAVAILABLE
        return max(resources.values())[2]

    # -- ChatTransport ---------------------------------------------------

    def connect(self) -> None:
        self._closing = False
        self._failure = None
        self._resources = {}
        self._start_loop()
        future = asyncio.run_coroutine_threadsafe(self._async_build(), self._loop)
        future.result(self.call_timeout)
        self._spawn(self._client.connect)
        self._wait_for(self._stream_up, "connect")

    async def _async_build(self) -> None:
        self._build_client()

    def authenticate(self) -> None:
        self._wait_for(self._session_up, "authentication")

    def close(self) -> None:
        self._closing = True
        loop, client = self._loop, self._client
        if loop is None:
            return
        try:
            if client is not None and self._stream_up.is_set():
                self._call(client.disconnect)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            self._stream_up.clear()
            self._session_up.clear()

    def send(self, address: str, text: str) -> None:
        self._spawn(self._client.send_message, mto=address, mbody=text, mtype="chat")

    def set_status(self, text: str) -> None:
        self._spawn(self._client.send_presence, pshow="chat", pstatus=text)

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._on_message = handler

    def set_presence_handler(self, handler: PresenceHandler) -> None:
        self._on_presence = handler

    def set_error_handler(self, handler: ErrorHandler | None) -> None:
        self._on_error = handler

    def list_roster(self) -> list[str]:
        own = str(self._client.boundjid.bare) if self._client else ""
        return self._call(lambda: sorted(str(j) for j in self._client.client_roster.keys() if str(j) != own))

    def add_to_roster(self, address: str, alias: str) -> None:
        self._call(self._client.update_roster, address, name=alias)
        self._spawn(self._client.send_presence, pto=address, ptype="subscribe")

    def remove_from_roster(self, address: str) -> None:
        self._call(self._client.del_roster_item, address)


def xmpp_transport(config) -> XMPPTransport:
    """Transport factory used by the gateway."""
    return XMPPTransport(config.xmpp.jid, config.xmpp.password, call_timeout=config.session.connect_timeout)
