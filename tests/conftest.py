from __future__ import annotations

import threading

import pytest

from alertbridge.backend.base import OK, BackendContact, Entity, MonitoringBackend, StatusReport
from alertbridge.commands import Router, build_command_table
from alertbridge.config import GatewayConfig
from alertbridge.contacts import ContactDirectory
from alertbridge.context import GatewayContext
from alertbridge.deferred import DeferredCheckRegistry
from alertbridge.errors import TransportError
from alertbridge.events import HOST, SERVICE
from alertbridge.policy import NotificationPolicyEngine
from alertbridge.session import InboundEventLoop, SessionManager
from alertbridge.transport.base import ChatTransport, InboundMessage

ALICE = "alice@chat.example.com"
BOB = "bob@chat.example.com"


class FakeEntity(Entity):
    def __init__(self, kind, host_name, service_name=None, state=OK, hard_state=None, active=True, last_check=0.0):
        self.kind = kind
        self.host_name = host_name
        self.service_name = service_name
        self.state = state
        self.hard = hard_state
        self.active = active
        self.last_check = last_check
        self.forced: list[float] = []
        self.acks: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return self.service_name or self.host_name

    @property
    def display_name(self) -> str:
        return f"{self.host_name}/{self.service_name}" if self.service_name else self.host_name

    @property
    def current_state(self) -> str:
        return self.state

    @property
    def hard_state(self) -> str:
        return self.hard or self.state

    @property
    def active_checks_enabled(self) -> bool:
        return self.active

    @property
    def last_check_time(self) -> float:
        return self.last_check

    def force_check(self, at_time: float) -> None:
        self.forced.append(at_time)

    def acknowledge(self, author: str, comment: str) -> None:
        self.acks.append((author, comment))

    def render(self, fmt: str = "xmpp") -> str:
        return f"{self.display_name} is {self.state.upper()}"


class FakeBackend(MonitoringBackend):
    def __init__(self):
        self.running = True
        self.hosts: dict[str, FakeEntity] = {}
        self.services: dict[tuple[str, str], FakeEntity] = {}
        self.contact_list: list[BackendContact] = []
        self.listeners: list = []
        self.refreshes = 0

    def add_host(self, name: str, **kw) -> FakeEntity:
        self.hosts[name] = FakeEntity(HOST, name, **kw)
        return self.hosts[name]

    def add_service(self, host: str, name: str, **kw) -> FakeEntity:
        self.services[(host, name)] = FakeEntity(SERVICE, host, name, **kw)
        return self.services[(host, name)]

    def add_contact(self, name: str, **props: str) -> BackendContact:
        contact = BackendContact(name, dict(props))
        self.contact_list.append(contact)
        return contact

    def status_exists(self) -> bool:
        return self.running

    def status_report(self) -> StatusReport:
        report = StatusReport()
        for host in self.hosts.values():
            if host.state != OK:
                report.hosts.setdefault(host.state, []).append(host)
        for (host_name, _), svc in self.services.items():
            if svc.state != OK and self.hosts[host_name].state == OK:
                report.services.setdefault(svc.state, []).append(svc)
        return report

    def find_host(self, name):
        return self.hosts.get(name)

    def service_names(self, host_name):
        return [s for (h, s) in self.services if h == host_name]

    def find_service(self, host_name, service_name):
        return self.services.get((host_name, service_name))

    def find_contact(self, name):
        return next((c for c in self.contact_list if c.name == name), None)

    def contacts(self):
        return list(self.contact_list)

    def refresh(self) -> None:
        self.refreshes += 1
        self.listeners = [fn for fn in self.listeners if fn()]

    def add_refresh_listener(self, listener) -> None:
        self.listeners.append(listener)

    def has_refresh_listeners(self) -> bool:
        return bool(self.listeners)


class FakeTransport(ChatTransport):
    def __init__(self, fail_connects: int = 0, hang_connects: int = 0):
        self.fail_connects = fail_connects
        self.hang_connects = hang_connects
        self.connects = 0
        self.closes = 0
        self.sent: list[tuple[str, str]] = []
        self.statuses: list[str] = []
        self.roster: dict[str, str] = {}
        self.on_message = None
        self.on_presence = None
        self.on_error = None
        self._release = threading.Event()

    def connect(self) -> None:
        self.connects += 1
        if self.connects <= self.hang_connects:
            self._release.wait(5)
            raise TransportError("hung connect released")
        if self.connects <= self.hang_connects + self.fail_connects:
            raise TransportError("connection refused")

    def authenticate(self) -> None:
        pass

    def close(self) -> None:
        self.closes += 1
        self._release.set()

    def send(self, address: str, text: str) -> None:
        self.sent.append((address, text))

    def set_status(self, text: str) -> None:
        self.statuses.append(text)

    def set_message_handler(self, handler) -> None:
        self.on_message = handler

    def set_presence_handler(self, handler) -> None:
        self.on_presence = handler

    def set_error_handler(self, handler) -> None:
        self.on_error = handler

    def list_roster(self) -> list[str]:
        return sorted(self.roster)

    def add_to_roster(self, address: str, alias: str) -> None:
        self.roster[address] = alias

    def remove_from_roster(self, address: str) -> None:
        del self.roster[address]


class FakeMailer:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[dict] = []

    def send(self, to_name, to_address, subject, body) -> bool:
        self.sent.append({"to_name": to_name, "to": to_address, "subject": subject, "body": body})
        return self.ok


class Harness:
    """A connected session, inbound loop and delivery engine over fakes."""

    def __init__(self, enable_eval: bool = False):
        self.now = 1000.0
        self.config = GatewayConfig(enable_eval=enable_eval)
        self.backend = FakeBackend()
        self.directory = ContactDirectory()
        self.transport = FakeTransport()
        self.mailer = FakeMailer()
        self.session = SessionManager(self.transport, connect_timeout=1.0, retry_delay=0.0, sleep=lambda _s: None)
        self.deferred = DeferredCheckRegistry(self.backend, self.session.send, clock=lambda: self.now)
        self.policy = NotificationPolicyEngine(
            self.backend, self.directory, self.session.send, self.mailer, contact_field="_XMPP"
        )
        self.ctx = GatewayContext(
            config=self.config,
            backend=self.backend,
            directory=self.directory,
            deferred=self.deferred,
            policy=self.policy,
            send=self.session.send,
        )
        self.loop = InboundEventLoop(self.session, self.ctx, Router(build_command_table(enable_eval)))
        assert self.session.connect()

    def sent_to(self, address: str) -> list[str]:
        return [text for to, text in self.transport.sent if to == address]

    def process_ok(self, body: str | None, sender: str = ALICE) -> bool:
        return self.loop.process(InboundMessage(sender=sender, body=body))

    def say(self, body: str | None, sender: str = ALICE) -> list[str]:
        before = len(self.transport.sent)
        self.loop.process(InboundMessage(sender=sender, body=body))
        return [text for to, text in self.transport.sent[before:] if to == sender]


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def eval_harness() -> Harness:
    return Harness(enable_eval=True)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def transports() -> list[FakeTransport]:
    return []


@pytest.fixture
def transport_factory(transports):
    def factory(_config) -> FakeTransport:
        transport = FakeTransport()
        transports.append(transport)
        return transport

    return factory


@pytest.fixture
def fake_transport_cls():
    return FakeTransport


@pytest.fixture
def fake_mailer() -> FakeMailer:
    return FakeMailer()
