"""Contract the gateway consumes from the monitoring backend."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Callable

from ..events import HOST, SERVICE, NotificationEvent

OK = "ok"

RefreshListener = Callable[[], bool]


class Entity(abc.ABC):
    """A monitored host or service.

    State values are lower-case words (``ok``, ``down``, ``critical`` ...).
    """

    kind: str = ""

    @property
    @abc.abstractmethod
    def name(self) -> str: ...

    @property
    def display_name(self) -> str:
        return self.name

    @property
    @abc.abstractmethod
    def current_state(self) -> str: ...

    @property
    @abc.abstractmethod
    def hard_state(self) -> str: ...

    @property
    @abc.abstractmethod
    def active_checks_enabled(self) -> bool: ...

    @property
    @abc.abstractmethod
    def last_check_time(self) -> float: ...

    @abc.abstractmethod
    def force_check(self, at_time: float) -> None: ...

    @abc.abstractmethod
    def acknowledge(self, author: str, comment: str) -> None: ...

    @abc.abstractmethod
    def render(self, fmt: str = "xmpp") -> str: ...


@dataclass(frozen=True)
class BackendContact:
    name: str
    props: dict[str, str] = field(default_factory=dict)

    @property
    def alias(self) -> str:
        return self.props.get("alias") or self.name


@dataclass
class StatusReport:
    """Problem entities classified by current state."""

    hosts: dict[str, list[Entity]] = field(default_factory=dict)
    services: dict[str, list[Entity]] = field(default_factory=dict)

    @property
    def all_ok(self) -> bool:
        return not self.hosts and not self.services


class MonitoringBackend(abc.ABC):
    @abc.abstractmethod
    def status_exists(self) -> bool: ...

    @abc.abstractmethod
    def status_report(self) -> StatusReport: ...

    @abc.abstractmethod
    def find_host(self, name: str) -> Entity | None: ...

    @abc.abstractmethod
    def service_names(self, host_name: str) -> list[str]: ...

    @abc.abstractmethod
    def find_service(self, host_name: str, service_name: str) -> Entity | None: ...

    @abc.abstractmethod
    def find_contact(self, name: str) -> BackendContact | None: ...

    @abc.abstractmethod
    def contacts(self) -> list[BackendContact]: ...

    @abc.abstractmethod
    def refresh(self) -> None:
        """Reload status and run refresh listeners."""

    @abc.abstractmethod
    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """Call ``listener`` after every refresh until it returns False."""

    @abc.abstractmethod
    def has_refresh_listeners(self) -> bool: ...

    def find_contact_by_property(self, prop: str, value: str) -> BackendContact | None:
        for contact in self.contacts():
            if contact.props.get(prop) == value:
                return contact
        return None

    def resolve(self, event: NotificationEvent) -> Entity | None:
        """Re-resolve the entity a notification refers to."""
        if event.kind == HOST:
            return self.find_host(event.host_name)
        if event.kind == SERVICE and event.service_name:
            return self.find_service(event.host_name, event.service_name)
        return None
