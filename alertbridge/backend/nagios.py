"""Nagios backend: object cache, status file and external command pipe."""

from __future__ import annotations

import abc
import re
import threading
import time
from pathlib import Path
from typing import Iterator

import structlog

from .. import formatting
from ..events import HOST, SERVICE
from .base import OK, BackendContact, Entity, MonitoringBackend, RefreshListener, StatusReport

logger = structlog.get_logger(__name__)

HOST_STATES = {0: OK, 1: "down", 2: "unreachable"}
SERVICE_STATES = {0: OK, 1: "warning", 2: "critical", 3: "unknown"}
SERVICE_PROBLEMS = ("critical", "warning", "unknown")

_DEFINE_RE = re.compile(r"^define\s+(\w+)\s*\{$")
_STATUS_RE = re.compile(r"^(\w+)\s*\{$")


def parse_object_cache(text: str) -> Iterator[tuple[str, dict[str, str]]]:
    """Yield ``(type, attrs)`` for every ``define <type> { key value }`` block."""
    kind = None
    attrs: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if kind is None:
            m = _DEFINE_RE.match(line)
            if m:
                kind, attrs = m.group(1), {}
            continue
        if line == "}":
            yield kind, attrs
            kind = None
            continue
        parts = line.split(None, 1)
        attrs[parts[0]] = parts[1].strip() if len(parts) > 1 else ""


def parse_status(text: str) -> Iterator[tuple[str, dict[str, str]]]:
    """Yield ``(type, attrs)`` for every ``<type> { key=value }`` block."""
    kind = None
    attrs: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if kind is None:
            m = _STATUS_RE.match(line)
            if m:
                kind, attrs = m.group(1), {}
            continue
        if line == "}":
            yield kind, attrs
            kind = None
            continue
        key, _, value = line.partition("=")
        attrs[key] = value


def _int(value: str | None, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


class _NagiosEntity(Entity):
    states: dict[int, str] = {}

    def __init__(self, backend: "NagiosBackend", host_name: str):
        self._backend = backend
        self.host_name = host_name

    @abc.abstractmethod
    def _status(self) -> dict[str, str]: ...

    def _state_word(self, code: str | None) -> str:
        return self.states.get(_int(code, -1), "unknown")

    @property
    def current_state(self) -> str:
        return self._state_word(self._status().get("current_state"))

    @property
    def hard_state(self) -> str:
        status = self._status()
        if _int(status.get("state_type"), 1) == 1:
            return self._state_word(status.get("current_state"))
        return self._state_word(status.get("last_hard_state"))

    @property
    def active_checks_enabled(self) -> bool:
        return _int(self._status().get("active_checks_enabled"), 1) == 1

    @property
    def last_check_time(self) -> float:
        return float(_int(self._status().get("last_check")))

    @property
    def last_state_change(self) -> float:
        return float(_int(self._status().get("last_state_change")))

    @property
    def plugin_output(self) -> str:
        return self._status().get("plugin_output", "")

    @property
    def acknowledged(self) -> bool:
        return _int(self._status().get("problem_has_been_acknowledged")) == 1

    def render(self, fmt: str = "xmpp") -> str:
        return formatting.entity_detail(self, self.web_link())

    @abc.abstractmethod
    def web_link(self) -> str: ...

    def __lt__(self, other: "_NagiosEntity") -> bool:
        return self.display_name < other.display_name

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _NagiosEntity) and (self.kind, self.display_name) == (other.kind, other.display_name)

    def __hash__(self) -> int:
        return hash((self.kind, self.display_name))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.display_name}>"


class NagiosHost(_NagiosEntity):
    kind = HOST
    states = HOST_STATES

    @property
    def name(self) -> str:
        return self.host_name

    def _status(self) -> dict[str, str]:
        return self._backend.host_status(self.host_name)

    def force_check(self, at_time: float) -> None:
        self._backend.submit("SCHEDULE_FORCED_HOST_CHECK", self.host_name, str(int(at_time)))

    def acknowledge(self, author: str, comment: str) -> None:
        self._backend.submit("ACKNOWLEDGE_HOST_PROBLEM", self.host_name, "1", "1", "1", author, comment)

    def web_link(self) -> str:
        return formatting.host_uri(self._backend.web_uri, self.host_name)


class NagiosService(_NagiosEntity):
    kind = SERVICE
    states = SERVICE_STATES

    def __init__(self, backend: "NagiosBackend", host_name: str, service_name: str):
        super().__init__(backend, host_name)
        self.service_name = service_name

    @property
    def name(self) -> str:
        return self.service_name

    @property
    def display_name(self) -> str:
        return f"{self.host_name}/{self.service_name}"

    def _status(self) -> dict[str, str]:
        return self._backend.service_status(self.host_name, self.service_name)

    def force_check(self, at_time: float) -> None:
        self._backend.submit(
            "SCHEDULE_FORCED_SVC_CHECK", self.host_name, self.service_name, str(int(at_time))
        )

    def acknowledge(self, author: str, comment: str) -> None:
        self._backend.submit(
            "ACKNOWLEDGE_SVC_PROBLEM", self.host_name, self.service_name, "1", "1", "1", author, comment
        )

    def web_link(self) -> str:
        return formatting.service_uri(self._backend.web_uri, self.host_name, self.service_name)


class NagiosBackend(MonitoringBackend):
    """Reads Nagios' object cache and status file, writes its command pipe.

    Entities look their state up by name on every access, so references held
    across a status reload stay valid.
    """

    def __init__(self, var_dir: str, cache_dir: str | None = None, web_uri: str = ""):
        cache = Path(cache_dir or var_dir)
        self.objects_path = cache / "objects.cache"
        self.status_path = cache / "status.dat"
        self.command_path = Path(var_dir) / "rw" / "nagios.cmd"
        self.web_uri = web_uri

        self._lock = threading.RLock()
        self._objects_mtime: float | None = None
        self._status_mtime: float | None = None
        self._hosts: dict[str, NagiosHost] = {}
        self._services: dict[str, dict[str, NagiosService]] = {}
        self._contacts: dict[str, BackendContact] = {}
        self._host_status: dict[str, dict[str, str]] = {}
        self._service_status: dict[tuple[str, str], dict[str, str]] = {}
        self._listeners: list[RefreshListener] = []

        self._load_objects()
        self._load_status()

    # -- loading ---------------------------------------------------------

    def _load_objects(self) -> None:
        try:
            mtime = self.objects_path.stat().st_mtime
        except OSError:
            logger.warning("Object cache missing", path=str(self.objects_path))
            return
        if mtime == self._objects_mtime:
            return

        hosts: dict[str, NagiosHost] = {}
        services: dict[str, dict[str, NagiosService]] = {}
        contacts: dict[str, BackendContact] = {}
        for kind, attrs in parse_object_cache(self.objects_path.read_text(encoding="utf-8", errors="replace")):
            if kind == "host" and attrs.get("host_name"):
                hosts[attrs["host_name"]] = NagiosHost(self, attrs["host_name"])
            elif kind == "service" and attrs.get("host_name") and attrs.get("service_description"):
                h, s = attrs["host_name"], attrs["service_description"]
                services.setdefault(h, {})[s] = NagiosService(self, h, s)
            elif kind == "contact" and attrs.get("contact_name"):
                contacts[attrs["contact_name"]] = BackendContact(attrs["contact_name"], dict(attrs))

        with self._lock:
            self._hosts, self._services, self._contacts = hosts, services, contacts
            self._objects_mtime = mtime
        logger.info("Loaded object cache", hosts=len(hosts), contacts=len(contacts))

    def _load_status(self) -> bool:
        try:
            mtime = self.status_path.stat().st_mtime
        except OSError:
            return False
        if mtime == self._status_mtime:
            return False

        host_status: dict[str, dict[str, str]] = {}
        service_status: dict[tuple[str, str], dict[str, str]] = {}
        for kind, attrs in parse_status(self.status_path.read_text(encoding="utf-8", errors="replace")):
            if kind == "hoststatus":
                host_status[attrs.get("host_name", "")] = attrs
            elif kind == "servicestatus":
                service_status[(attrs.get("host_name", ""), attrs.get("service_description", ""))] = attrs

        with self._lock:
            self._host_status, self._service_status = host_status, service_status
            self._status_mtime = mtime
        logger.debug("Loaded status file", hosts=len(host_status), services=len(service_status))
        return True

    def refresh(self) -> None:
        self._load_objects()
        self._load_status()
        self._run_listeners()

    def _run_listeners(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        done = []
        for listener in listeners:
            try:
                keep = listener()
            except Exception:
                logger.exception("Refresh listener failed; dropping it")
                keep = False
            if not keep:
                done.append(listener)
        if done:
            with self._lock:
                self._listeners = [fn for fn in self._listeners if fn not in done]

    # -- queries ---------------------------------------------------------

    def host_status(self, host_name: str) -> dict[str, str]:
        with self._lock:
            return self._host_status.get(host_name, {})

    def service_status(self, host_name: str, service_name: str) -> dict[str, str]:
        with self._lock:
            return self._service_status.get((host_name, service_name), {})

    def status_exists(self) -> bool:
        return self.status_path.exists()

    def status_report(self) -> StatusReport:
        with self._lock:
            hosts = list(self._hosts.values())
            services = {h: list(s.values()) for h, s in self._services.items()}

        report = StatusReport()
        for host in hosts:
            state = host.current_state
            if state != OK:
                report.hosts.setdefault(state, []).append(host)
                continue
            # services on down hosts are implied by the host problem
            for svc in services.get(host.name, []):
                svc_state = svc.current_state
                if svc_state in SERVICE_PROBLEMS:
                    report.services.setdefault(svc_state, []).append(svc)
        for group in list(report.hosts.values()) + list(report.services.values()):
            group.sort()
        return report

    def find_host(self, name: str) -> NagiosHost | None:
        with self._lock:
            return self._hosts.get(name)

    def service_names(self, host_name: str) -> list[str]:
        with self._lock:
            return list(self._services.get(host_name, {}))

    def find_service(self, host_name: str, service_name: str) -> NagiosService | None:
        with self._lock:
            return self._services.get(host_name, {}).get(service_name)

    def find_contact(self, name: str) -> BackendContact | None:
        with self._lock:
            return self._contacts.get(name)

    def contacts(self) -> list[BackendContact]:
        with self._lock:
            return list(self._contacts.values())

    # -- refresh listeners -----------------------------------------------

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def has_refresh_listeners(self) -> bool:
        with self._lock:
            return bool(self._listeners)

    # -- external commands -----------------------------------------------

    def submit(self, command: str, *args: str) -> None:
        """Write one external command line to the command pipe."""
        clean = [str(a).replace(";", ",").replace("\n", " ") for a in args]
        line = f"[{int(time.time())}] {';'.join([command, *clean])}\n"
        logger.info("Submitting external command", command=command, args=clean)
        with self._lock:
            with open(self.command_path, "a", encoding="utf-8") as pipe:
                pipe.write(line)
