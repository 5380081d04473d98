"""Plain-text rendering of notifications, status reports and entity details."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING
from urllib.parse import quote

from .events import NotificationEvent

if TYPE_CHECKING:
    from .backend.base import StatusReport

SECOND = 1
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY

DURATION_PARTS = ((WEEK, "w"), (DAY, "d"), (HOUR, "h"), (MINUTE, "m"), (SECOND, "s"))

# timestamps before this are "never happened" placeholders from the backend
EPOCH_FLOOR = 820454400  # 1996-01-01

BACKEND_DOWN = "Monitoring backend is not running!"


def brief_duration(secs: int) -> str:
    """Two most significant units, e.g. ``2h13m`` or ``3d4h``."""
    secs = max(0, int(secs))
    out = []
    for size, unit in DURATION_PARTS:
        if secs >= size:
            out.append(f"{secs // size}{unit}")
            secs %= size
        elif out:
            break
        if len(out) == 2:
            break
    return "".join(out) or "0s"


def brief_time_delta(timestamp: float, now: float | None = None) -> str:
    if timestamp <= EPOCH_FLOOR:
        return "ever"
    now = time.time() if now is None else now
    return brief_duration(int(now - timestamp))


def host_uri(base: str, host: str) -> str:
    if not base:
        return ""
    return f"{base.rstrip('/')}/cgi-bin/status.cgi?host={quote(host)}"


def service_uri(base: str, host: str, service: str) -> str:
    if not base:
        return ""
    return f"{base.rstrip('/')}/cgi-bin/extinfo.cgi?type=2&host={quote(host)}&service={quote(service)}"


def state_label(kind: str, state: str) -> str:
    if kind == "host" and state == "ok":
        return "UP"
    return state.upper()


def notification(event: NotificationEvent) -> str:
    prefix = f"@{event.seq} " if event.seq is not None else ""
    line = f"{prefix}{event.notification_type}: {event.display_name} is {event.state or 'UNKNOWN'}"
    if event.output:
        line += f": {event.output}"
    return line


def email_subject(event: NotificationEvent) -> str:
    return f"** {event.notification_type}: {event.display_name} is {event.state or 'UNKNOWN'} **"


def email_body(event: NotificationEvent) -> str:
    lines = [
        f"Notification Type: {event.notification_type}",
        "",
        f"Host: {event.host_name}",
    ]
    if event.service_name:
        lines.append(f"Service: {event.service_name}")
    lines.append(f"State: {event.state or 'UNKNOWN'}")
    for key in ("HOSTADDRESS", "LONGDATETIME"):
        if event.fields.get(key):
            lines.append(f"{key.title()}: {event.fields[key]}")
    lines += ["", "Info:", "", event.output]
    return "\n".join(lines).rstrip() + "\n"


def _group_line(kind: str, groups: dict) -> str:
    parts = []
    for state in sorted(groups):
        names = ", ".join(sorted(e.display_name for e in groups[state]))
        parts.append(f"{state_label(kind, state)}: {names}")
    return "; ".join(parts)


def status_summary(report: "StatusReport") -> str:
    if report.all_ok:
        return "All hosts and services OK."
    lines = []
    if report.hosts:
        lines.append("Hosts: " + _group_line("host", report.hosts))
    if report.services:
        lines.append("Services: " + _group_line("service", report.services))
    return "\n".join(lines)


def status_message(report: "StatusReport") -> str:
    """One-line summary used as the gateway's presence status."""
    if report.all_ok:
        return "All OK"
    parts = []
    for state in sorted(report.hosts):
        parts.append(f"{len(report.hosts[state])} {state_label('host', state)}")
    for state in sorted(report.services):
        parts.append(f"{len(report.services[state])} {state_label('service', state)}")
    return ", ".join(parts)


def entity_detail(entity, link: str = "") -> str:
    state = entity.current_state
    line = f"{entity.display_name}: {state_label(entity.kind, state)}"
    last_change = getattr(entity, "last_state_change", 0)
    if last_change:
        line += f" for {brief_time_delta(last_change)}"
    if getattr(entity, "acknowledged", False):
        line += " (acknowledged)"
    lines = [line]
    output = getattr(entity, "plugin_output", "")
    if output:
        lines.append(output)
    checked = brief_time_delta(entity.last_check_time)
    lines.append("Last check: never" if checked == "ever" else f"Last check: {checked} ago")
    if link:
        lines.append(link)
    return "\n".join(lines)


def catch_up(hosts: dict, services: dict) -> str:
    """Summary of problems a contact missed while away."""
    lines = ["While you were out:"]
    if hosts:
        lines.append(_group_line("host", hosts))
    if services:
        lines.append(_group_line("service", services))
    return "\n".join(lines) + "\n"
