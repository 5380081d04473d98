"""Notification events posted by the monitoring backend."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

HOST = "host"
SERVICE = "service"


@dataclass(frozen=True)
class NotificationEvent:
    """One backend notification.

    ``host_name``/``service_name`` are enough to re-resolve the entity later;
    ``fields`` keeps every macro the backend sent for formatting.  ``seq`` is
    set once the event has been delivered over chat.
    """

    kind: str
    host_name: str
    service_name: str | None = None
    state: str = ""
    fields: Mapping[str, Any] = field(default_factory=dict)
    seq: int | None = None

    @property
    def display_name(self) -> str:
        if self.kind == SERVICE:
            return f"{self.host_name}/{self.service_name}"
        return self.host_name

    @property
    def notification_type(self) -> str:
        return str(self.fields.get("NOTIFICATIONTYPE") or "NOTIFICATION")

    @property
    def output(self) -> str:
        key = "SERVICEOUTPUT" if self.kind == SERVICE else "HOSTOUTPUT"
        return str(self.fields.get(key) or "")

    def with_seq(self, seq: int) -> "NotificationEvent":
        return replace(self, seq=seq)

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> "NotificationEvent":
        """Build an event from backend notification macros.

        Accepts ``ntype`` (or ``kind``) of ``host``/``service``; when absent the
        kind is inferred from the presence of ``SERVICEDESC``.
        """
        data = {str(k): v for k, v in fields.items()}
        host_name = str(data.get("HOSTNAME") or "").strip()
        if not host_name:
            raise ValueError("notification is missing HOSTNAME")

        service_name = str(data.get("SERVICEDESC") or "").strip() or None
        kind = str(data.get("ntype") or data.get("kind") or "").strip().lower()
        if not kind:
            kind = SERVICE if service_name else HOST
        if kind not in (HOST, SERVICE):
            raise ValueError(f"unknown notification type {kind!r}")
        if kind == SERVICE and not service_name:
            raise ValueError("service notification is missing SERVICEDESC")

        state_key = "SERVICESTATE" if kind == SERVICE else "HOSTSTATE"
        return cls(
            kind=kind,
            host_name=host_name,
            service_name=service_name if kind == SERVICE else None,
            state=str(data.get(state_key) or "").strip().upper(),
            fields=data,
        )
