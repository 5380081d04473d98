"""Explicit dependencies threaded through commands and delivery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .backend.base import MonitoringBackend
    from .config import GatewayConfig
    from .contacts import ContactDirectory
    from .deferred import DeferredCheckRegistry
    from .policy import NotificationPolicyEngine


@dataclass(frozen=True)
class GatewayContext:
    config: "GatewayConfig"
    backend: "MonitoringBackend"
    directory: "ContactDirectory"
    deferred: "DeferredCheckRegistry"
    policy: "NotificationPolicyEngine"
    # sends through whichever chat session is current
    send: Callable[[str, str], None]
