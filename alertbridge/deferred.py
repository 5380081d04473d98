"""Pending "tell me when this check completes" requests."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

from .backend.base import Entity, MonitoringBackend

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, eq=False)
class PendingCheck:
    entity: Entity
    address: str
    requested_at: float = field(default_factory=time.time)


class DeferredCheckRegistry:
    """Reports an entity's detail to a contact once a newer check result lands.

    Each registration rides on the backend's refresh-listener primitive and
    fires at most once. Registrations never expire.
    """

    def __init__(
        self,
        backend: MonitoringBackend,
        send: Callable[[str, str], object],
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self._send = send
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: list[PendingCheck] = []

    def register(self, entity: Entity, address: str) -> PendingCheck:
        pending = PendingCheck(entity=entity, address=address, requested_at=self._clock())
        with self._lock:
            self._pending.append(pending)
        self._backend.add_refresh_listener(lambda: self.evaluate(pending))
        logger.debug("Registered deferred check", entity=entity.display_name, address=address)
        return pending

    def evaluate(self, pending: PendingCheck) -> bool:
        """Return True while the registration should stay pending."""
        # check times from the backend only have whole-second resolution
        if pending.entity.last_check_time < int(pending.requested_at):
            return True
        try:
            self._send(pending.address, pending.entity.render("xmpp"))
            logger.info("Reported check result", entity=pending.entity.display_name, address=pending.address)
        finally:
            with self._lock:
                if pending in self._pending:
                    self._pending.remove(pending)
        return False

    def pending(self) -> list[PendingCheck]:
        with self._lock:
            return list(self._pending)
