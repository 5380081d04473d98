"""Chat contact presence and per-contact notification history."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

import structlog

from .events import NotificationEvent

logger = structlog.get_logger(__name__)

HISTORY_SLOTS = 10


class Presence(str, Enum):
    UNAVAILABLE = "unavailable"
    AVAILABLE = "available"
    CHAT = "chat"
    AWAY = "away"
    DND = "dnd"
    EXTENDED_AWAY = "extended-away"

    @property
    def is_available(self) -> bool:
        return self in (Presence.AVAILABLE, Presence.CHAT)


@dataclass
class Contact:
    """Mutable contact record; only ever touched under the directory lock."""

    address: str
    presence: Presence = Presence.UNAVAILABLE
    recent: dict[int, NotificationEvent] = field(default_factory=dict)
    sent_count: int = 0
    missed: list[NotificationEvent] = field(default_factory=list)


@dataclass(frozen=True)
class ContactSnapshot:
    address: str
    presence: Presence
    recent: dict[int, NotificationEvent]
    missed_count: int

    @property
    def available(self) -> bool:
        return self.presence.is_available


class ContactDirectory:
    """Thread-safe owner of every chat contact seen by this process.

    Presence updates arrive on transport threads while commands run on the
    event loop worker and the intake runs on HTTP workers, so every read and
    write goes through ``_lock`` and callers only ever get snapshots back.
    Contacts are created lazily and never evicted.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._contacts: dict[str, Contact] = {}

    def _get_or_create(self, address: str) -> Contact:
        contact = self._contacts.get(address)
        if contact is None:
            contact = Contact(address=address)
            self._contacts[address] = contact
            logger.debug("Tracking new contact", address=address)
        return contact

    @staticmethod
    def _assign_slot(contact: Contact, event: NotificationEvent) -> int:
        seq = contact.sent_count % HISTORY_SLOTS
        contact.sent_count += 1
        contact.recent[seq] = event.with_seq(seq)
        return seq

    @staticmethod
    def _snapshot(contact: Contact) -> ContactSnapshot:
        return ContactSnapshot(
            address=contact.address,
            presence=contact.presence,
            recent=dict(contact.recent),
            missed_count=len(contact.missed),
        )

    def get_or_create(self, address: str) -> ContactSnapshot:
        with self._lock:
            return self._snapshot(self._get_or_create(address))

    def get(self, address: str) -> ContactSnapshot | None:
        with self._lock:
            contact = self._contacts.get(address)
            return self._snapshot(contact) if contact else None

    def is_tracked(self, address: str) -> bool:
        with self._lock:
            return address in self._contacts

    def addresses(self) -> list[str]:
        with self._lock:
            return sorted(self._contacts)

    def is_available(self, address: str) -> bool:
        with self._lock:
            contact = self._contacts.get(address)
            return bool(contact and contact.presence.is_available)

    def update_presence(self, address: str, new_state: Presence) -> bool:
        """Record a presence change.

        Returns True exactly when the contact went from not-available to
        available, which is the caller's cue to run catch-up.
        """
        with self._lock:
            contact = self._get_or_create(address)
            old_state = contact.presence
            contact.presence = new_state
        logger.debug("Presence update", address=address, old=old_state.value, new=new_state.value)
        return (not old_state.is_available) and new_state.is_available

    def record_notification(self, address: str, event: NotificationEvent) -> int:
        """Assign the next history slot (0-9, wrapping) and store the event in it."""
        with self._lock:
            return self._assign_slot(self._get_or_create(address), event)

    def deliver_or_queue(self, address: str, event: NotificationEvent) -> int | None:
        """Number ``event`` for an available contact, else queue it as missed.

        Availability is checked and acted on under one lock hold, so a
        concurrent presence change either sees the missed entry or makes the
        contact available first.
        """
        with self._lock:
            contact = self._get_or_create(address)
            if not contact.presence.is_available:
                contact.missed.append(event)
                return None
            return self._assign_slot(contact, event)

    def recent(self, address: str, seq: int) -> NotificationEvent | None:
        with self._lock:
            contact = self._contacts.get(address)
            if contact is None:
                return None
            return contact.recent.get(seq)

    def record_missed(self, address: str, event: NotificationEvent) -> None:
        with self._lock:
            self._get_or_create(address).missed.append(event)

    def drain_missed(self, address: str) -> list[NotificationEvent]:
        with self._lock:
            contact = self._contacts.get(address)
            if contact is None:
                return []
            missed, contact.missed = contact.missed, []
            return missed
