"""Notification delivery policy: chat first if someone is there, then mail."""

from __future__ import annotations

from typing import Callable

import structlog

from . import formatting
from .backend.base import OK, BackendContact, Entity, MonitoringBackend
from .contacts import ContactDirectory
from .errors import PolicyConfigError, UnknownContactError, UnknownEntityError
from .events import HOST, NotificationEvent
from .mailer import SmtpMailer

logger = structlog.get_logger(__name__)

CHAT = "xmpp"
MAIL_CHANNELS = ("email", "pager")


def parse_policy(policy_spec: str) -> list[str]:
    return [part.strip().lower() for part in (policy_spec or "").split(";") if part.strip()]


class NotificationPolicyEngine:
    """Walks a ``;``-separated channel list left to right.

    ``xmpp`` completes the cascade only when an available contact got the
    message; ``email``/``pager`` complete it as soon as a send is attempted.
    """

    def __init__(
        self,
        backend: MonitoringBackend,
        directory: ContactDirectory,
        send: Callable[[str, str], object],
        mailer: SmtpMailer,
        contact_field: str = "_XMPP",
    ):
        self.backend = backend
        self.directory = directory
        self.send = send
        self.mailer = mailer
        self.contact_field = contact_field

    def deliver(self, contact_name: str, policy_spec: str, event: NotificationEvent) -> str | None:
        """Deliver ``event`` to a backend contact; return the completing channel, if any."""
        contact = self.backend.find_contact(contact_name)
        if contact is None:
            raise UnknownContactError(f"Unknown contact {contact_name}")
        if self.backend.resolve(event) is None:
            raise UnknownEntityError(f"Couldn't find what the notification referred to: {event.display_name}")

        for channel in parse_policy(policy_spec):
            if channel == CHAT:
                if self._deliver_chat(contact, event):
                    return channel
            elif channel in MAIL_CHANNELS:
                self._deliver_mail(contact, channel, event)
                return channel
            else:
                raise PolicyConfigError(f"Unknown delivery channel {channel!r} for contact {contact.name}")
        logger.info("Notification not delivered on any channel", contact=contact.name, policy=policy_spec)
        return None

    def _deliver_chat(self, contact: BackendContact, event: NotificationEvent) -> bool:
        address = contact.props.get(self.contact_field)
        if not address or not self.directory.is_tracked(address):
            logger.warning("No tracked chat contact, skipping chat", contact=contact.name, address=address)
            return False
        seq = self.directory.deliver_or_queue(address, event)
        if seq is None:
            logger.info("Contact unavailable, queued missed notification", address=address)
            return False
        self.send(address, formatting.notification(event.with_seq(seq)))
        logger.info("Delivered notification via chat", address=address, seq=seq)
        return True

    def _deliver_mail(self, contact: BackendContact, channel: str, event: NotificationEvent) -> None:
        to_address = contact.props.get(channel)
        if not to_address:
            logger.error("Contact has no address for channel", contact=contact.name, channel=channel)
            return
        self.mailer.send(
            contact.alias,
            to_address,
            formatting.email_subject(event),
            formatting.email_body(event),
        )

    def catch_up(self, address: str) -> bool:
        """Summarize still-open problems missed while ``address`` was away.

        The missed list is emptied whether or not anything is sent.
        """
        missed = self.directory.drain_missed(address)
        if not missed:
            return False
        logger.debug("Catching up with contact", address=address, missed=len(missed))

        problems: set[Entity] = set()
        for event in missed:
            entity = self.backend.resolve(event)
            if entity is not None and entity.hard_state != OK:
                problems.add(entity)

        hosts: dict[str, list[Entity]] = {}
        services: dict[str, list[Entity]] = {}
        for entity in problems:
            groups = hosts if entity.kind == HOST else services
            groups.setdefault(entity.hard_state, []).append(entity)

        if not hosts and not services:
            return False
        self.send(address, formatting.catch_up(hosts, services))
        return True
