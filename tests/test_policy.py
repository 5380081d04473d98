from __future__ import annotations

import threading

import pytest

from alertbridge.contacts import Presence
from alertbridge.errors import PolicyConfigError, UnknownContactError, UnknownEntityError
from alertbridge.events import NotificationEvent
from alertbridge.policy import parse_policy

ALICE = "alice@chat.example.com"


def _host_event(host: str = "web01", state: str = "DOWN") -> NotificationEvent:
    return NotificationEvent.from_fields({
        "HOSTNAME": host,
        "HOSTSTATE": state,
        "NOTIFICATIONTYPE": "PROBLEM",
        "HOSTOUTPUT": "PING CRITICAL - Packet loss = 100%",
    })


@pytest.fixture
def setup(harness):
    harness.backend.add_host("web01", state="down")
    harness.backend.add_contact("alice", _XMPP=ALICE, email="alice@example.com", pager="555@pager.example.com")
    return harness


def test_parse_policy() -> None:
    assert parse_policy(" XMPP ; email;;pager ") == ["xmpp", "email", "pager"]
    assert parse_policy("") == []


def test_untracked_chat_contact_falls_through_to_email(setup) -> None:
    channel = setup.policy.deliver("alice", "xmpp;email", _host_event())

    assert channel == "email"
    assert setup.transport.sent == []
    assert len(setup.mailer.sent) == 1
    mail = setup.mailer.sent[0]
    assert mail["to"] == "alice@example.com"
    assert mail["subject"] == "** PROBLEM: web01 is DOWN **"
    assert "Host: web01" in mail["body"]


def test_offline_contact_gets_one_missed_entry_and_nothing_sent(setup) -> None:
    setup.directory.get_or_create(ALICE)

    channel = setup.policy.deliver("alice", "xmpp", _host_event())

    assert channel is None
    assert setup.transport.sent == []
    assert setup.mailer.sent == []
    assert setup.directory.get(ALICE).missed_count == 1


def test_available_contact_gets_numbered_chat_message(setup) -> None:
    setup.directory.update_presence(ALICE, Presence.AVAILABLE)

    channel = setup.policy.deliver("alice", "xmpp;email", _host_event())

    assert channel == "xmpp"
    assert setup.sent_to(ALICE) == ["@0 PROBLEM: web01 is DOWN: PING CRITICAL - Packet loss = 100%"]
    assert setup.mailer.sent == []
    assert setup.directory.recent(ALICE, 0).host_name == "web01"


def test_mail_channel_ends_cascade_even_when_send_fails(setup) -> None:
    setup.mailer.ok = False

    channel = setup.policy.deliver("alice", "email;pager", _host_event())

    assert channel == "email"
    assert [m["to"] for m in setup.mailer.sent] == ["alice@example.com"]


def test_missing_mail_address_is_skipped_but_ends_cascade(harness) -> None:
    harness.backend.add_host("web01", state="down")
    harness.backend.add_contact("bob")

    assert harness.policy.deliver("bob", "email;pager", _host_event()) == "email"
    assert harness.mailer.sent == []


def test_unknown_channel_fails_when_reached(setup) -> None:
    with pytest.raises(PolicyConfigError):
        setup.policy.deliver("alice", "xmpp;sms", _host_event())

    setup.directory.update_presence(ALICE, Presence.AVAILABLE)
    assert setup.policy.deliver("alice", "xmpp;sms", _host_event()) == "xmpp"


def test_unknown_contact(setup) -> None:
    with pytest.raises(UnknownContactError):
        setup.policy.deliver("mallory", "email", _host_event())


def test_unresolvable_referent(setup) -> None:
    with pytest.raises(UnknownEntityError):
        setup.policy.deliver("alice", "email", _host_event(host="gone01"))
    assert setup.mailer.sent == []


def test_catch_up_clears_missed_even_when_everything_recovered(setup) -> None:
    setup.directory.get_or_create(ALICE)
    setup.policy.deliver("alice", "xmpp", _host_event())
    setup.backend.hosts["web01"].state = "ok"

    assert setup.directory.update_presence(ALICE, Presence.AVAILABLE)
    assert setup.policy.catch_up(ALICE) is False
    assert setup.transport.sent == []
    assert setup.directory.get(ALICE).missed_count == 0


def test_catch_up_summarizes_open_problems_once(setup) -> None:
    setup.backend.add_host("db01")
    setup.backend.add_service("db01", "MySQL", state="critical")
    service_event = NotificationEvent.from_fields({
        "HOSTNAME": "db01",
        "SERVICEDESC": "MySQL",
        "SERVICESTATE": "CRITICAL",
    })
    setup.directory.get_or_create(ALICE)
    for event in (_host_event(), _host_event(), service_event):
        setup.policy.deliver("alice", "xmpp", event)
    setup.directory.update_presence(ALICE, Presence.AVAILABLE)

    assert setup.policy.catch_up(ALICE) is True

    assert setup.sent_to(ALICE) == ["While you were out:\nDOWN: web01\nCRITICAL: db01/MySQL\n"]
    assert setup.policy.catch_up(ALICE) is False


def test_presence_flip_during_delivery_never_strands_a_missed_entry(setup) -> None:
    setup.directory.get_or_create(ALICE)
    flipper: list[threading.Thread] = []

    def come_online() -> None:
        if setup.directory.update_presence(ALICE, Presence.AVAILABLE):
            setup.policy.catch_up(ALICE)

    real_is_tracked = setup.directory.is_tracked

    def is_tracked_then_flip(address: str) -> bool:
        tracked = real_is_tracked(address)
        thread = threading.Thread(target=come_online)
        thread.start()
        flipper.append(thread)
        return tracked

    setup.directory.is_tracked = is_tracked_then_flip

    setup.policy.deliver("alice", "xmpp", _host_event())
    flipper[0].join(timeout=5)

    # either delivered live or summarized by catch-up, exactly once
    assert setup.directory.is_available(ALICE)
    assert setup.directory.get(ALICE).missed_count == 0
    assert len(setup.sent_to(ALICE)) == 1


def test_contact_going_online_after_queueing_gets_catch_up(setup) -> None:
    setup.directory.get_or_create(ALICE)
    setup.policy.deliver("alice", "xmpp", _host_event())

    assert setup.directory.update_presence(ALICE, Presence.AVAILABLE)
    assert setup.policy.catch_up(ALICE)
    setup.policy.deliver("alice", "xmpp", _host_event())

    assert setup.directory.get(ALICE).missed_count == 0
    assert setup.sent_to(ALICE) == [
        "While you were out:\nDOWN: web01\n",
        "@0 PROBLEM: web01 is DOWN: PING CRITICAL - Packet loss = 100%",
    ]
