from __future__ import annotations

import os
import re
from pathlib import Path

import pytest

from alertbridge.backend.nagios import NagiosBackend, _NagiosEntity, parse_object_cache, parse_status
from alertbridge.events import NotificationEvent

OBJECTS = """\
# Nagios objects.cache
define host {
\thost_name\tweb01
\talias\tWeb server
\t}

define host {
\thost_name\tdb01
\t}

define service {
\thost_name\tweb01
\tservice_description\tHTTP
\t}

define service {
\thost_name\tweb01
\tservice_description\tDisk /var
\t}

define service {
\thost_name\tdb01
\tservice_description\tMySQL
\t}

define contact {
\tcontact_name\talice
\talias\tAlice Example
\temail\talice@example.com
\t_XMPP\talice@chat.example.com
\t}
"""

STATUS = """\
info {
\tversion=3.5.1
\t}

hoststatus {
\thost_name=web01
\tcurrent_state=0
\tlast_check=1700000000
\tactive_checks_enabled=1
\tplugin_output=PING OK
\t}

hoststatus {
\thost_name=db01
\tcurrent_state=1
\tstate_type=0
\tlast_hard_state=0
\tlast_check=1700000100
\tactive_checks_enabled=0
\t}

servicestatus {
\thost_name=web01
\tservice_description=HTTP
\tcurrent_state=2
\tstate_type=1
\tplugin_output=HTTP CRITICAL - connection refused
\t}

servicestatus {
\thost_name=web01
\tservice_description=Disk /var
\tcurrent_state=0
\t}

servicestatus {
\thost_name=db01
\tservice_description=MySQL
\tcurrent_state=2
\t}
"""


@pytest.fixture
def nagios_dir(tmp_path: Path) -> Path:
    (tmp_path / "objects.cache").write_text(OBJECTS)
    (tmp_path / "status.dat").write_text(STATUS)
    (tmp_path / "rw").mkdir()
    (tmp_path / "rw" / "nagios.cmd").write_text("")
    return tmp_path


@pytest.fixture
def nagios(nagios_dir: Path) -> NagiosBackend:
    return NagiosBackend(str(nagios_dir), web_uri="http://mon.example.com/nagios")


def test_parsers_yield_blocks() -> None:
    blocks = list(parse_object_cache(OBJECTS))
    assert [kind for kind, _ in blocks] == ["host", "host", "service", "service", "service", "contact"]
    assert blocks[3][1]["service_description"] == "Disk /var"

    status = dict((attrs.get("host_name"), attrs) for kind, attrs in parse_status(STATUS) if kind == "hoststatus")
    assert status["web01"]["plugin_output"] == "PING OK"


def test_entities_and_states(nagios: NagiosBackend) -> None:
    web = nagios.find_host("web01")
    db = nagios.find_host("db01")
    http = nagios.find_service("web01", "HTTP")

    assert web.current_state == "ok"
    assert db.current_state == "down"
    # soft state: hard state still the last hard one
    assert db.hard_state == "ok"
    assert not db.active_checks_enabled
    assert http.current_state == "critical"
    assert http.hard_state == "critical"
    assert http.display_name == "web01/HTTP"
    assert sorted(nagios.service_names("web01")) == ["Disk /var", "HTTP"]
    assert nagios.find_host("nope") is None


def test_status_report_skips_services_on_bad_hosts(nagios: NagiosBackend) -> None:
    report = nagios.status_report()

    assert {s: [h.name for h in hs] for s, hs in report.hosts.items()} == {"down": ["db01"]}
    assert {s: [e.display_name for e in es] for s, es in report.services.items()} == {"critical": ["web01/HTTP"]}
    assert not report.all_ok


def test_contacts(nagios: NagiosBackend) -> None:
    alice = nagios.find_contact("alice")
    assert alice.alias == "Alice Example"
    assert alice.props["email"] == "alice@example.com"
    assert nagios.find_contact_by_property("_XMPP", "alice@chat.example.com") == alice
    assert nagios.find_contact_by_property("_XMPP", "bob@chat.example.com") is None


def test_resolve_notification(nagios: NagiosBackend) -> None:
    event = NotificationEvent(kind="service", host_name="web01", service_name="Disk /var")
    assert nagios.resolve(event) == nagios.find_service("web01", "Disk /var")
    assert nagios.resolve(NotificationEvent(kind="host", host_name="gone")) is None


def test_render_includes_output_and_link(nagios: NagiosBackend) -> None:
    text = nagios.find_service("web01", "HTTP").render("xmpp")
    assert text.startswith("web01/HTTP: CRITICAL")
    assert "HTTP CRITICAL - connection refused" in text
    assert text.endswith("extinfo.cgi?type=2&host=web01&service=HTTP")


def test_commands_written_to_pipe(nagios: NagiosBackend, nagios_dir: Path) -> None:
    nagios.find_host("db01").force_check(1700000200)
    nagios.find_service("web01", "HTTP").acknowledge("alice", "on it; really")

    lines = (nagios_dir / "rw" / "nagios.cmd").read_text().splitlines()
    assert re.fullmatch(r"\[\d+\] SCHEDULE_FORCED_HOST_CHECK;db01;1700000200", lines[0])
    assert lines[1].endswith("ACKNOWLEDGE_SVC_PROBLEM;web01;HTTP;1;1;1;alice;on it, really")


def test_refresh_reloads_status_and_runs_listeners(nagios: NagiosBackend, nagios_dir: Path) -> None:
    calls: list[str] = []
    nagios.add_refresh_listener(lambda: calls.append("keep") or True)
    nagios.add_refresh_listener(lambda: calls.append("once") and False)

    status = nagios_dir / "status.dat"
    status.write_text(STATUS.replace("current_state=1", "current_state=0"))
    stat = status.stat()
    os.utime(status, (stat.st_atime, stat.st_mtime + 10))

    nagios.refresh()
    nagios.refresh()

    assert calls == ["keep", "once", "keep"]
    assert nagios.has_refresh_listeners()
    assert nagios.find_host("db01").current_state == "ok"


def test_failing_listener_is_dropped(nagios: NagiosBackend) -> None:
    def broken() -> bool:
        raise RuntimeError("boom")

    nagios.add_refresh_listener(broken)
    nagios.refresh()
    assert not nagios.has_refresh_listeners()


def test_missing_status_file(tmp_path: Path) -> None:
    backend = NagiosBackend(str(tmp_path))
    assert not backend.status_exists()
    assert backend.find_host("web01") is None


def test_entity_base_is_abstract(nagios: NagiosBackend) -> None:
    with pytest.raises(TypeError):
        _NagiosEntity(nagios, "web01")
