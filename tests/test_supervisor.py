"""Compose supervision with a scripted session."""

import json

import pytest

from monstack.exceptions import HealthCheckTimeout, RemoteCommandError, ServiceStartError
from monstack.models import SSHResult
from monstack.services import ServiceSupervisor
from monstack.services.supervisor_service import parse_compose_ps


class ScriptedSession:
    """Answers compose subcommands from queued results."""

    def __init__(self, ps_outputs=(), up_code=0):
        self.ps_outputs = list(ps_outputs)
        self.up_code = up_code
        self.calls = []

    def run(self, command, become_user=None, input=None, timeout=None, check=False):
        self.calls.append((become_user, command))
        if " ps " in command:
            output = self.ps_outputs.pop(0) if len(self.ps_outputs) > 1 else self.ps_outputs[0]
            return SSHResult(returncode=0, stdout=output)
        if " up " in command:
            return SSHResult(returncode=self.up_code, stderr="no such image" if self.up_code else "")
        return SSHResult(returncode=0)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def ps(*entries):
    return "\n".join(json.dumps({"Service": n, "State": s, "Health": h}) for n, s, h in entries)


@pytest.fixture
def clock():
    return FakeClock()


def make_supervisor(config, session, clock):
    return ServiceSupervisor(config, session, "monitoring", sleep=clock.sleep, clock=clock)


class TestParse:
    def test_ndjson(self):
        statuses = parse_compose_ps(ps(("grafana", "running", "healthy"), ("caddy", "running", "")))
        assert [(s.name, s.state, s.health) for s in statuses] == [
            ("grafana", "running", "healthy"),
            ("caddy", "running", ""),
        ]

    def test_json_array(self):
        output = json.dumps([{"Service": "grafana", "State": "Exited", "Health": ""}])
        (status,) = parse_compose_ps(output)
        assert status.state == "exited"
        assert not status.is_ready

    def test_empty(self):
        assert parse_compose_ps("  \n") == []


class TestUp:
    def test_waits_until_healthy(self, config, clock):
        session = ScriptedSession(
            ps_outputs=[
                ps(("grafana", "running", "starting"), ("caddy", "running", "")),
                ps(("grafana", "running", "starting"), ("caddy", "running", "")),
                ps(("grafana", "running", "healthy"), ("caddy", "running", "")),
            ]
        )
        statuses = make_supervisor(config, session, clock).up("/opt/monitoring/current", ["grafana", "caddy"])

        assert {s.name for s in statuses} == {"grafana", "caddy"}
        assert clock.sleeps == [config.health_poll_interval] * 2

        user, command = session.calls[0]
        assert user == "monitoring"
        assert command.startswith("cd /opt/monitoring/current && ")
        assert "-p monitoring --env-file .env -f docker-compose.yml up -d --remove-orphans" in command

    def test_timeout_names_failing_services(self, config, clock):
        session = ScriptedSession(ps_outputs=[ps(("grafana", "exited", ""), ("caddy", "running", ""))])

        with pytest.raises(HealthCheckTimeout) as excinfo:
            make_supervisor(config, session, clock).up("/srv/current", ["grafana", "caddy", "registry"])

        assert excinfo.value.failing == {"grafana": "exited", "registry": "missing"}
        assert clock.now >= config.health_timeout

    def test_start_failure(self, config, clock):
        session = ScriptedSession(ps_outputs=[ps()], up_code=1)
        with pytest.raises(ServiceStartError, match="up failed"):
            make_supervisor(config, session, clock).up("/srv/current")

    def test_no_services_is_not_healthy(self, config, clock):
        session = ScriptedSession(ps_outputs=[""])
        with pytest.raises(HealthCheckTimeout):
            make_supervisor(config, session, clock).up("/srv/current")

    def test_without_verify(self, config, clock):
        session = ScriptedSession(ps_outputs=[ps(("grafana", "restarting", ""))])
        statuses = make_supervisor(config, session, clock).up("/srv/current", verify=False)
        assert statuses[0].state == "restarting"
        assert clock.sleeps == []


class TestOther:
    def test_status_unparseable(self, config, clock):
        session = ScriptedSession(ps_outputs=["not json"])
        with pytest.raises(RemoteCommandError, match="Unparseable"):
            make_supervisor(config, session, clock).status("/srv/current")

    def test_restart_waits_for_one_service(self, config, clock):
        session = ScriptedSession(ps_outputs=[ps(("grafana", "running", "healthy"), ("caddy", "exited", ""))])
        make_supervisor(config, session, clock).restart("/srv/current", "grafana")
        assert any(command.endswith("restart grafana") for _, command in session.calls)

    def test_custom_project(self, config, clock):
        session = ScriptedSession(ps_outputs=[ps()])
        supervisor = ServiceSupervisor(config, session, "monitoring", project="github-runner")
        supervisor.down("/opt/monitoring/runner")
        assert "-p github-runner" in session.calls[0][1]
