"""
Shared fixtures.

Targets are exercised through LocalSession against a temporary directory
standing in for the server filesystem. `docker compose` is replaced by a
shell script that logs its arguments and reports service states from the
ps.json file rendered into each release, so a release can be made
unhealthy through its template variables.
"""

import getpass
import stat
import textwrap
from pathlib import Path

import pytest
import yaml

from monstack.core.config_loader import StackConfig
from monstack.core.renderer import ReleaseRenderer
from monstack.core.vault import SecretStore
from monstack.models import Target
from monstack.services import LocalSession, ReleaseManager, ServiceSupervisor

PASSPHRASE = "correct horse battery staple"

SECRETS = {
    "vault_grafana_admin_password": "grafana-admin-pw",
    "vault_graylog_password_secret": "a" * 96,
    "vault_prometheus_admin_password": "$2a$04$abcdefghijklmnopqrstuuJ0Wn5m1jXG6gU5d8nJ0nM4o1mQkYbTe",
}

COMPOSE_TEMPLATE = """\
services:
  grafana:
    image: grafana/grafana:{{ grafana_version }}
    environment:
      GF_SECURITY_ADMIN_PASSWORD: ${GRAFANA_ADMIN_PASSWORD}
      GF_SERVER_ROOT_URL: https://{{ grafana_hostname }}/
  prometheus:
    image: prom/prometheus:latest
    volumes:
      - ./prometheus/prometheus.yml:/etc/prometheus/prometheus.yml:ro
"""

PS_TEMPLATE = """\
{"Service": "grafana", "State": "{{ grafana_state }}", "Health": "{{ grafana_health }}"}
{"Service": "prometheus", "State": "running", "Health": ""}
"""

PROMETHEUS_TEMPLATE = """\
scrape_configs:
  - job_name: grafana
    static_configs:
      - targets: ["{{ grafana_hostname }}:3000"]
"""

FAKE_COMPOSE = """\
#!/bin/sh
echo "$PWD $*" >> {log}
for arg in "$@"; do
  case "$arg" in
    up)
      if [ -e fail-up ]; then
        echo "Error response from daemon: container failed to start" >&2
        exit 1
      fi
      exit 0 ;;
    ps) cat ps.json; exit 0 ;;
    restart|down) exit 0 ;;
  esac
done
exit 0
"""

FAKE_SSH = """\
#!/bin/sh
if [ "$1" = "-V" ]; then
  echo "OpenSSH_9.6p1 Ubuntu-3ubuntu13, OpenSSL 3.0.13 30 Jan 2024" >&2
  exit 0
fi
echo "$*" >> {log}
echo "ssh: connect to host 203.0.113.10 port 22: Connection refused" >&2
exit 255
"""


def write_executable(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def operator_user():
    return getpass.getuser()


@pytest.fixture
def compose_log(tmp_path) -> Path:
    return tmp_path / "compose.log"


@pytest.fixture
def fake_compose(tmp_path, compose_log) -> Path:
    return write_executable(tmp_path / "fake-compose", FAKE_COMPOSE.format(log=compose_log))


@pytest.fixture
def ssh_log(tmp_path) -> Path:
    return tmp_path / "ssh.log"


@pytest.fixture
def fake_ssh(tmp_path, ssh_log) -> Path:
    return write_executable(tmp_path / "fake-ssh", FAKE_SSH.format(log=ssh_log))


@pytest.fixture
def base_dir(tmp_path) -> Path:
    path = tmp_path / "target" / "opt" / "monitoring"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def public_vars(operator_user):
    return {
        "monitoring_stack_user": operator_user,
        "grafana_hostname": "grafana.example.com",
        "grafana_version": "11.2.0",
        "grafana_state": "running",
        "grafana_health": "healthy",
        "grafana_admin_password": "{{ vault_grafana_admin_password }}",
        "monitoring_env": {
            "GRAFANA_ADMIN_PASSWORD": "{{ grafana_admin_password }}",
            "PROMETHEUS_HASH": "{{ vault_prometheus_admin_password }}",
        },
    }


@pytest.fixture
def stack_dir(tmp_path, public_vars, base_dir, fake_compose, fake_ssh) -> Path:
    """A complete stack directory with a local-connection inventory."""
    root = tmp_path / "stack"
    group_vars = root / "inventory" / "group_vars" / "monitoring_hosts"
    group_vars.mkdir(parents=True)

    (root / "inventory" / "hosts.ini").write_text(
        textwrap.dedent(
            """\
            [monitoring_hosts]
            local ansible_connection=local
            """
        )
    )
    (group_vars / "vars.yml").write_text(yaml.safe_dump(public_vars))
    (root / "monstack.yml").write_text(
        yaml.safe_dump(
            {
                "base_dir": str(base_dir),
                "compose_command": str(fake_compose),
                "ssh_command": str(fake_ssh),
                "health_timeout": 1,
                "health_poll_interval": 0.1,
                "keep_releases": 3,
                "services": ["grafana", "prometheus"],
            }
        )
    )

    templates = root / "templates"
    (templates / "prometheus").mkdir(parents=True)
    (templates / "docker-compose.yml.j2").write_text(COMPOSE_TEMPLATE)
    (templates / "ps.json.j2").write_text(PS_TEMPLATE)
    (templates / "prometheus" / "prometheus.yml.j2").write_text(PROMETHEUS_TEMPLATE)
    (templates / "README.txt").write_text("copied verbatim {{ not_rendered }}\n")

    pass_file = root / ".vault_pass"
    pass_file.write_text(PASSPHRASE + "\n")
    pass_file.chmod(0o600)

    SecretStore(group_vars / "vault.yml").create(SECRETS, PASSPHRASE)
    return root


@pytest.fixture
def config(stack_dir, base_dir, fake_compose, fake_ssh) -> StackConfig:
    return StackConfig(
        root=stack_dir,
        base_dir=str(base_dir),
        compose_command=str(fake_compose),
        ssh_command=str(fake_ssh),
        health_timeout=1,
        health_poll_interval=0.1,
        keep_releases=3,
        services=["grafana", "prometheus"],
    )


@pytest.fixture
def local_target() -> Target:
    return Target(name="local", address="localhost", group="monitoring_hosts", connection="local")


@pytest.fixture
def session(local_target, config):
    with LocalSession(local_target, config) as session:
        yield session


@pytest.fixture
def renderer(config) -> ReleaseRenderer:
    return ReleaseRenderer(config.templates_dir)


@pytest.fixture
def supervisor(config, session, operator_user) -> ServiceSupervisor:
    return ServiceSupervisor(config, session, operator_user)


@pytest.fixture
def manager(config, session, supervisor, renderer, operator_user) -> ReleaseManager:
    return ReleaseManager(config, session, supervisor, renderer, operator_user)


@pytest.fixture
def context(renderer, public_vars):
    return renderer.build_context(public_vars, SECRETS)
