"""Sessions: command construction, error mapping and file placement."""

import getpass

import pytest

from monstack.exceptions import RemoteCommandError, TargetConnectionError
from monstack.models import Target
from monstack.services import LocalSession, RemoteExecutor, SSHSession
from monstack.services.ssh_service import classify_ssh_failure
from monstack.utils import become_wrap


@pytest.fixture
def remote_target():
    return Target(
        name="monitoring",
        address="203.0.113.10",
        group="monitoring_hosts",
        user="deploy",
        port=2222,
        key_path="~/.ssh/monitoring",
    )


class TestSSHSession:
    def test_argv(self, remote_target, config):
        argv = SSHSession(remote_target, config)._argv("uptime")

        assert argv[0] == config.ssh_command
        assert argv[-2:] == ["deploy@203.0.113.10", "uptime"]
        assert "BatchMode=yes" in argv
        assert "StrictHostKeyChecking=accept-new" in argv
        assert f"ConnectTimeout={config.connect_timeout}" in argv
        assert argv[argv.index("-p") + 1] == "2222"
        assert argv[argv.index("-i") + 1].endswith(".ssh/monitoring")

    def test_unreachable_host(self, remote_target, config, ssh_log):
        with pytest.raises(TargetConnectionError) as excinfo:
            RemoteExecutor(config).connect(remote_target)

        error = excinfo.value
        assert error.reason == "unreachable"
        assert error.exit_code == 3
        assert "203.0.113.10" in error.message
        assert "ControlMaster=auto" in ssh_log.read_text()

    def test_become_skipped_for_login_user(self, remote_target, config):
        session = SSHSession(remote_target, config)
        assert session._wrap("id", "deploy") == "id"
        assert session._wrap("id", "monitoring").startswith("sudo -n -H -u monitoring -- sh -c ")


@pytest.mark.parametrize(
    "stderr, reason",
    [
        ("deploy@203.0.113.10: Permission denied (publickey).", "authentication"),
        ("@@@ WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED! @@@", "host-key-mismatch"),
        ("ssh: connect to host 203.0.113.10 port 22: Connection timed out", "timeout"),
        ("ssh: Could not resolve hostname nowhere: Name or service not known", "unreachable"),
        ("kex_exchange_identification: read: Connection reset by peer", "connection"),
    ],
)
def test_classify_ssh_failure(stderr, reason):
    assert classify_ssh_failure(stderr) == reason


def test_become_wrap_quotes_command():
    assert become_wrap("echo 'a b'", "monitoring") == (
        "sudo -n -H -u monitoring -- sh -c 'echo '\"'\"'a b'\"'\"''"
    )
    assert become_wrap("true", None) == "true"


class TestLocalSession:
    def test_run(self, session):
        result = session.run("echo out; echo err >&2; exit 3")
        assert result.returncode == 3
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"

    def test_check_raises(self, session):
        with pytest.raises(RemoteCommandError) as excinfo:
            session.run("echo boom >&2; false", check=True)
        assert excinfo.value.returncode == 1
        assert "boom" in excinfo.value.context

    def test_stdin(self, session):
        assert session.run("cat", input=b"payload").stdout == "payload"

    def test_timeout(self, session):
        with pytest.raises(TargetConnectionError, match="timed out"):
            session.run("exec sleep 5", timeout=0.2)

    def test_login_user(self, session):
        assert session.login_user == getpass.getuser()

    def test_put_is_idempotent(self, session, tmp_path):
        destination = tmp_path / "placed.conf"

        assert session.put(b"content\n", str(destination), mode=0o640) is True
        assert destination.read_bytes() == b"content\n"
        assert destination.stat().st_mode & 0o777 == 0o640

        assert session.put(b"content\n", str(destination), mode=0o640) is False
        assert session.put(b"changed\n", str(destination), mode=0o600) is True
        assert destination.read_bytes() == b"changed\n"
        assert destination.stat().st_mode & 0o777 == 0o600
        assert sorted(p.name for p in tmp_path.iterdir() if p.name.startswith("placed")) == ["placed.conf"]

    def test_copy(self, session, tmp_path):
        source = tmp_path / "source.txt"
        source.write_text("from disk\n")
        assert session.copy(source, str(tmp_path / "copied.txt")) is True
        assert (tmp_path / "copied.txt").read_text() == "from disk\n"

    def test_remote_sha256_missing_file(self, session, tmp_path):
        assert session.remote_sha256(str(tmp_path / "absent")) is None

    def test_executor_picks_local_session(self, config, local_target):
        session = RemoteExecutor(config).connect(local_target)
        assert isinstance(session, LocalSession)
