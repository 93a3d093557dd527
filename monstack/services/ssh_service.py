"""Remote executor: sessions that run commands on a target."""

import getpass
import hashlib
import shutil
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from monstack.constants import SSH_CONTROL_PERSIST
from monstack.core.config_loader import StackConfig
from monstack.exceptions import RemoteCommandError, TargetConnectionError
from monstack.logger import DeployLogger
from monstack.models import SSHResult, Target
from monstack.utils import become_wrap, quote

SSH_CONNECTION_FAILED = 255

# stderr fragments -> failure reason
SSH_FAILURE_REASONS = [
    ("REMOTE HOST IDENTIFICATION HAS CHANGED", "host-key-mismatch"),
    ("Host key verification failed", "host-key-mismatch"),
    ("Permission denied", "authentication"),
    ("Too many authentication failures", "authentication"),
    ("timed out", "timeout"),
    ("Could not resolve hostname", "unreachable"),
    ("Connection refused", "unreachable"),
    ("No route to host", "unreachable"),
    ("Network is unreachable", "unreachable"),
]

REMEDIATION = {
    "host-key-mismatch": "The host key changed. Verify the server, then remove the old key with: ssh-keygen -R <host>",
    "authentication": "Check ansible_user and ansible_ssh_private_key_file in the inventory",
    "timeout": "Check the address, firewall and that sshd is running",
    "unreachable": "Check the address in the inventory and network connectivity",
}


def classify_ssh_failure(stderr: str) -> str:
    """Map SSH client stderr to a failure reason."""
    for fragment, reason in SSH_FAILURE_REASONS:
        if fragment.lower() in (stderr or "").lower():
            return reason
    return "connection"


class Session(ABC):
    """
    An open connection to one target.

    Commands run strictly sequentially in submission order; every call
    blocks until the command completes or its timeout elapses.
    """

    def __init__(self, target: Target, config: StackConfig, logger: Optional[DeployLogger] = None):
        self.target = target
        self.config = config
        self.logger = logger

    @property
    @abstractmethod
    def login_user(self) -> str:
        """Account the session authenticates as."""

    @abstractmethod
    def _argv(self, command: str) -> List[str]:
        """Build the local argv that executes a shell command on the target."""

    def open(self) -> None:
        """Establish the connection (no-op for sessions that need none)."""

    def close(self) -> None:
        """Tear the connection down."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _wrap(self, command: str, become_user: Optional[str]) -> str:
        if become_user and become_user != self.login_user:
            return become_wrap(command, become_user)
        return command

    def _raise_connection_error(self, stderr: str) -> None:
        reason = classify_ssh_failure(stderr)
        raise TargetConnectionError(
            f"Cannot reach {self.target.name} ({self.target.connection_string}:{self.target.port})",
            context=REMEDIATION.get(reason, (stderr or "").strip() or None),
            reason=reason,
        )

    def run(
        self,
        command: str,
        become_user: Optional[str] = None,
        input: Optional[bytes] = None,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> SSHResult:
        """
        Execute a command on the target.

        Args:
            command: Shell command
            become_user: Run as this account via sudo
            input: Bytes fed to the command's stdin
            timeout: Seconds before giving up (defaults to command_timeout)
            check: Raise RemoteCommandError on a non-zero exit

        Returns:
            SSHResult with exit code and captured output

        Raises:
            TargetConnectionError: On timeout or SSH transport failure
        """
        wrapped = self._wrap(command, become_user)
        timeout = timeout or self.config.command_timeout

        if self.logger:
            self.logger.log_command(command if not become_user else f"[{become_user}] {command}")

        start_time = time.time()
        try:
            result = subprocess.run(
                self._argv(wrapped),
                input=input if input is not None else b"",
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise TargetConnectionError(
                f"Command timed out after {timeout:g}s on {self.target.name}",
                context=f"Command: {command}",
                reason="timeout",
            )
        except FileNotFoundError as e:
            raise TargetConnectionError(
                f"Cannot execute commands on {self.target.name}: {e}",
                reason="connection",
            )
        duration = time.time() - start_time

        stdout = result.stdout.decode("utf-8", errors="replace")
        stderr = result.stderr.decode("utf-8", errors="replace")

        if self.logger:
            self.logger.log_output(stdout, "stdout")
            self.logger.log_output(stderr, "stderr")

        if not self.target.is_local and result.returncode == SSH_CONNECTION_FAILED:
            self._raise_connection_error(stderr)

        ssh_result = SSHResult(
            returncode=result.returncode,
            stdout=stdout,
            stderr=stderr,
            host=self.target.address,
            command=command,
            duration_seconds=duration,
        )
        if check and ssh_result.is_failure:
            raise RemoteCommandError(command, ssh_result.returncode, stderr)
        return ssh_result

    def remote_sha256(self, remote_path: str, become_user: Optional[str] = None) -> Optional[str]:
        """Checksum of a remote file, None when it does not exist."""
        result = self.run(
            f"sha256sum {quote(remote_path)} 2>/dev/null", become_user=become_user
        )
        if result.is_failure or not result.stdout.strip():
            return None
        return result.stdout.split()[0]

    def put(
        self,
        data: bytes,
        remote_path: str,
        mode: int = 0o644,
        become_user: Optional[str] = None,
    ) -> bool:
        """
        Place content at remote_path idempotently.

        Skips the write when the remote checksum already matches; otherwise
        streams the data into a temp file beside the destination and renames
        it into place.

        Returns:
            True if the file was written, False if it was already up to date
        """
        digest = hashlib.sha256(data).hexdigest()
        if self.remote_sha256(remote_path, become_user) == digest:
            self.run(f"chmod {mode:o} {quote(remote_path)}", become_user=become_user, check=True)
            return False

        tmp_path = f"{remote_path}.monstack-tmp"
        script = (
            f"umask 077 && cat > {quote(tmp_path)} && "
            f"chmod {mode:o} {quote(tmp_path)} && "
            f"mv -f {quote(tmp_path)} {quote(remote_path)}"
        )
        self.run(script, become_user=become_user, input=data, check=True)
        return True

    def copy(
        self,
        local_path: Path,
        remote_path: str,
        mode: int = 0o644,
        become_user: Optional[str] = None,
    ) -> bool:
        """Copy a local file to the target (see put)."""
        return self.put(Path(local_path).read_bytes(), remote_path, mode, become_user)


class SSHSession(Session):
    """Session over an OpenSSH control master connection."""

    def __init__(self, target: Target, config: StackConfig, logger: Optional[DeployLogger] = None):
        super().__init__(target, config, logger)
        self._control_dir: Optional[str] = None

    @property
    def login_user(self) -> str:
        return self.target.user or getpass.getuser()

    def _options(self) -> List[str]:
        options = [
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", f"ConnectTimeout={self.config.connect_timeout}",
            "-o", "LogLevel=ERROR",
            "-p", str(self.target.port),
        ]
        if self.target.key_path_expanded:
            options += ["-i", str(self.target.key_path_expanded), "-o", "IdentitiesOnly=yes"]
        if self._control_dir:
            options += [
                "-o", "ControlMaster=auto",
                "-o", f"ControlPath={self._control_dir}/%C",
                "-o", f"ControlPersist={SSH_CONTROL_PERSIST}",
            ]
        return options

    def _argv(self, command: str) -> List[str]:
        return [self.config.ssh_command, *self._options(), self.target.connection_string, command]

    def open(self) -> None:
        """
        Authenticate once and keep the master connection for later commands.

        Raises:
            TargetConnectionError: On authentication failure, timeout or host-key mismatch
        """
        self._control_dir = tempfile.mkdtemp(prefix="monstack-ssh-")
        try:
            result = self.run("true", timeout=self.config.connect_timeout + 5)
        except TargetConnectionError:
            self.close()
            raise
        if result.is_failure:
            self.close()
            self._raise_connection_error(result.stderr)

    def close(self) -> None:
        if not self._control_dir:
            return
        subprocess.run(
            [
                self.config.ssh_command,
                "-o", f"ControlPath={self._control_dir}/%C",
                "-O", "exit",
                "-p", str(self.target.port),
                self.target.connection_string,
            ],
            capture_output=True,
            check=False,
        )
        shutil.rmtree(self._control_dir, ignore_errors=True)
        self._control_dir = None


class LocalSession(Session):
    """Session for ansible_connection=local targets: the operator machine itself."""

    @property
    def login_user(self) -> str:
        return getpass.getuser()

    def _argv(self, command: str) -> List[str]:
        return ["/bin/sh", "-c", command]


class RemoteExecutor:
    """Opens sessions to targets using the deployment identity."""

    def __init__(self, config: StackConfig, logger: Optional[DeployLogger] = None):
        self.config = config
        self.logger = logger

    def connect(self, target: Target) -> Session:
        """
        Open a session to the target.

        Raises:
            TargetConnectionError: If the target cannot be reached or authenticated
        """
        if self.logger:
            self.logger.log(f"Connecting to {target.name} ({target.connection_string})")

        session_class = LocalSession if target.is_local else SSHSession
        session = session_class(target, self.config, self.logger)
        session.open()
        return session
