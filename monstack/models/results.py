"""
Result Models

Dataclass models for remote command results and service states.
"""

from dataclasses import dataclass


@dataclass
class SSHResult:
    """Result of a command executed through a session."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    host: str = ""
    command: str = ""
    duration_seconds: float = 0.0

    @property
    def is_success(self) -> bool:
        """Check if the command succeeded."""
        return self.returncode == 0

    @property
    def is_failure(self) -> bool:
        """Check if the command failed."""
        return self.returncode != 0

    @property
    def output(self) -> str:
        """Get combined output (stdout + stderr)."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def __repr__(self) -> str:
        return f"SSHResult(host={self.host}, returncode={self.returncode}, duration={self.duration_seconds:.2f}s)"


@dataclass
class ServiceStatus:
    """State of one compose service."""

    name: str
    state: str
    health: str = ""

    @property
    def is_ready(self) -> bool:
        """Running, and healthy when the service defines a health check."""
        return self.state == "running" and self.health in ("", "healthy")

    @property
    def display_state(self) -> str:
        """Health when reported, otherwise the container state."""
        return self.health or self.state
