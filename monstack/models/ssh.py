"""
Target Models

Connection parameters of a managed host, resolved once per operation.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from monstack.constants import ANSIBLE_PYTHON_INTERPRETER, DEFAULT_SSH_PORT


@dataclass(frozen=True)
class Target:
    """A named remote host from the inventory."""

    name: str
    address: str
    group: str
    user: Optional[str] = None
    port: int = DEFAULT_SSH_PORT
    key_path: Optional[str] = None
    interpreter: str = ANSIBLE_PYTHON_INTERPRETER
    connection: str = "ssh"

    @property
    def is_local(self) -> bool:
        """Commands run on the operator machine instead of over SSH."""
        return self.connection == "local"

    @property
    def key_path_expanded(self) -> Optional[Path]:
        """Get expanded key path (resolves ~)."""
        if self.key_path:
            return Path(self.key_path).expanduser()
        return None

    @property
    def connection_string(self) -> str:
        """Get SSH connection string (user@host)."""
        if self.user:
            return f"{self.user}@{self.address}"
        return self.address

    def __repr__(self) -> str:
        return f"Target(name={self.name}, address={self.address}, user={self.user}, port={self.port})"
