"""
CLI Utilities

Small helpers shared by commands and services.
"""

import getpass
import os
import re
import shlex
import socket
from pathlib import Path
from typing import Optional

from monstack.constants import STACK_DIR_ENV

VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)")


def get_stack_root() -> Path:
    """
    Get the stack directory the CLI operates on.

    Returns:
        MONSTACK_DIR if set, otherwise the current working directory
    """
    override = os.environ.get(STACK_DIR_ENV)
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd()


def get_operator() -> str:
    """Identify the operator running the tool (user@hostname)."""
    return f"{getpass.getuser()}@{socket.gethostname()}"


def quote(value) -> str:
    """Shell-quote a value for a remote command line."""
    return shlex.quote(str(value))


def become_wrap(command: str, user: Optional[str]) -> str:
    """
    Wrap a command so it runs as another account via non-interactive sudo.

    Args:
        command: Shell command
        user: Account to run as (None leaves the command unchanged)

    Returns:
        Wrapped command
    """
    if not user:
        return command
    return f"sudo -n -H -u {quote(user)} -- sh -c {quote(command)}"


def parse_version(text: str) -> Optional[tuple]:
    """Extract the first 'major.minor' pair from a version string."""
    match = VERSION_PATTERN.search(text or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))
