"""
monstack Service Layer

Business logic services for remote execution, releases and compose supervision.
"""

from .ssh_service import LocalSession, RemoteExecutor, Session, SSHSession
from .supervisor_service import ServiceSupervisor
from .preflight_service import PreflightValidator
from .release_service import ReleaseManager

__all__ = [
    "RemoteExecutor",
    "Session",
    "SSHSession",
    "LocalSession",
    "ServiceSupervisor",
    "PreflightValidator",
    "ReleaseManager",
]
