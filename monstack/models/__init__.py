"""
monstack Domain Models

Clean dataclass-based models for type-safe data handling.
"""

from .results import (
    SSHResult,
    ServiceStatus,
)
from .releases import (
    DeployState,
    Release,
    DeployReport,
)
from .secrets import SecretDocument
from .ssh import Target

__all__ = [
    # Results
    "SSHResult",
    "ServiceStatus",
    # Releases
    "DeployState",
    "Release",
    "DeployReport",
    # Secrets
    "SecretDocument",
    # SSH
    "Target",
]
