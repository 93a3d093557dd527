"""
monstack Exception Hierarchy

Every error carries a category and an exit code so the command layer can
map it to a process exit status in one place.
"""

from enum import Enum
from typing import Optional


class MonstackError(Exception):
    """Base exception for all monstack errors."""

    category = "Error"
    exit_code = 1

    def __init__(self, message: str, context: Optional[str] = None):
        self.message = message
        self.context = context
        # DeployReport of the operation this error aborted, when there was one
        self.report = None
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message}\nContext: {self.context}"
        return self.message


class ConfigurationError(MonstackError):
    """Raised when configuration is invalid or missing."""

    category = "Configuration error"


class ValidationError(MonstackError):
    """Raised when operator input fails validation."""

    category = "Validation error"


class PreconditionKind(Enum):
    """Which preflight check failed."""

    TOOL_MISSING = "ToolMissing"
    INVENTORY_UNCONFIGURED = "InventoryUnconfigured"
    VAULT_PASS_MISSING = "VaultPassMissing"
    VAULT_DOCUMENT_MISSING = "VaultDocumentMissing"


class PreconditionError(MonstackError):
    """Raised when a preflight check fails. Never mutates the target."""

    category = "Precondition failed"
    exit_code = 2

    def __init__(
        self, kind: PreconditionKind, message: str, context: Optional[str] = None
    ):
        self.kind = kind
        super().__init__(message, context)


class TargetConnectionError(MonstackError):
    """Raised when the target cannot be reached or authenticated against."""

    category = "Connection error"
    exit_code = 3

    def __init__(self, message: str, context: Optional[str] = None, reason: str = ""):
        self.reason = reason
        super().__init__(message, context)


class SecretError(MonstackError):
    """Raised when secret operations fail."""

    category = "Secret error"


class DecryptionError(SecretError):
    """Raised on a wrong passphrase or a corrupt secret document."""

    category = "Decryption failed"
    exit_code = 4


class KeyNotFoundError(SecretError):
    """Raised when a secret key is absent from the document."""

    category = "Secret not found"

    def __init__(self, key: str, available: Optional[list] = None):
        self.key = key
        context = None
        if available:
            context = f"Available keys: {', '.join(sorted(available))}"
        super().__init__(f"Secret '{key}' not found in vault", context)


class DeploymentError(MonstackError):
    """Raised when deployment operations fail."""

    category = "Deployment failed"


class RemoteCommandError(DeploymentError):
    """Raised when a remote command exits non-zero under check=True."""

    category = "Remote command failed"

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"Command exited with status {returncode}: {command}",
            context=stderr.strip() or None,
        )


class RenderError(DeploymentError):
    """Raised when templates reference values that cannot be resolved."""

    category = "Render failed"
    exit_code = 5


class SwapError(DeploymentError):
    """Raised when the current-release pointer cannot be switched."""

    category = "Release switch failed"
    exit_code = 6


class ServiceStartError(DeploymentError):
    """Raised when compose fails to start services."""

    category = "Service start failed"
    exit_code = 7


class HealthCheckTimeout(DeploymentError):
    """Raised when services do not become healthy in time."""

    category = "Health check timed out"
    exit_code = 7

    def __init__(self, failing: dict, timeout: float):
        self.failing = failing
        self.timeout = timeout
        states = ", ".join(f"{name}={state}" for name, state in sorted(failing.items()))
        super().__init__(
            f"Services not healthy after {timeout:g}s",
            context=states or None,
        )


class LockHeldError(DeploymentError):
    """Raised when another deploy holds the target lock."""

    category = "Target locked"
    exit_code = 8

    def __init__(self, lock_path: str, holder: str = ""):
        self.lock_path = lock_path
        self.holder = holder
        fix = f"If no deploy is running, remove {lock_path} on the target"
        context = f"Held by: {holder}. {fix}" if holder else fix
        super().__init__(f"Another deploy holds the lock {lock_path}", context)


def exit_code_for(error: BaseException) -> int:
    """Map an exception to the process exit status."""
    if isinstance(error, KeyboardInterrupt):
        return 130
    if isinstance(error, MonstackError):
        return error.exit_code
    return 1
