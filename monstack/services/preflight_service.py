"""Preflight validation: read-only checks gating every mutating command."""

import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from monstack.core.config_loader import StackConfig
from monstack.core.inventory import Inventory, InventoryError
from monstack.exceptions import PreconditionError, PreconditionKind
from monstack.utils import parse_version


@dataclass
class PreflightIssue:
    """One unmet precondition with the fix to print."""

    kind: PreconditionKind
    message: str
    remediation: str

    def to_error(self) -> PreconditionError:
        return PreconditionError(self.kind, self.message, self.remediation)


ALL_CHECKS = ["tool", "inventory", "vault_pass", "vault_document"]
SECRET_CHECKS = ["vault_pass", "vault_document"]

OPERATION_CHECKS: Dict[str, List[str]] = {
    "connect": ALL_CHECKS,
    "install": ALL_CHECKS,
    "deploy": ALL_CHECKS,
    "status": ALL_CHECKS,
    "restart": ALL_CHECKS,
    "rollback": ALL_CHECKS,
    "releases": ALL_CHECKS,
    "setup-runner": ALL_CHECKS,
    "secrets": SECRET_CHECKS,
}


class PreflightValidator:
    """
    Checks local preconditions in a fixed order and stops at the first failure:
    tool, inventory, vault passphrase file, vault document.
    """

    def __init__(self, config: StackConfig, run: Optional[Callable] = None):
        self.config = config
        self._run = run or subprocess.run

    def validate(self, operation: str) -> List[PreflightIssue]:
        """
        Run the checks an operation needs.

        Returns:
            Empty list when everything passes, else the single first failure
        """
        if operation not in OPERATION_CHECKS:
            raise ValueError(f"Unknown operation '{operation}'")

        for check in OPERATION_CHECKS[operation]:
            issue = getattr(self, f"check_{check}")()
            if issue is not None:
                return [issue]
        return []

    def ensure(self, operation: str) -> None:
        """
        Raises:
            PreconditionError: For the first unmet precondition
        """
        issues = self.validate(operation)
        if issues:
            raise issues[0].to_error()

    def check_tool(self) -> Optional[PreflightIssue]:
        ssh = self.config.ssh_command
        if shutil.which(ssh) is None:
            return PreflightIssue(
                PreconditionKind.TOOL_MISSING,
                f"SSH client '{ssh}' is not installed",
                "Install OpenSSH client (e.g. apt install openssh-client)",
            )

        try:
            result = self._run([ssh, "-V"], capture_output=True, text=True, timeout=10)
        except (OSError, subprocess.SubprocessError) as e:
            return PreflightIssue(
                PreconditionKind.TOOL_MISSING,
                f"Cannot run '{ssh} -V': {e}",
                "Reinstall the OpenSSH client",
            )

        # OpenSSH prints its version on stderr
        banner = f"{result.stderr or ''}{result.stdout or ''}"
        version = parse_version(banner.split("OpenSSH_", 1)[1]) if "OpenSSH_" in banner else None
        required = parse_version(self.config.min_ssh_version)
        if version is None or version < required:
            found = ".".join(map(str, version)) if version else (banner.strip() or "unknown")
            return PreflightIssue(
                PreconditionKind.TOOL_MISSING,
                f"OpenSSH {self.config.min_ssh_version} or newer required, found {found}",
                "Upgrade the OpenSSH client",
            )
        return None

    def check_inventory(self) -> Optional[PreflightIssue]:
        path = self.config.inventory
        if not path.exists():
            return PreflightIssue(
                PreconditionKind.INVENTORY_UNCONFIGURED,
                f"Inventory file does not exist: {path}",
                "Copy inventory/hosts.ini.example to inventory/hosts.ini",
            )
        try:
            targets = Inventory.load(path).configured_targets(self.config.group)
        except InventoryError as e:
            return PreflightIssue(
                PreconditionKind.INVENTORY_UNCONFIGURED,
                e.message,
                e.context or f"Fix {path}",
            )
        if not targets:
            return PreflightIssue(
                PreconditionKind.INVENTORY_UNCONFIGURED,
                "Inventory file is not configured!",
                f"Edit {path}: uncomment the host line under [{self.config.group}] and set ansible_host",
            )
        return None

    def check_vault_pass(self) -> Optional[PreflightIssue]:
        path = self.config.vault_password_file
        if not path.exists() or not path.read_text().strip():
            return PreflightIssue(
                PreconditionKind.VAULT_PASS_MISSING,
                f"Vault password file does not exist or is empty: {path}",
                f"Create it: cp .vault_pass.example {path.name} && chmod 600 {path.name}, "
                "then set a strong passphrase",
            )
        return None

    def check_vault_document(self) -> Optional[PreflightIssue]:
        path = self.config.vault_file
        if not path.exists():
            return PreflightIssue(
                PreconditionKind.VAULT_DOCUMENT_MISSING,
                f"Vault file does not exist: {path}",
                "Generate secrets and create the vault: monstack secrets:generate --write",
            )
        return None
