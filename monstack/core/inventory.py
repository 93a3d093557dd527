"""
Inventory loading

Reads the grouped, Ansible-style INI host list:

    [monitoring_hosts]
    monitoring ansible_host=203.0.113.10 ansible_user=deploy ansible_port=22

    [monitoring_hosts:vars]
    ansible_ssh_private_key_file=~/.ssh/monitoring_deploy
"""

import shlex
from pathlib import Path
from typing import Dict, List, Optional

from monstack.constants import ANSIBLE_PYTHON_INTERPRETER, DEFAULT_SSH_PORT
from monstack.exceptions import ConfigurationError
from monstack.models import Target

HOST_ATTRIBUTES = {
    "ansible_host": "address",
    "ansible_user": "user",
    "ansible_port": "port",
    "ansible_ssh_port": "port",
    "ansible_ssh_private_key_file": "key_path",
    "ansible_python_interpreter": "interpreter",
    "ansible_connection": "connection",
}
SUPPORTED_CONNECTIONS = ("ssh", "local")


class InventoryError(ConfigurationError):
    """Raised when the inventory is malformed."""


class Inventory:
    """Parsed inventory: groups of hosts with their connection attributes."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.groups: Dict[str, Dict[str, Dict[str, str]]] = {}
        self.group_vars: Dict[str, Dict[str, str]] = {}

    @classmethod
    def load(cls, path: Path) -> "Inventory":
        """
        Load and parse an inventory file.

        Raises:
            InventoryError: If the file is missing or malformed
        """
        inventory = cls(path)
        if not inventory.path.exists():
            raise InventoryError(
                f"Inventory file does not exist: {inventory.path}",
                context="Copy inventory/hosts.ini.example to inventory/hosts.ini and add your server",
            )
        inventory._parse(inventory.path.read_text())
        return inventory

    def _parse(self, text: str) -> None:
        section: Optional[str] = None
        kind = "hosts"
        seen: Dict[str, str] = {}

        for lineno, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith(("#", ";")):
                continue

            if line.startswith("[") and line.endswith("]"):
                section = line[1:-1].strip()
                kind = "hosts"
                if ":" in section:
                    section, kind = section.split(":", 1)
                if kind == "vars":
                    self.group_vars.setdefault(section, {})
                elif kind == "hosts":
                    self.groups.setdefault(section, {})
                continue

            if section is None:
                section, kind = "ungrouped", "hosts"
                self.groups.setdefault(section, {})

            try:
                tokens = shlex.split(line, comments=True)
            except ValueError as e:
                raise InventoryError(f"{self.path}:{lineno}: {e}")
            if not tokens:
                continue

            if kind == "vars":
                key, value = self._split_assignment(tokens[0], lineno)
                self.group_vars[section][key] = value
            elif kind == "hosts":
                name = tokens[0]
                if "=" in name:
                    raise InventoryError(f"{self.path}:{lineno}: host line must start with a host name")
                if name in seen and seen[name] != section:
                    raise InventoryError(
                        f"Host '{name}' is listed in groups '{seen[name]}' and '{section}'",
                        context="Each target must belong to exactly one group",
                    )
                seen[name] = section
                attributes = dict(self._split_assignment(token, lineno) for token in tokens[1:])
                self.groups[section][name] = attributes
            # [group:children] sections are accepted and ignored

    def _split_assignment(self, token: str, lineno: int):
        if "=" not in token:
            raise InventoryError(f"{self.path}:{lineno}: expected key=value, got '{token}'")
        key, value = token.split("=", 1)
        return key.strip(), value.strip()

    def targets(self, group: str) -> List[Target]:
        """Resolve every host of a group into Targets."""
        return [self._resolve(group, name) for name in self.groups.get(group, {})]

    def _resolve(self, group: str, name: str) -> Target:
        attributes = dict(self.group_vars.get(group, {}))
        attributes.update(self.groups[group][name])

        resolved = {}
        for key, value in attributes.items():
            if key in HOST_ATTRIBUTES:
                resolved[HOST_ATTRIBUTES[key]] = value

        connection = resolved.get("connection", "ssh")
        if connection not in SUPPORTED_CONNECTIONS:
            raise InventoryError(
                f"Host '{name}': unsupported ansible_connection '{connection}'",
                context=f"Supported: {', '.join(SUPPORTED_CONNECTIONS)}",
            )

        address = resolved.get("address")
        if not address and connection == "local":
            address = "localhost"

        try:
            port = int(resolved.get("port", DEFAULT_SSH_PORT))
        except ValueError:
            raise InventoryError(f"Host '{name}': ansible_port must be a number")

        return Target(
            name=name,
            address=address or "",
            group=group,
            user=resolved.get("user"),
            port=port,
            key_path=resolved.get("key_path"),
            interpreter=resolved.get("interpreter", ANSIBLE_PYTHON_INTERPRETER),
            connection=connection,
        )

    def configured_targets(self, group: str) -> List[Target]:
        """Targets of a group that have a resolved address."""
        return [target for target in self.targets(group) if target.address]

    def select(self, group: str, name: Optional[str] = None) -> Target:
        """
        Pick the single target an operation acts on.

        Args:
            group: Inventory group
            name: Host name when the group has several hosts

        Raises:
            InventoryError: If no host (or more than one, without a name) matches
        """
        targets = self.configured_targets(group)
        if not targets:
            raise InventoryError(
                f"No configured hosts in group '{group}' of {self.path}",
                context="Add a host line with ansible_host=<server address>",
            )
        if name:
            for target in targets:
                if target.name == name:
                    return target
            raise InventoryError(
                f"Host '{name}' not found in group '{group}'",
                context=f"Available hosts: {', '.join(t.name for t in targets)}",
            )
        if len(targets) > 1:
            raise InventoryError(
                f"Group '{group}' has {len(targets)} hosts",
                context=f"Pick one with --target: {', '.join(t.name for t in targets)}",
            )
        return targets[0]
