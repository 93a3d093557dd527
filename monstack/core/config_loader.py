"""Configuration management for monstack stacks"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import dotenv_values

from monstack.constants import (
    CONFIG_FILE,
    CURRENT_LINK,
    DEFAULT_BASE_DIR,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_COMPOSE_COMMAND,
    DEFAULT_COMPOSE_PROJECT,
    DEFAULT_GROUP,
    DEFAULT_HEALTH_POLL_INTERVAL,
    DEFAULT_HEALTH_TIMEOUT,
    DEFAULT_INVENTORY,
    DEFAULT_KEEP_RELEASES,
    DEFAULT_LOG_DIR,
    DEFAULT_RUNNER_DIR,
    DEFAULT_SERVICES,
    DEFAULT_SSH_COMMAND,
    DEFAULT_TEMPLATES_DIR,
    DEFAULT_VAULT_PASSWORD_FILE,
    ENV_FILE,
    ENV_PREFIX,
    LOCK_FILE,
    MAX_CONNECTION_TIMEOUT,
    MAX_HEALTH_TIMEOUT,
    MAX_KEEP_RELEASES,
    MIN_SSH_VERSION,
    RELEASES_DIR,
    SSH_CONNECTION_TIMEOUT,
)
from monstack.exceptions import ConfigurationError
from monstack.utils import parse_version

INT_FIELDS = {"keep_releases", "connect_timeout", "command_timeout"}
FLOAT_FIELDS = {"health_timeout", "health_poll_interval"}
PATH_FIELDS = {
    "inventory",
    "vars_file",
    "vault_file",
    "vault_password_file",
    "templates_dir",
    "runner_dir",
    "log_dir",
}


@dataclass
class StackConfig:
    """
    Validated configuration of one stack directory.

    Built once per invocation and passed to every component explicitly.
    """

    root: Path
    inventory: Path = None
    group: str = DEFAULT_GROUP
    vars_file: Path = None
    vault_file: Path = None
    vault_password_file: Path = None
    templates_dir: Path = None
    runner_dir: Path = None
    log_dir: Path = None
    base_dir: str = DEFAULT_BASE_DIR
    compose_project: str = DEFAULT_COMPOSE_PROJECT
    compose_command: str = DEFAULT_COMPOSE_COMMAND
    keep_releases: int = DEFAULT_KEEP_RELEASES
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    health_poll_interval: float = DEFAULT_HEALTH_POLL_INTERVAL
    connect_timeout: int = SSH_CONNECTION_TIMEOUT
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    ssh_command: str = DEFAULT_SSH_COMMAND
    min_ssh_version: str = MIN_SSH_VERSION
    services: List[str] = field(default_factory=lambda: list(DEFAULT_SERVICES))

    def __post_init__(self):
        self.root = Path(self.root)
        group_vars = Path("inventory") / "group_vars" / self.group
        defaults = {
            "inventory": DEFAULT_INVENTORY,
            "vars_file": group_vars / "vars.yml",
            "vault_file": group_vars / "vault.yml",
            "vault_password_file": DEFAULT_VAULT_PASSWORD_FILE,
            "templates_dir": DEFAULT_TEMPLATES_DIR,
            "runner_dir": DEFAULT_RUNNER_DIR,
            "log_dir": DEFAULT_LOG_DIR,
        }
        for name in PATH_FIELDS:
            value = getattr(self, name)
            path = Path(value if value is not None else defaults[name]).expanduser()
            if not path.is_absolute():
                path = self.root / path
            setattr(self, name, path)
        self._validate()

    def _validate(self) -> None:
        """Validate bounds on operator-tunable values."""
        if not 1 <= self.keep_releases <= MAX_KEEP_RELEASES:
            raise ConfigurationError(
                f"keep_releases must be between 1 and {MAX_KEEP_RELEASES}, got {self.keep_releases}"
            )
        if not 1 <= self.health_timeout <= MAX_HEALTH_TIMEOUT:
            raise ConfigurationError(
                f"health_timeout must be between 1 and {MAX_HEALTH_TIMEOUT} seconds, got {self.health_timeout:g}"
            )
        if not 0 < self.health_poll_interval <= self.health_timeout:
            raise ConfigurationError(
                "health_poll_interval must be positive and not exceed health_timeout"
            )
        if not 1 <= self.connect_timeout <= MAX_CONNECTION_TIMEOUT:
            raise ConfigurationError(
                f"connect_timeout must be between 1 and {MAX_CONNECTION_TIMEOUT} seconds"
            )
        if self.command_timeout < 1:
            raise ConfigurationError("command_timeout must be at least 1 second")
        if not self.base_dir.startswith("/") or self.base_dir.rstrip("/") == "":
            raise ConfigurationError(
                f"base_dir must be an absolute path below /, got '{self.base_dir}'"
            )
        self.base_dir = self.base_dir.rstrip("/")
        if parse_version(self.min_ssh_version) is None:
            raise ConfigurationError(
                f"min_ssh_version must look like '7.6', got '{self.min_ssh_version}'"
            )
        if not self.compose_project or not self.compose_command:
            raise ConfigurationError("compose_project and compose_command must be set")

    @property
    def releases_dir(self) -> str:
        return f"{self.base_dir}/{RELEASES_DIR}"

    @property
    def current_link(self) -> str:
        return f"{self.base_dir}/{CURRENT_LINK}"

    @property
    def lock_path(self) -> str:
        return f"{self.base_dir}/{LOCK_FILE}"


def _coerce(name: str, value: Any) -> Any:
    """Convert raw YAML/env values to the field's type."""
    try:
        if name in INT_FIELDS:
            return int(value)
        if name in FLOAT_FIELDS:
            return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for {name}: {value!r}")
    if name == "services":
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if not isinstance(value, list):
            raise ConfigurationError("services must be a list of service names")
        return [str(item) for item in value]
    if value is None:
        return None
    return str(value)


def _env_overrides(root: Path, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """MONSTACK_* overrides from the stack .env file, then the process environment."""
    merged: Dict[str, Any] = {}
    env_path = root / ENV_FILE
    if env_path.exists():
        merged.update(dotenv_values(env_path))
    merged.update(os.environ if environ is None else environ)

    overrides = {}
    for key, value in merged.items():
        if key.startswith(ENV_PREFIX) and value is not None:
            overrides[key[len(ENV_PREFIX):].lower()] = value
    return overrides


def load_config(root: Path, environ: Optional[Dict[str, str]] = None) -> StackConfig:
    """
    Load the stack configuration.

    Args:
        root: Stack directory
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        Validated StackConfig

    Raises:
        ConfigurationError: If the file is malformed or values are out of bounds
    """
    root = Path(root)
    raw: Dict[str, Any] = {}
    config_path = root / CONFIG_FILE

    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}", context=str(e))
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")

    known = {f.name for f in fields(StackConfig)} - {"root"}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys in {config_path.name}: {', '.join(unknown)}",
            context=f"Known keys: {', '.join(sorted(known))}",
        )

    # MONSTACK_* variables without a matching field (e.g. MONSTACK_DIR) are ignored
    for name, value in _env_overrides(root, environ).items():
        if name in known:
            raw[name] = value

    values = {name: _coerce(name, value) for name, value in raw.items()}
    return StackConfig(root=root, **values)
