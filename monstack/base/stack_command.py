"""
Stack Command Base Class

Base class for commands that act on a stack directory and its target.
Provides lazy access to configuration, secrets and target services.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from .base_command import BaseCommand
from monstack.core.config_loader import StackConfig, load_config
from monstack.core.inventory import Inventory
from monstack.core.renderer import (
    ReleaseRenderer,
    load_public_vars,
    stack_group,
    stack_groups,
    stack_user,
)
from monstack.core.vault import SecretStore, read_passphrase
from monstack.logger import DeployLogger
from monstack.models import SecretDocument, Target
from monstack.services import (
    PreflightValidator,
    ReleaseManager,
    RemoteExecutor,
    ServiceSupervisor,
    Session,
)


class StackCommand(BaseCommand):
    """
    Base class for stack commands.

    Provides:
    - Configuration loading and preflight
    - Secret document access
    - Target selection and session setup
    - Pre-wired supervisor and release manager
    """

    def __init__(self, verbose: bool = False, target_name: Optional[str] = None):
        super().__init__(verbose=verbose)
        self.target_name = target_name
        self.config: Optional[StackConfig] = None
        self._public_vars: Optional[Dict[str, Any]] = None
        self._document: Optional[SecretDocument] = None

    def prepare(self) -> None:
        """Load and validate the stack configuration."""
        self.config = load_config(self.stack_root)

    def init_logger(
        self, target_name: str, command_name: str, log_dir: Optional[Path] = None
    ) -> DeployLogger:
        """Logger under the stack log_dir, masking any secrets already opened."""
        logger = super().init_logger(target_name, command_name, log_dir or self.config.log_dir)
        if self._document is not None:
            logger.redact(self._document.values.values())
        return logger

    def preflight(self, operation: str) -> None:
        """
        Raises:
            PreconditionError: For the first unmet precondition
        """
        PreflightValidator(self.config).ensure(operation)
        if self.logger:
            self.logger.log(f"Preflight passed for {operation}")

    @property
    def public_vars(self) -> Dict[str, Any]:
        if self._public_vars is None:
            self._public_vars = load_public_vars(self.config.vars_file)
        return self._public_vars

    @property
    def service_user(self) -> str:
        return stack_user(self.public_vars)

    @property
    def service_group(self) -> str:
        return stack_group(self.public_vars)

    @property
    def service_groups(self) -> List[str]:
        return stack_groups(self.public_vars)

    @property
    def secret_store(self) -> SecretStore:
        return SecretStore(self.config.vault_file)

    def read_passphrase(self) -> str:
        return read_passphrase(self.config.vault_password_file)

    def open_secrets(self) -> SecretDocument:
        """
        Decrypt the secret document with the stack passphrase file.

        Raises:
            SecretError: If the passphrase file is missing
            DecryptionError: On a wrong passphrase or corrupt document
        """
        document = self.secret_store.open(self.read_passphrase())
        self._document = document
        if self.logger:
            self.logger.redact(document.values.values())
            self.logger.log(f"Opened secret document ({len(document)} keys)")
        return document

    def renderer(self, templates_dir=None, **kwargs) -> ReleaseRenderer:
        return ReleaseRenderer(templates_dir or self.config.templates_dir, **kwargs)

    def render_context(self, document: SecretDocument) -> Dict[str, Any]:
        """
        Raises:
            RenderError: If a variable references something undefined
        """
        return self.renderer().build_context(self.public_vars, document.values)

    def select_target(self) -> Target:
        """
        Raises:
            InventoryError: If no single target matches
        """
        return Inventory.load(self.config.inventory).select(self.config.group, self.target_name)

    def connect(self, target: Target) -> Session:
        """
        Raises:
            TargetConnectionError: If the target cannot be reached
        """
        session = RemoteExecutor(self.config, self.logger).connect(target)
        if self.logger:
            self.logger.log(f"Connected to {target.name} as {session.login_user}")
        return session

    def supervisor(self, session: Session, project: Optional[str] = None) -> ServiceSupervisor:
        return ServiceSupervisor(
            self.config, session, self.service_user, project=project, logger=self.logger
        )

    def release_manager(self, session: Session) -> ReleaseManager:
        return ReleaseManager(
            self.config,
            session,
            self.supervisor(session),
            self.renderer(),
            self.service_user,
            service_group=self.service_group,
            logger=self.logger,
        )
