"""
Base Command Class

Every monstack command is a BaseCommand: prepare(), then execute(), with
run() turning any failure into an operator-facing message and exit code.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from rich.console import Console

from monstack.constants import DEFAULT_LOG_DIR
from monstack.exceptions import MonstackError, exit_code_for
from monstack.logger import DeployLogger
from monstack.ui_components import ERROR_COLOR, SUCCESS_COLOR, WARNING_COLOR, show_header
from monstack.utils import get_stack_root

# OSErrors raised on the operator machine (pass file, logs, templates)
LOCAL_IO_ERRORS = {
    PermissionError: ("Permission denied", "Check file ownership and modes in the stack directory"),
    FileNotFoundError: ("File not found", None),
}


class BaseCommand(ABC):
    """
    Abstract base command class.

    Subclasses implement execute(); run() owns logging teardown and the
    mapping from exceptions to exit codes.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.console = Console()
        self.stack_root = get_stack_root()
        self.logger: Optional[DeployLogger] = None

    def init_logger(
        self, target_name: str, command_name: str, log_dir: Optional[Path] = None
    ) -> DeployLogger:
        """
        Start the operation log for this command.

        Args:
            target_name: Inventory host, or "local" for operator-side commands
            command_name: Operation name used in the log file name
            log_dir: Logs root (defaults to <stack>/logs)
        """
        self.logger = DeployLogger(
            log_dir or self.stack_root / DEFAULT_LOG_DIR,
            target_name,
            command_name,
            verbose=self.verbose,
        )
        return self.logger

    def show_header(
        self,
        title: str,
        subtitle: Optional[str] = None,
        target: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        if self.verbose:
            return
        show_header(title=title, subtitle=subtitle, target=target, details=details, console=self.console)

    def print_success(self, message: str) -> None:
        self.console.print(f"[{SUCCESS_COLOR}]✓ {message}[/{SUCCESS_COLOR}]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[{WARNING_COLOR}]⚠ {message}[/{WARNING_COLOR}]")

    def print_dim(self, message: str) -> None:
        self.console.print(f"[dim]{message}[/dim]")

    def print_log_path(self) -> None:
        if self.logger:
            self.console.print(f"\n[dim]Logs saved to:[/dim] {self.logger.log_path}\n")

    def prepare(self) -> None:
        """Hook run before execute, inside the error handler."""

    @abstractmethod
    def execute(self, **kwargs) -> None:
        """Command body."""

    def _report_error(self, label: str, message: str, context: Optional[str]) -> None:
        self.console.print(f"\n[bold {ERROR_COLOR}]✗ {label}:[/bold {ERROR_COLOR}] {message}")
        if context:
            self.console.print(f"[dim]Fix:[/dim] {context}")
        if self.logger:
            self.logger.log_error(f"{label}: {message}", context=context)

    def _report_rollback(self, error: MonstackError) -> None:
        report = error.report
        if report is None:
            return
        if report.rolled_back:
            restored = report.previous_release_id or "no active release"
            self.console.print(f"[{WARNING_COLOR}]Rolled back to {restored}[/{WARNING_COLOR}]")
            if report.release_id:
                self.print_dim(f"Failed release kept for inspection: {report.release_id}")
            if self.logger:
                self.logger.log(f"Rolled back to {restored}", "WARNING")
        elif report.rollback_error:
            self.console.print(f"[bold {ERROR_COLOR}]Rollback failed:[/bold {ERROR_COLOR}] {report.rollback_error}")
            if self.logger:
                self.logger.log(f"Rollback failed: {report.rollback_error}", "ERROR")

    def run(self, **kwargs) -> None:
        """
        Run the command.

        Raises:
            SystemExit: Always on failure, with the error's exit code
        """
        try:
            self.prepare()
            self.execute(**kwargs)
        except KeyboardInterrupt as e:
            self._report_error("Interrupted", "Operation cancelled by user", None)
            exit_code = exit_code_for(e)
        except MonstackError as e:
            self._report_error(e.category, e.message, e.context)
            self._report_rollback(e)
            exit_code = e.exit_code
        except (PermissionError, FileNotFoundError) as e:
            label, hint = next(v for k, v in LOCAL_IO_ERRORS.items() if isinstance(e, k))
            self._report_error(label, str(e), hint)
            exit_code = 1
        else:
            return
        finally:
            if self.logger:
                self.logger.close()

        self.print_log_path()
        raise SystemExit(exit_code)
