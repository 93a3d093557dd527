"""
Operation logs for monstack

One file per operation under logs/<target>/<date>/, written as it happens.
The console only gets step lines unless verbose. Secret values registered
with redact() are masked before anything reaches the file.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Set, TextIO

from rich.console import Console

from monstack.constants import LOG_DATE_FORMAT, MIN_REDACTED_LENGTH, REDACTED

console = Console()

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

LEVEL_STYLES = {"ERROR": "red", "WARNING": "yellow", "DEBUG": "dim"}

RULE = "=" * 80
ERROR_RULE = "!" * 80


class DeployLogger:
    """
    Log of one operation against one target.

    - File: every message, command and command output, secrets masked
    - Console: step/success/warning lines, or everything when verbose
    - quiet: file only
    """

    def __init__(
        self,
        log_dir: Path,
        target_name: str,
        operation: str,
        verbose: bool = False,
        quiet: bool = False,
    ):
        """
        Args:
            log_dir: Root of the logs directory
            target_name: Inventory host name, or 'local' for operator-side work
            operation: Operation name used in the file name (deploy, status, ...)
            verbose: Echo everything to the console
            quiet: Never print to the console
        """
        self.target_name = target_name
        self.operation = operation
        self.verbose = verbose
        self.quiet = quiet
        self.current_step = ""
        self.has_errors = False
        self._secrets: Set[str] = set()

        started = datetime.now()
        day_dir = Path(log_dir) / target_name / started.strftime(LOG_DATE_FORMAT)
        day_dir.mkdir(parents=True, exist_ok=True)
        self.log_path = day_dir / f"{started.strftime('%H-%M-%S')}_{operation}.log"

        # Line buffered so `tail -f` follows along
        self.log_file: Optional[TextIO] = open(self.log_path, "a", buffering=1)
        self._write(
            f"\n{RULE}\nmonstack operation log\n{RULE}\n"
            f"Target: {target_name}\nOperation: {operation}\n"
            f"Started: {started.isoformat()}\n{RULE}\n\n"
        )

    def redact(self, values: Iterable[str]) -> None:
        """Mask these values wherever they would appear in the log file."""
        for value in values:
            if value and len(value) >= MIN_REDACTED_LENGTH:
                self._secrets.add(str(value))

    def scrub(self, text: str) -> str:
        # Longest first so a secret containing another is masked whole
        for value in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(value, REDACTED)
        return text

    def _write(self, text: str) -> None:
        if self.log_file:
            self.log_file.write(self.scrub(text))
            self.log_file.flush()

    def _print(self, message: str) -> None:
        if not self.quiet:
            console.print(message)

    def log(self, message: str, level: str = "INFO"):
        """Write a line to the file; echo it to the console when verbose."""
        self._write(f"[{datetime.now().strftime('%H:%M:%S')}] [{level}] {message}\n")

        if self.verbose:
            style = LEVEL_STYLES.get(level)
            text = self.scrub(message)
            self._print(f"[{style}]{text}[/{style}]" if style else text)

    def log_command(self, command: str):
        self.log(f"Executing: {command}", "DEBUG")

    def log_output(self, output: str, stream: str = "stdout"):
        """
        Record command output, one prefixed line per output line.

        Colour codes are stripped for the file. The console sees it only
        when verbose.
        """
        if not output:
            return

        plain = ANSI_ESCAPE.sub("", output)
        self._write("".join(f"  [{stream}] {line}\n" for line in plain.splitlines()))

        if self.verbose:
            self._print(f"[dim]{self.scrub(output.rstrip())}[/dim]")

    def log_error(self, error: str, context: Optional[str] = None):
        """Write an error block; the command layer prints the console side."""
        self.has_errors = True
        block = f"\n{ERROR_RULE}\nERROR\n{ERROR_RULE}\n{error}\n"
        if context:
            block += f"\nFix: {context}\n"
        self._write(block + f"{ERROR_RULE}\n\n")

    def step(self, step_name: str):
        if self.current_step and not self.verbose:
            self._print("")

        self.current_step = step_name
        self.log(f"Step: {step_name}")

        if not self.verbose:
            self._print(f"[color(214)]▶[/color(214)] [white]{step_name}[/white]")

    def success(self, message: str):
        self.log(message)
        if not self.verbose:
            self._print(f"  [dim]✓ {message}[/dim]")

    def warning(self, message: str):
        self.log(message, "WARNING")
        if not self.verbose:
            self._print(f"  [yellow]⚠[/yellow] [dim]{message}[/dim]")

    def close(self):
        """Write the footer with the final status and close the file."""
        if not self.log_file:
            return
        status = "FAILED" if self.has_errors else "SUCCESS"
        self._write(f"\n{RULE}\nCompleted: {datetime.now().isoformat()}\nStatus: {status}\n{RULE}\n")
        self.log_file.close()
        self.log_file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, _exc_tb):
        if exc_type is not None and exc_type is not SystemExit:
            self.log_error(f"{exc_type.__name__}: {exc_val}" if str(exc_val) else "Operation failed")
        self.close()
        return False
