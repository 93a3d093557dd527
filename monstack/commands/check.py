"""
Check Command

Verify local prerequisites and the connection to the target, then print a
few facts about it. Read-only.
"""

import click
from rich.table import Table

from monstack.base import StackCommand
from monstack.utils import quote


class CheckCommand(StackCommand):
    """Check connection to the target."""

    def execute(self) -> None:
        """Execute check command."""
        self.preflight("connect")
        target = self.select_target()
        logger = self.init_logger(target.name, "check")

        self.show_header(title="Connection Check", target=f"{target.name} ({target.connection_string})")

        logger.step("Connecting to target")
        with self.connect(target) as session:
            logger.success(f"Connected as {session.login_user}")

            base = quote(self.config.base_dir)
            probes = [
                ("System", "uname -srm"),
                ("Login user", "id -un"),
                ("Python", f"command -v {quote(target.interpreter)}"),
                ("Docker", "docker --version"),
                ("Compose", f"{self.config.compose_command} version --short"),
                ("Service account", f"id {quote(self.service_user)}"),
                ("Base directory", f"ls -ld {base}"),
                ("Active release", f"readlink {quote(self.config.current_link)}"),
            ]

            logger.step("Gathering target facts")
            facts = []
            for label, command in probes:
                result = session.run(command)
                value = result.stdout.strip().splitlines()[0] if result.is_success and result.stdout.strip() else None
                facts.append((label, value))

        table = Table(show_header=False, padding=(0, 1))
        table.add_column("Fact", style="cyan", no_wrap=True)
        table.add_column("Value")
        for label, value in facts:
            table.add_row(label, value if value else "[yellow]missing[/yellow]")

        self.console.print()
        self.console.print(table)
        self.console.print(f"\n[green]✓ Connection to {target.name} successful[/green]")

        missing = [label for label, value in facts if not value]
        if "Service account" in missing or "Base directory" in missing:
            self.console.print("[dim]Prepare the target:[/dim] [cyan]monstack install[/cyan]")


@click.command()
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def check(target_name, verbose):
    """
    Check connection to the server

    Runs the local preflight checks, connects to the target and reports
    the docker version, service account and active release.

    Examples:
        monstack check
    """
    cmd = CheckCommand(verbose=verbose, target_name=target_name)
    cmd.run()
