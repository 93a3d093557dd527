"""
Deploy Command

Render the stack, place it on the target as a new release, switch to it and
verify service health. Rolls back automatically when the new release fails.
"""

import click
from dataclasses import dataclass
from rich.table import Table

from monstack.base import StackCommand
from monstack.models import DeployReport
from monstack.ui_components import services_table


@dataclass
class DeployOptions:
    """Options for deploy command."""

    check: bool = False


class DeployCommand(StackCommand):
    """
    Deploy the monitoring stack.

    Features:
    - Secrets decrypted before any connection is made
    - Versioned, immutable releases with atomic switch
    - Health verification with automatic rollback
    - Dry run (--check) showing per-file changes
    """

    def __init__(self, options: DeployOptions, verbose: bool = False, target_name=None):
        super().__init__(verbose=verbose, target_name=target_name)
        self.options = options

    def execute(self) -> None:
        """Execute deploy command."""
        self.preflight("deploy")

        # Wrong passphrase must fail here, before the target is contacted
        document = self.open_secrets()
        target = self.select_target()

        operation = "deploy-check" if self.options.check else "deploy"
        logger = self.init_logger(target.name, operation)

        self.show_header(
            title="Deploy Monitoring Stack" if not self.options.check else "Deploy (check mode)",
            target=f"{target.name} ({target.connection_string})",
            details={"Base": self.config.base_dir, "Keep": self.config.keep_releases},
        )

        logger.step("Rendering configuration")
        context = self.render_context(document)
        logger.success(f"{len(document)} secrets, {len(self.public_vars)} variables")

        logger.step("Connecting to target")
        with self.connect(target) as session:
            logger.success(f"Connected as {session.login_user}")
            manager = self.release_manager(session)

            if self.options.check:
                logger.step("Comparing with active release")
            else:
                logger.step("Releasing")
            report = manager.deploy(context, check=self.options.check)

        if self.options.check:
            self._print_changes(report)
        else:
            logger.success(f"Release {report.release_id} is live")
            self._print_summary(report)

    def _print_changes(self, report: DeployReport) -> None:
        active = report.previous_release_id or "none"
        if not report.changes:
            self.console.print(f"\n[green]No changes[/green] [dim](active release: {active})[/dim]")
            return

        table = Table(
            title=f"Changes against active release {active}",
            title_justify="left",
            show_header=True,
            header_style="bold cyan",
            padding=(0, 1),
        )
        table.add_column("File", style="cyan")
        table.add_column("Change")
        styles = {"added": "green", "changed": "yellow", "removed": "red"}
        for path, change in report.changes.items():
            style = styles.get(change, "white")
            table.add_row(path, f"[{style}]{change}[/{style}]")
        self.console.print()
        self.console.print(table)
        self.print_dim("Check mode: nothing was changed on the target")

    def _print_summary(self, report: DeployReport) -> None:
        self.console.print()
        if report.services:
            self.console.print(services_table(report.services))
        self.console.print(f"\n[green]✓ Deployed release {report.release_id}[/green]")
        if report.previous_release_id:
            self.print_dim(f"Previous release: {report.previous_release_id}")
        if report.pruned:
            self.print_dim(f"Pruned: {', '.join(report.pruned)}")
        self.console.print("\n[dim]Check status:[/dim] [cyan]monstack status[/cyan]")
        self.print_log_path()


@click.command()
@click.option("--check", is_flag=True, help="Dry run: show what would change")
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def deploy(check, target_name, verbose):
    """
    Deploy the monitoring stack

    Renders templates with the decrypted secrets, uploads them as a new
    release, switches the current pointer and waits for all services to be
    healthy. A failed release is rolled back automatically.

    Examples:
        monstack deploy
        monstack deploy --check
        monstack deploy -t monitoring-2 -v
    """
    cmd = DeployCommand(DeployOptions(check=check), verbose=verbose, target_name=target_name)
    cmd.run()


@click.command("deploy-check")
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def deploy_check(target_name, verbose):
    """Deploy in check mode (same as deploy --check)"""
    cmd = DeployCommand(DeployOptions(check=True), verbose=verbose, target_name=target_name)
    cmd.run()
