"""monstack CLI - Releases commands"""

import click
from rich.table import Table

from monstack.base import StackCommand


class ReleasesListCommand(StackCommand):
    """Show releases on the target, newest first."""

    def execute(self) -> None:
        self.preflight("releases")
        target = self.select_target()
        logger = self.init_logger(target.name, "releases")

        self.show_header(
            title="Release History",
            target=target.name,
            details={"Keep": self.config.keep_releases},
        )

        logger.step("Reading releases")
        with self.connect(target) as session:
            releases = self.release_manager(session).list_releases()

        if not releases:
            self.console.print("[yellow]⚠️  No releases found[/yellow]")
            self.console.print("[dim]Deploy first:[/dim] [cyan]monstack deploy[/cyan]\n")
            return

        table = Table(
            title=f"Releases on {target.name}",
            title_justify="left",
            show_header=True,
            header_style="bold cyan",
            padding=(0, 1),
        )
        table.add_column("Status", style="green", no_wrap=True)
        table.add_column("Release", style="cyan")
        table.add_column("Created", style="dim")
        table.add_column("Operator", style="white")
        table.add_column("Files", justify="right")

        for release in releases:
            created = (release.created_at or "-").replace("T", " ")
            table.add_row(
                "● CURRENT" if release.active else "",
                release.id,
                created,
                release.operator or "-",
                str(len(release.files)) if release.files else "-",
                style=None if release.active else "dim",
            )

        self.console.print(table)
        if not any(r.active for r in releases):
            self.print_warning("No release is active")


class ReleasesRollbackCommand(StackCommand):
    """Activate an older release."""

    def __init__(self, release_id=None, verbose: bool = False, target_name=None):
        super().__init__(verbose=verbose, target_name=target_name)
        self.release_id = release_id

    def execute(self) -> None:
        self.preflight("rollback")
        target = self.select_target()
        logger = self.init_logger(target.name, "rollback")

        self.show_header(
            title="Rollback",
            target=target.name,
            details={"Release": self.release_id or "previous"},
        )

        with self.connect(target) as session:
            manager = self.release_manager(session)
            logger.step("Switching release")
            release = manager.rollback(self.release_id)

        logger.success(f"Release {release.id} is active")
        self.console.print(f"\n[green]✓ Rolled back to {release.id}[/green]")
        self.print_log_path()


@click.command(name="releases:list")
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def releases_list(target_name, verbose):
    """
    Show release history

    Examples:
        monstack releases:list
    """
    cmd = ReleasesListCommand(verbose=verbose, target_name=target_name)
    cmd.run()


@click.command(name="releases:rollback")
@click.option("--to", "release_id", help="Release id to activate (default: the one before the active release)")
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def releases_rollback(release_id, target_name, verbose):
    """
    Activate an older release

    Switches the current pointer back and waits for services to be healthy.
    If the older release does not come up, the previously active release is
    restored.

    Examples:
        monstack releases:rollback
        monstack releases:rollback --to 20261017120000
    """
    cmd = ReleasesRollbackCommand(release_id=release_id, verbose=verbose, target_name=target_name)
    cmd.run()
