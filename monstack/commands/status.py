"""
Status Command

Show the active release and the state of its services.
"""

import click

from monstack.base import StackCommand
from monstack.ui_components import services_table


class StatusCommand(StackCommand):
    """Show container status of the active release."""

    def execute(self) -> None:
        """Execute status command."""
        self.preflight("status")
        target = self.select_target()
        logger = self.init_logger(target.name, "status")

        self.show_header(title="Container Status", target=f"{target.name} ({target.connection_string})")

        with self.connect(target) as session:
            manager = self.release_manager(session)
            active = manager.active_release_id()
            if active is None:
                logger.warning("No active release")
                self.console.print("\n[yellow]No active release on this target[/yellow]")
                self.console.print("[dim]Deploy first:[/dim] [cyan]monstack deploy[/cyan]\n")
                return

            services = manager.supervisor.status(self.config.current_link)

        self.console.print(f"Active release: [cyan]{active}[/cyan]\n")
        self.console.print(services_table(services, title=f"Services ({self.config.compose_project})"))

        not_ready = [s.name for s in services if not s.is_ready]
        if not_ready:
            self.print_warning(f"Not ready: {', '.join(not_ready)}")
        elif services:
            self.print_success("All services running")


@click.command()
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def status(target_name, verbose):
    """
    Show container status

    Lists every compose service of the active release with its state and
    health.

    Examples:
        monstack status
    """
    cmd = StatusCommand(verbose=verbose, target_name=target_name)
    cmd.run()
