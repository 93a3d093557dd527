"""
Restart Command

Restart one service of the active release with health verification.
"""

import click
from dataclasses import dataclass

from monstack.base import StackCommand
from monstack.exceptions import DeploymentError, ValidationError


@dataclass
class RestartOptions:
    """Options for restart command."""

    service: str


class RestartCommand(StackCommand):
    """
    Restart a service container.

    Features:
    - Service name validated against the running project
    - Health verification after restart
    - Automatic logging
    """

    def __init__(self, options: RestartOptions, verbose: bool = False, target_name=None):
        super().__init__(verbose=verbose, target_name=target_name)
        self.options = options

    def execute(self) -> None:
        """Execute restart command."""
        self.preflight("restart")
        target = self.select_target()
        logger = self.init_logger(target.name, f"restart-{self.options.service}")

        self.show_header(title="Restart Service", target=target.name, details={"Service": self.options.service})

        with self.connect(target) as session:
            manager = self.release_manager(session)
            if manager.active_release_id() is None:
                raise DeploymentError("No active release on this target", context="Run: monstack deploy")

            supervisor = manager.supervisor
            known = [s.name for s in supervisor.status(self.config.current_link)]
            if self.options.service not in known:
                raise ValidationError(
                    f"Unknown service '{self.options.service}'",
                    context=f"Services: {', '.join(known) or 'none running'}",
                )

            logger.step(f"Restarting {self.options.service}")
            statuses = supervisor.restart(self.config.current_link, self.options.service)

        state = next((s for s in statuses if s.name == self.options.service), None)
        logger.success(f"{self.options.service} is {state.display_state if state else 'running'}")
        self.console.print(f"\n[green]✓ Restarted {self.options.service}[/green]")
        self.print_log_path()


@click.command()
@click.argument("service")
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def restart(service, target_name, verbose):
    """
    Restart one service of the active release

    Examples:
        monstack restart grafana
        monstack restart graylog -v
    """
    cmd = RestartCommand(RestartOptions(service=service), verbose=verbose, target_name=target_name)
    cmd.run()
