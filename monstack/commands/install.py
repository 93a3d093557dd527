"""
Install Command

Prepare a fresh target: service account, groups and the directory layout
releases are deployed into.
"""

import click

from monstack.base import StackCommand


class InstallCommand(StackCommand):
    """Prepare the target layout."""

    def execute(self) -> None:
        """Execute install command."""
        self.preflight("install")
        target = self.select_target()
        logger = self.init_logger(target.name, "install")

        self.show_header(
            title="Prepare Target",
            target=f"{target.name} ({target.connection_string})",
            details={"Service account": self.service_user, "Base": self.config.base_dir},
        )

        logger.step("Connecting to target")
        with self.connect(target) as session:
            logger.success(f"Connected as {session.login_user}")

            logger.step("Creating service account and directories")
            directories = self.release_manager(session).prepare_target(
                self.service_groups, self.config.services
            )
            logger.success(f"{len(directories)} directories ready")

        self.console.print(f"\n[green]✓ Target {target.name} prepared[/green]")
        self.console.print("\n[dim]Next:[/dim] [cyan]monstack deploy[/cyan]")
        self.print_log_path()


@click.command()
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def install(target_name, verbose):
    """
    Prepare the target for deployments

    Creates the service account (and adds it to the configured groups),
    the base directory, the releases directory and a persistent data
    directory per service. Safe to run repeatedly.

    Examples:
        monstack install
    """
    cmd = InstallCommand(verbose=verbose, target_name=target_name)
    cmd.run()
