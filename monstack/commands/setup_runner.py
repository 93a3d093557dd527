"""
Setup Runner Command

Deploy a self-hosted GitHub Actions runner next to the monitoring stack.
"""

import click

from monstack.base import StackCommand
from monstack.constants import (
    RUNNER_COMPOSE_PROJECT,
    RUNNER_DIR,
    RUNNER_ENV_MAPPING,
    RUNNER_ORG_VAR,
    RUNNER_TOKEN_KEY,
    RUNNER_TOKEN_URL,
)
from monstack.exceptions import ConfigurationError, SecretError
from monstack.utils import quote


class SetupRunnerCommand(StackCommand):
    """
    Set up the GitHub Actions runner.

    Features:
    - Checks the organization URL and registration token up front
    - Renders runner/ templates with the stack secrets
    - Idempotent upload; compose project separate from the stack
    """

    def check_prerequisites(self, document) -> None:
        """
        Raises:
            ConfigurationError: If the organization URL is not configured
            SecretError: If the registration token is not in the vault
        """
        if not self.public_vars.get(RUNNER_ORG_VAR):
            raise ConfigurationError(
                "GitHub organization URL not found in vars.yml",
                context=f'Add to {self.config.vars_file.name}: {RUNNER_ORG_VAR}: "https://github.com/your-org"',
            )
        if not document.get(RUNNER_TOKEN_KEY):
            raise SecretError(
                "GitHub runner token not found in vault",
                context=f"Get a token from {RUNNER_TOKEN_URL}, then: monstack secrets:set {RUNNER_TOKEN_KEY}",
            )

    def execute(self) -> None:
        """Execute setup-runner command."""
        self.preflight("setup-runner")
        document = self.open_secrets()
        self.check_prerequisites(document)

        target = self.select_target()
        logger = self.init_logger(target.name, "setup-runner")

        self.show_header(
            title="GitHub Actions Runner",
            target=target.name,
            details={"Organization": self.public_vars[RUNNER_ORG_VAR]},
        )
        self.print_dim("Runner tokens expire after 60 minutes; generate a fresh one if registration fails.\n")

        logger.step("Rendering runner configuration")
        renderer = self.renderer(self.config.runner_dir, env_mapping=RUNNER_ENV_MAPPING)
        context = renderer.build_context(self.public_vars, document.values)
        rendered = renderer.render(context)
        logger.success(f"{len(rendered.files)} files, services: {', '.join(rendered.services)}")

        runner_path = f"{self.config.base_dir}/{RUNNER_DIR}"
        with self.connect(target) as session:
            manager = self.release_manager(session)
            manager.ensure_base()

            logger.step("Uploading runner files")
            parents = sorted({f"{runner_path}/{p.rsplit('/', 1)[0]}" for p in rendered.files if "/" in p})
            session.run(
                "mkdir -p " + " ".join(quote(p) for p in [runner_path, *parents]),
                become_user=self.service_user,
                check=True,
            )
            changed = 0
            for relative, rendered_file in sorted(rendered.files.items()):
                if session.put(
                    rendered_file.content,
                    f"{runner_path}/{relative}",
                    mode=rendered_file.mode,
                    become_user=self.service_user,
                ):
                    changed += 1
            logger.success(f"{changed} files updated")

            logger.step("Starting runner")
            statuses = self.supervisor(session, project=RUNNER_COMPOSE_PROJECT).up(
                runner_path, rendered.services
            )

        logger.success(", ".join(f"{s.name}={s.display_state}" for s in statuses))
        self.console.print("\n[green]✓ GitHub Actions runner setup complete[/green]")
        self.print_log_path()


@click.command(name="setup-runner")
@click.option("-t", "--target", "target_name", help="Inventory host (when the group has several)")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def setup_runner(target_name, verbose):
    """
    Set up a GitHub Actions self-hosted runner

    Requires github_org_url in vars.yml and vault_github_runner_token in
    the vault. Tokens are valid for 60 minutes.

    Examples:
        monstack setup-runner
    """
    cmd = SetupRunnerCommand(verbose=verbose, target_name=target_name)
    cmd.run()
