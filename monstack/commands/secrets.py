"""
Secrets Commands

Generate, inspect and change the encrypted secret document. Everything
happens on the operator machine; no target is contacted.
"""

import re

import click
from rich.table import Table

from monstack.base import StackCommand
from monstack.constants import BCRYPT_ROUNDS, MIN_OPERATOR_PASSWORD_LENGTH, REDACTED
from monstack.core.secret_generator import (
    OperatorPasswords,
    format_secrets_yaml,
    generate_secrets,
    validate_password,
)
from monstack.core.vault import write_private_file
from monstack.exceptions import ValidationError
from monstack.services import PreflightValidator

SECRET_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SECRETS_HELP = """
Secrets live in an encrypted document next to the inventory:

  {vault_file}

The passphrase is read from {pass_file} (keep it chmod 600, never commit it).

[bold]1.[/bold] Create the passphrase file:
   cp .vault_pass.example .vault_pass && chmod 600 .vault_pass

[bold]2.[/bold] Generate passwords and write them to the vault:
   [cyan]monstack secrets:generate --write[/cyan]
   (without --write the values are printed as YAML)

[bold]3.[/bold] Update hostnames for production in vars.yml:
   grafana_hostname, graylog_hostname, prometheus_hostname, registry_hostname

[bold]4.[/bold] Deploy with the new secrets:
   [cyan]monstack deploy[/cyan]

Vault operations:

  [cyan]monstack secrets:view[/cyan]              list keys (values masked)
  [cyan]monstack secrets:view --reveal[/cyan]     show values
  [cyan]monstack secrets:set KEY[/cyan]           set one value (prompted)
  [cyan]monstack secrets:rekey[/cyan]             change the passphrase
"""


class SecretsHelpCommand(StackCommand):
    """Print secrets workflow instructions."""

    def execute(self) -> None:
        self.show_header(title="Secrets Configuration")
        self.console.print(
            SECRETS_HELP.format(
                vault_file=self.config.vault_file.relative_to(self.config.root)
                if self.config.vault_file.is_relative_to(self.config.root)
                else self.config.vault_file,
                pass_file=self.config.vault_password_file.name,
            )
        )


class SecretsGenerateCommand(StackCommand):
    """
    Generate the stack secrets.

    Without --write the values are printed as YAML; with --write they are
    merged into the vault (created if missing).
    """

    def __init__(
        self,
        passwords: OperatorPasswords,
        write: bool = False,
        force: bool = False,
        bcrypt_rounds: int = BCRYPT_ROUNDS,
        verbose: bool = False,
    ):
        super().__init__(verbose=verbose)
        self.passwords = passwords
        self.write = write
        self.force = force
        self.bcrypt_rounds = bcrypt_rounds

    def execute(self) -> None:
        if self.write:
            # The document may not exist yet; only the passphrase is required
            issue = PreflightValidator(self.config).check_vault_pass()
            if issue:
                raise issue.to_error()

        logger = self.init_logger("local", "secrets-generate")
        values = generate_secrets(self.passwords, bcrypt_rounds=self.bcrypt_rounds)
        logger.redact(values.values())
        logger.log(f"Generated {len(values)} secrets: {', '.join(values)}")

        if not self.write:
            self.console.print("\n[bold]Copy the following values to the vault:[/bold]\n")
            click.echo(format_secrets_yaml(values))
            self.print_dim("Or store them directly: monstack secrets:generate --write")
            return

        store = self.secret_store
        passphrase = self.read_passphrase()
        if store.exists():
            document = store.open(passphrase)
            existing = [key for key in values if document.has(key)]
            if existing and not self.force:
                raise ValidationError(
                    f"Vault already contains {', '.join(existing)}",
                    context="Pass --force to replace them (running services keep the old values until the next deploy)",
                )
            document.values.update(values)
            store.save(document, passphrase)
        else:
            store.create(values, passphrase)

        logger.success(f"Wrote {len(values)} secrets to {self.config.vault_file.name}")
        self.console.print(f"\n[green]✓ Secrets stored in {self.config.vault_file}[/green]")
        self.console.print("[dim]Next:[/dim] [cyan]monstack deploy[/cyan]")


class SecretsViewCommand(StackCommand):
    """List the vault contents."""

    def __init__(self, reveal: bool = False, verbose: bool = False):
        super().__init__(verbose=verbose)
        self.reveal = reveal

    def execute(self) -> None:
        self.preflight("secrets")
        document = self.open_secrets()

        if not len(document):
            self.print_warning("Vault is empty")
            return

        values = document.values if self.reveal else {key: REDACTED for key in document.values}
        table = Table(title=f"Secrets ({self.config.vault_file.name})", title_justify="left", padding=(0, 1))
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Value", overflow="fold")
        for key in document.keys():
            table.add_row(key, values[key])
        self.console.print(table)
        if not self.reveal:
            self.print_dim("Values hidden; pass --reveal to show them")


class SecretsSetCommand(StackCommand):
    """Set one secret."""

    def __init__(self, key: str, value: str, verbose: bool = False):
        super().__init__(verbose=verbose)
        self.key = key
        self.value = value

    def execute(self) -> None:
        if not SECRET_KEY_PATTERN.match(self.key):
            raise ValidationError(
                f"Invalid secret key '{self.key}'",
                context="Use letters, digits and underscores (e.g. vault_github_runner_token)",
            )
        self.preflight("secrets")
        logger = self.init_logger("local", "secrets-set")
        logger.redact([self.value])

        passphrase = self.read_passphrase()
        store = self.secret_store
        document = store.open(passphrase)
        replaced = document.has(self.key)
        store.set(document, self.key, self.value, passphrase)

        logger.log(f"{'Updated' if replaced else 'Added'} secret {self.key}")
        self.print_success(f"{'Updated' if replaced else 'Added'} {self.key}")


class SecretsRekeyCommand(StackCommand):
    """
    Change the vault passphrase.

    The document is re-encrypted first, then the passphrase file is replaced.
    """

    def __init__(self, new_passphrase: str, verbose: bool = False):
        super().__init__(verbose=verbose)
        self.new_passphrase = new_passphrase

    def execute(self) -> None:
        if len(self.new_passphrase) < MIN_OPERATOR_PASSWORD_LENGTH:
            raise ValidationError(
                f"Passphrase must be at least {MIN_OPERATOR_PASSWORD_LENGTH} characters"
            )
        self.preflight("secrets")
        logger = self.init_logger("local", "secrets-rekey")

        old_passphrase = self.read_passphrase()
        self.secret_store.rekey(None, old_passphrase, self.new_passphrase)
        write_private_file(self.config.vault_password_file, self.new_passphrase + "\n")

        logger.log("Vault passphrase changed")
        self.print_success(f"Re-encrypted {self.config.vault_file.name}")
        self.print_success(f"Updated {self.config.vault_password_file.name}")


def _check_length(ctx, param, value):
    try:
        validate_password(param.name.split("_")[0].capitalize() + " admin", value)
    except ValidationError as e:
        raise click.BadParameter(e.message)
    return value


@click.command()
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def secrets(verbose):
    """
    Show secrets configuration instructions
    """
    cmd = SecretsHelpCommand(verbose=verbose)
    cmd.run()


@click.command(name="secrets:generate")
@click.option("--write", is_flag=True, help="Store the secrets in the vault instead of printing them")
@click.option("--force", is_flag=True, help="Replace secrets already in the vault")
@click.option(
    "--graylog-password",
    prompt="Graylog admin password",
    hide_input=True,
    confirmation_prompt=True,
    callback=_check_length,
    help=f"Graylog admin password (min {MIN_OPERATOR_PASSWORD_LENGTH} chars)",
)
@click.option(
    "--grafana-password",
    prompt="Grafana admin password",
    hide_input=True,
    confirmation_prompt=True,
    callback=_check_length,
    help=f"Grafana admin password (min {MIN_OPERATOR_PASSWORD_LENGTH} chars)",
)
@click.option(
    "--prometheus-password",
    prompt="Prometheus admin password",
    hide_input=True,
    confirmation_prompt=True,
    callback=_check_length,
    help=f"Prometheus basic auth password (min {MIN_OPERATOR_PASSWORD_LENGTH} chars)",
)
@click.option("--bcrypt-rounds", type=click.IntRange(4, 31), default=BCRYPT_ROUNDS, show_default=True, hidden=True)
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def secrets_generate(write, force, graylog_password, grafana_password, prometheus_password, bcrypt_rounds, verbose):
    """
    Generate passwords and secrets for the stack

    Prompts for the three admin passwords and derives everything else:
    Graylog password secret and root hash, Prometheus bcrypt hash and a
    random OpenSearch admin password.

    Examples:
        monstack secrets:generate
        monstack secrets:generate --write
    """
    passwords = OperatorPasswords(
        graylog=graylog_password,
        grafana=grafana_password,
        prometheus=prometheus_password,
    )
    cmd = SecretsGenerateCommand(
        passwords, write=write, force=force, bcrypt_rounds=bcrypt_rounds, verbose=verbose
    )
    cmd.run()


@click.command(name="secrets:view")
@click.option("--reveal", is_flag=True, help="Show secret values")
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def secrets_view(reveal, verbose):
    """
    List secrets in the vault

    Examples:
        monstack secrets:view
        monstack secrets:view --reveal
    """
    cmd = SecretsViewCommand(reveal=reveal, verbose=verbose)
    cmd.run()


@click.command(name="secrets:set")
@click.argument("key")
@click.argument("value", required=False)
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def secrets_set(key, value, verbose):
    """
    Set one secret

    The value is prompted for (hidden) when not given.

    Examples:
        monstack secrets:set vault_github_runner_token
    """
    if value is None:
        value = click.prompt(f"Value for {key}", hide_input=True, confirmation_prompt=True)
    cmd = SecretsSetCommand(key, value, verbose=verbose)
    cmd.run()


@click.command(name="secrets:rekey")
@click.option(
    "--new-passphrase",
    prompt="New vault passphrase",
    hide_input=True,
    confirmation_prompt=True,
    help="New passphrase (prompted when omitted)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show all command output")
def secrets_rekey(new_passphrase, verbose):
    """
    Change the vault passphrase

    Re-encrypts the vault with the new passphrase and updates the
    passphrase file.

    Examples:
        monstack secrets:rekey
    """
    cmd = SecretsRekeyCommand(new_passphrase, verbose=verbose)
    cmd.run()
