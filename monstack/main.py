#!/usr/bin/env python3
"""monstack CLI - Main entry point"""

import functools
import os
import sys

from rich.console import Console

import rich_click as click
from click.exceptions import Abort, ClickException, UsageError

from monstack import __version__
from monstack.exceptions import MonstackError, exit_code_for
from monstack.commands.check import check
from monstack.commands.deploy import deploy, deploy_check
from monstack.commands.install import install
from monstack.commands.releases import releases_list, releases_rollback
from monstack.commands.restart import restart
from monstack.commands.secrets import (
    secrets,
    secrets_generate,
    secrets_rekey,
    secrets_set,
    secrets_view,
)
from monstack.commands.setup_runner import setup_runner
from monstack.commands.status import status

RICH_CLICK_SETTINGS = {
    "USE_RICH_MARKUP": True,
    "USE_MARKDOWN": False,
    "SHOW_ARGUMENTS": True,
    "GROUP_ARGUMENTS_OPTIONS": True,
    "MAX_WIDTH": 100,
    "STYLE_COMMAND": "bold cyan",
    "STYLE_OPTION": "bold magenta",
    "STYLE_SWITCH": "bold green",
    "STYLE_ARGUMENT": "bold yellow",
    "STYLE_HEADER_TEXT": "bold cyan",
    "STYLE_USAGE": "bold yellow",
    "STYLE_USAGE_COMMAND": "bold cyan",
    "STYLE_HELPTEXT_FIRST_LINE": "bold white",
    "STYLE_HELPTEXT": "",
    "STYLE_METAVAR": "bold yellow",
    "STYLE_OPTION_DEFAULT": "dim cyan",
    "STYLE_OPTIONS_PANEL_BORDER": "cyan",
    "STYLE_COMMANDS_PANEL_BORDER": "cyan",
    "ALIGN_OPTIONS_PANEL": "left",
    "ERRORS_EPILOGUE": "[dim]Run [cyan]monstack help[/cyan] for the command list[/dim]",
}
for _name, _value in RICH_CLICK_SETTINGS.items():
    setattr(click.rich_click, _name, _value)

click.rich_click.COMMAND_GROUPS = {
    "monstack": [
        {"name": "Stack", "commands": ["install", "check", "deploy", "deploy-check", "status", "restart"]},
        {"name": "Releases", "commands": ["releases:list", "releases:rollback"]},
        {
            "name": "Secrets",
            "commands": ["secrets", "secrets:generate", "secrets:view", "secrets:set", "secrets:rekey"],
        },
        {"name": "Other", "commands": ["setup-runner", "help"]},
    ]
}

console = Console()

BANNER = """
[bold cyan]monstack[/bold cyan] [dim]v{version}[/dim]
[white]Versioned releases for the self-hosted monitoring stack[/white]
[dim]caddy · prometheus · grafana · graylog · opensearch · mongodb · registry[/dim]
"""


def handle_cli_errors(func):
    """Map whatever escapes the command layer to an exit status."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except UsageError as e:
            console.print(f"\n[bold red]✗ Usage error:[/bold red] {e.format_message()}")
            if e.ctx and e.ctx.command:
                console.print(f"[dim]See[/dim] [cyan]monstack help {e.ctx.command.name}[/cyan]\n")
            sys.exit(1)
        except Abort:
            console.print("\n[yellow]Aborted[/yellow]")
            sys.exit(exit_code_for(KeyboardInterrupt()))
        except ClickException as e:
            e.show()
            sys.exit(e.exit_code)
        except MonstackError as e:
            console.print(f"\n[bold red]✗ {e.category}:[/bold red] {e.message}")
            if e.context:
                console.print(f"[dim]Fix:[/dim] {e.context}")
            sys.exit(e.exit_code)
        except Exception as e:
            console.print(f"\n[bold red]✗ Unexpected error:[/bold red] {e}")
            if os.environ.get("DEBUG"):
                console.print_exception()
            else:
                console.print("[dim]Set DEBUG=1 for a traceback[/dim]")
            sys.exit(1)

    return wrapper


@click.group(name="monstack", invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    monstack - Deploy the monitoring stack as versioned, rollback-able releases.

    \b
    Full workflow:
      monstack install                # Prepare the target
      monstack check                  # Check connection to the server
      monstack secrets:generate --write
      monstack deploy                 # Deploy a new release
      monstack status                 # Show service status
      monstack setup-runner           # Optional: GitHub Actions runner

    \b
    The stack directory is the current directory, or MONSTACK_DIR.
    """
    if ctx.invoked_subcommand is None:
        console.print(BANNER.format(version=__version__))
        console.print("[yellow]Run 'monstack --help' for usage[/yellow]\n")


@click.command(name="help")
@click.argument("command_name", required=False)
@click.pass_context
def help_command(ctx, command_name):
    """Show help for monstack or one command"""
    group = ctx.parent.command
    if command_name:
        command = group.get_command(ctx.parent, command_name)
        if command is None:
            raise click.UsageError(f"No such command '{command_name}'", ctx=ctx)
        with click.Context(command, info_name=command_name, parent=ctx.parent) as sub_ctx:
            click.echo(command.get_help(sub_ctx))
        return
    click.echo(group.get_help(ctx.parent))


cli.add_command(install)
cli.add_command(check)
cli.add_command(deploy)
cli.add_command(deploy_check)
cli.add_command(status)
cli.add_command(restart)
cli.add_command(releases_list)
cli.add_command(releases_rollback)
cli.add_command(secrets)
cli.add_command(secrets_generate)
cli.add_command(secrets_view)
cli.add_command(secrets_set)
cli.add_command(secrets_rekey)
cli.add_command(setup_runner)
cli.add_command(help_command)


@handle_cli_errors
def main():
    """Console script entry point."""
    # Usage errors and aborts propagate to handle_cli_errors
    result = cli(standalone_mode=False)
    if isinstance(result, int):
        sys.exit(result)


if __name__ == "__main__":
    main()
