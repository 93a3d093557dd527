"""
monstack CLI - UI Components
Standardized headers and tables
"""

from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from monstack.models import ServiceStatus

BRAND = "monstack"

# Color scheme
BRAND_COLOR = "cyan"
SUCCESS_COLOR = "green"
WARNING_COLOR = "yellow"
ERROR_COLOR = "red"

STATE_STYLES = {
    "running": "green",
    "healthy": "green",
    "starting": "yellow",
    "restarting": "yellow",
    "created": "yellow",
    "unhealthy": "red",
    "exited": "red",
    "dead": "red",
    "missing": "red",
}


def show_header(
    title: str,
    subtitle: Optional[str] = None,
    target: Optional[str] = None,
    details: Optional[dict] = None,
    console: Optional[Console] = None,
):
    """
    Display a standardized command header.

    Args:
        title: Main title (e.g., "Deploy Monitoring Stack")
        subtitle: Optional subtitle line
        target: Target host name (if applicable)
        details: Additional key-value pairs to display
        console: Rich Console instance (creates new if None)
    """
    if console is None:
        console = Console()

    prefix = f" [bold color(214)]{BRAND}[/bold color(214)] [dim]›[/dim]"
    console.print(f"{prefix} [bold white]{title}[/bold white]")

    if subtitle:
        console.print(f"{prefix} [dim]{subtitle}[/dim]")

    if target:
        console.print(f"{prefix} Target: [cyan]{target}[/cyan]")

    if details:
        for key, value in details.items():
            console.print(f"{prefix} {key}: [cyan]{value}[/cyan]")

    console.print()


def services_table(services: Iterable[ServiceStatus], title: str = "Services") -> Table:
    """Build a table of compose service states."""
    table = Table(title=title, title_justify="left", show_header=True, header_style=f"bold {BRAND_COLOR}", padding=(0, 1))
    table.add_column("Service", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Health", style="dim")

    for service in services:
        style = STATE_STYLES.get(service.display_state, "white")
        table.add_row(
            service.name,
            f"[{style}]{service.state}[/{style}]",
            service.health or "-",
        )
    return table
