"""Job Relay CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client import JobRelayAPIError, JobRelayClient
from .commands import config as config_commands
from .commands import executions
from .config_manager import config
from .formatting import print_info

console = Console()

app = typer.Typer(
    name="jobrelay",
    help="Job Relay - inspect dispatched jobs and their executions",
    rich_markup_mode="rich",
)

app.add_typer(executions.app, name="executions")
app.add_typer(config_commands.app, name="config")


@app.command()
def status():
    """📊 Check API health and execution counts"""
    base_url = config.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobRelayClient(base_url) as client:
            health = client.health_check()
    except JobRelayAPIError as e:
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n{e}\n\n"
                f"Update the API URL with:\n"
                f"[cyan]jobrelay config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    database = health.get("database") or {}
    counts = health.get("executions") or {}
    count_lines = "\n".join(
        f"• {status_name}: [yellow]{count}[/yellow]"
        for status_name, count in counts.items()
    )
    healthy = health.get("ok", False)

    console.print(
        Panel(
            f"{'🚀 [green]Healthy[/green]' if healthy else '⚠️ [red]Unhealthy[/red]'}\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Database: {'connected' if database.get('connected') else 'unavailable'}\n"
            f"{count_lines}",
            title="System Status",
            border_style="green" if healthy else "red",
        )
    )
    if not healthy:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
