"""Configuration Commands - CLI settings management"""

import typer
from rich.console import Console

from ..config_manager import config
from ..formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.base_url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    if key == "api.base_url" and not value.startswith(("http://", "https://")):
        print_error("API base URL must start with http:// or https://")
        raise typer.Exit(1)

    if key in ("api.timeout", "display.default_limit"):
        if not value.isdigit():
            print_error(f"{key} must be a positive integer")
            raise typer.Exit(1)
        config.set(key, int(value))
    else:
        config.set(key, value)

    print_success(f"Set {key} = {value}")
    if key == "api.base_url":
        print_info("Test connection with: jobrelay status")


@app.command("show")
def show_config():
    """📊 Show all configuration settings"""
    console.print(f"[dim]Configuration file: {config.config_file}[/dim]")
    for section, values in config.load_config().items():
        console.print(f"[bold cyan]{section}[/bold cyan]")
        if isinstance(values, dict):
            for key, value in values.items():
                console.print(f"  {key} = [yellow]{value}[/yellow]")
        else:
            console.print(f"  [yellow]{values}[/yellow]")
