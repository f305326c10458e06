"""Rich formatting helpers for CLI output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
}


def print_success(message: str):
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    console.print(f"[red]✗ {message}[/red]")


def print_info(message: str):
    console.print(f"[blue]ℹ {message}[/blue]")


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_executions_table(executions: list[dict[str, Any]], title: str) -> Table:
    """Create a table of execution records"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Retries", justify="right")
    table.add_column("Created", style="dim")
    table.add_column("Error", style="red")

    for execution in executions:
        error = execution.get("error") or ""
        table.add_row(
            execution.get("job_id", ""),
            execution.get("job_type", ""),
            format_status(execution.get("status", "")),
            str(execution.get("retry_count", 0)),
            (execution.get("created_at") or "")[:19],
            error if len(error) <= 60 else f"{error[:57]}...",
        )

    return table


def create_execution_panel(execution: dict[str, Any]) -> Panel:
    """Create a detail panel for one execution record"""
    lines = [
        f"• Type: [magenta]{execution.get('job_type')}[/magenta]",
        f"• Status: {format_status(execution.get('status', ''))}",
        f"• Retry count: [yellow]{execution.get('retry_count', 0)}[/yellow]",
        f"• Created: {execution.get('created_at')}",
        f"• Started: {execution.get('started_at') or '-'}",
        f"• Completed: {execution.get('completed_at') or '-'}",
    ]
    if execution.get("duration_seconds") is not None:
        lines.append(f"• Duration: {execution['duration_seconds']:.2f}s")
    if execution.get("idempotency_key"):
        lines.append(f"• Idempotency key: {execution['idempotency_key']}")
    if execution.get("error"):
        lines.append(f"\n[red]Error:[/red] {execution['error']}")
    if execution.get("result") is not None:
        lines.append(f"\n[green]Result:[/green] {json.dumps(execution['result'], indent=2)}")

    return Panel(
        "\n".join(lines),
        title=f"Job {execution.get('job_id')}",
        border_style=STATUS_STYLES.get(execution.get("status", ""), "white"),
    )
