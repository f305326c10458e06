"""Execution Commands - inspect job execution records"""

import typer
from rich.console import Console

from jobrelay.v1.jobs.types import JobType

from ..client import JobRelayAPIError, JobRelayClient
from ..config_manager import config
from ..formatting import (
    create_execution_panel,
    create_executions_table,
    print_error,
    print_info,
)

console = Console()
app = typer.Typer(name="executions", help="Inspect job execution records")


def _default_limit() -> int:
    return int(config.get("display.default_limit", 20))


@app.command("show")
def show_execution(
    job_id: str = typer.Argument(..., help="Job ID returned at enqueue time"),
):
    """🔎 Show one execution record"""
    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            execution = client.get_execution(job_id)
    except JobRelayAPIError as e:
        print_error(f"Failed to get execution: {e}")
        raise typer.Exit(1) from None

    console.print(create_execution_panel(execution))


@app.command("list")
def list_executions(
    job_type: JobType = typer.Option(..., "--type", "-t", help="Job type"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum results"),
):
    """📋 List recent executions of a job type"""
    limit = limit or _default_limit()
    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            data = client.list_executions(job_type.value, limit)
    except JobRelayAPIError as e:
        print_error(f"Failed to list executions: {e}")
        raise typer.Exit(1) from None

    executions = data.get("executions", [])
    if not executions:
        print_info(f"No executions found for {job_type.value}")
        return

    console.print(create_executions_table(executions, f"{job_type.value} executions"))


@app.command("failed")
def list_failed(
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum results"),
):
    """🚨 List recent failed executions"""
    limit = limit or _default_limit()
    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            data = client.list_failed(limit)
    except JobRelayAPIError as e:
        print_error(f"Failed to list failed executions: {e}")
        raise typer.Exit(1) from None

    executions = data.get("executions", [])
    if not executions:
        print_info("No failed executions")
        return

    console.print(create_executions_table(executions, "Failed executions"))
