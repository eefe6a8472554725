"""Workers Commands - Worker registry inspection and cleanup"""

import typer
from rich.console import Console

from ..client.endpoints import JobCtlError, JobsClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_workers_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="workers", help="Worker registry commands")


@app.command("list")
def list_workers(
    status: str | None = typer.Option(
        None, "--status", "-s", help="Filter by status (active or dead)"
    ),
):
    """👷 List registered workers"""
    base_url = config.get("api.base_url")

    try:
        with JobsClient(base_url) as client:
            workers = client.list_workers(status)
    except JobCtlError as e:
        print_error(f"Failed to list workers: {e}")
        raise typer.Exit(1) from None

    if not workers:
        print_info("No workers registered")
        return
    console.print(create_workers_table(workers))


@app.command("cleanup")
def cleanup_workers(
    timeout_minutes: float | None = typer.Option(
        None, "--timeout-minutes", "-t", help="Heartbeat age after which a worker is dead"
    ),
):
    """🧹 Declare silent workers dead and reclaim their jobs"""
    if timeout_minutes is not None and timeout_minutes <= 0:
        print_error("Timeout must be positive")
        raise typer.Exit(1)

    base_url = config.get("api.base_url")
    try:
        with JobsClient(base_url) as client:
            result = client.cleanup_workers(timeout_minutes)
    except JobCtlError as e:
        print_error(f"Failed to clean up workers: {e}")
        raise typer.Exit(1) from None

    reclaimed = result.get("reclaimed_jobs", 0)
    if reclaimed:
        print_warning(f"Reclaimed {reclaimed} jobs from dead workers")
    else:
        print_success("No jobs needed reclaiming")
