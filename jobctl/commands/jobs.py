"""Jobs Commands - Inspect and submit background jobs"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import JobCtlError, JobsClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_job_types_table,
    create_jobs_table,
    create_logs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Job inspection and submission commands")


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
    order_by: str = typer.Option(
        "created_at", "--order-by", help="created_at, scheduled_at or priority"
    ),
    order_dir: str = typer.Option("desc", "--order-dir", help="asc or desc"),
):
    """📋 List jobs"""
    base_url = config.get("api.base_url")
    limit = limit or int(config.get("display.jobs_per_page", 20))

    try:
        with JobsClient(base_url) as client:
            page = client.list_jobs(
                status=status,
                type=type,
                limit=limit,
                offset=offset,
                order_by=order_by,
                order_dir=order_dir,
            )
    except JobCtlError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = page.get("items", [])
    total = page.get("pagination", {}).get("total", len(jobs))

    if not jobs:
        console.print(
            Panel(
                "📭 [yellow]No jobs found![/yellow]\n\n"
                f"Filters applied:\n"
                f"• Status: {status or 'any'}\n"
                f"• Type: {type or 'any'}",
                title="Empty Results",
                border_style="yellow",
            )
        )
        return

    console.print(create_jobs_table(jobs))
    console.print(
        f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs"
    )
    if offset + len(jobs) < total:
        console.print(f"💡 Use [cyan]--offset {offset + len(jobs)}[/cyan] to see more")


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID to show")):
    """🔍 Show details of a job"""
    base_url = config.get("api.base_url")

    try:
        with JobsClient(base_url) as client:
            job = client.get_job(job_id)
    except JobCtlError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))
    if job.get("payload"):
        console.print("\n[bold blue]Payload:[/bold blue]")
        console.print_json(data=job["payload"])
    if job.get("result"):
        console.print("\n[bold green]Result:[/bold green]")
        console.print_json(data=job["result"])


@app.command("logs")
def job_logs(job_id: str = typer.Argument(..., help="Job ID")):
    """📜 Show the execution log of a job"""
    base_url = config.get("api.base_url")

    try:
        with JobsClient(base_url) as client:
            logs = client.get_job_logs(job_id)
    except JobCtlError as e:
        print_error(f"Failed to get job logs: {e}")
        raise typer.Exit(1) from None

    if not logs:
        print_info("No log entries for this job")
        return
    console.print(create_logs_table(logs))


@app.command("enqueue")
def enqueue_job(
    type: str = typer.Argument(..., help="Job type"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON object payload"),
    priority: int | None = typer.Option(None, "--priority", help="Higher runs first"),
    delay: float | None = typer.Option(None, "--delay", help="Seconds before eligible"),
    max_retries: int | None = typer.Option(None, "--max-retries", help="Retry budget"),
    tags: list[str] | None = typer.Option(None, "--tag", help="Label (repeatable)"),
):
    """➕ Submit a new job"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None

    options = {
        key: value
        for key, value in {
            "priority": priority,
            "delay": delay,
            "max_retries": max_retries,
            "tags": tags or None,
        }.items()
        if value is not None
    }

    base_url = config.get("api.base_url")
    try:
        with JobsClient(base_url) as client:
            job = client.enqueue_job(type, payload_data, options)
    except JobCtlError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Enqueued {type} job {job.get('id')}")
    console.print(f"📅 Scheduled at [cyan]{job.get('scheduled_at')}[/cyan]")


@app.command("types")
def list_types():
    """🧩 List job types with a registered handler"""
    base_url = config.get("api.base_url")

    try:
        with JobsClient(base_url) as client:
            types = client.list_job_types()
    except JobCtlError as e:
        print_error(f"Failed to list job types: {e}")
        raise typer.Exit(1) from None

    if not types:
        print_info("No job handlers registered")
        return
    for job_type in types:
        console.print(f"• [magenta]{job_type}[/magenta]")


@app.command("stats")
def show_stats():
    """📊 Show queue statistics"""
    base_url = config.get("api.base_url")

    try:
        with JobsClient(base_url) as client:
            stats = client.get_stats()
    except JobCtlError as e:
        print_error(f"Failed to get stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(stats))
    if stats.get("job_types"):
        console.print(create_job_types_table(stats["job_types"]))
