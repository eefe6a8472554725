"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "running": "blue",
    "completed": "green",
    "failed": "red",
    "active": "green",
    "dead": "red",
}

LEVEL_STYLES = {"debug": "dim", "info": "blue", "warn": "yellow", "error": "red"}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def styled_status(status: str | None) -> str:
    style = STATUS_STYLES.get(status or "", "white")
    return f"[{style}]{status or '—'}[/{style}]"


def short_time(value: str | None) -> str:
    """Trim an ISO timestamp to seconds for table display"""
    if not value:
        return "—"
    return value.replace("T", " ")[:19]


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a jobs page"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Priority", justify="right", style="yellow")
    table.add_column("Attempts", justify="center")
    table.add_column("Scheduled", justify="left", style="white")
    table.add_column("Worker", justify="left", style="dim")

    for job in jobs:
        table.add_row(
            str(job.get("id", ""))[:8],  # Short ID
            job.get("type", ""),
            styled_status(job.get("status")),
            str(job.get("priority", 0)),
            f"{job.get('attempts', 0)}/{job.get('max_retries', 0) + 1}",
            short_time(job.get("scheduled_at")),
            job.get("claimed_by") or "—",
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Detailed view of a single job"""
    lines = [
        f"🆔 [bold]ID:[/bold] [cyan]{job.get('id')}[/cyan]",
        f"📝 [bold]Type:[/bold] [magenta]{job.get('type')}[/magenta]",
        f"📊 [bold]Status:[/bold] {styled_status(job.get('status'))}",
        f"⚡ [bold]Priority:[/bold] [yellow]{job.get('priority')}[/yellow]",
        f"🔁 [bold]Attempts:[/bold] {job.get('attempts')} "
        f"(max retries {job.get('max_retries')})",
        f"📅 [bold]Scheduled:[/bold] {short_time(job.get('scheduled_at'))}",
        f"▶️ [bold]Started:[/bold] {short_time(job.get('started_at'))}",
        f"🏁 [bold]Completed:[/bold] {short_time(job.get('completed_at'))}",
        f"👷 [bold]Worker:[/bold] {job.get('claimed_by') or '—'}",
    ]
    if job.get("tags"):
        lines.append(f"🏷️ [bold]Tags:[/bold] [green]{', '.join(job['tags'])}[/green]")
    if job.get("last_error"):
        lines.append(f"❌ [bold]Last error:[/bold] [red]{job['last_error']}[/red]")

    return Panel("\n".join(lines), title="Job", border_style="blue")


def create_logs_table(logs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job's execution log"""
    table = Table(title="Job Logs", box=box.ROUNDED)

    table.add_column("Time", justify="left", style="white", no_wrap=True)
    table.add_column("Level", justify="center")
    table.add_column("Message", justify="left")

    for log in logs:
        level = log.get("level", "info")
        style = LEVEL_STYLES.get(level, "white")
        table.add_row(
            short_time(log.get("created_at")),
            f"[{style}]{level.upper()}[/{style}]",
            log.get("message", ""),
        )

    return table


def create_workers_table(workers: list[dict[str, Any]]) -> Table:
    """Create a formatted table for registered workers"""
    table = Table(title="Workers", box=box.ROUNDED)

    table.add_column("Worker", justify="left", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Last heartbeat", justify="left")
    table.add_column("Processed", justify="right")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")

    for worker in workers:
        table.add_row(
            worker.get("id", ""),
            styled_status(worker.get("status")),
            short_time(worker.get("last_heartbeat")),
            str(worker.get("jobs_processed", 0)),
            str(worker.get("jobs_succeeded", 0)),
            str(worker.get("jobs_failed", 0)),
        )

    return table


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Summarize queue depth, workers and throughput"""
    queue = stats.get("queue", {})
    workers = stats.get("workers", {})
    performance = stats.get("performance", {})

    content = (
        f"[bold]Queue[/bold]\n"
        f"• Pending: [yellow]{queue.get('pending', 0)}[/yellow]\n"
        f"• Running: [blue]{queue.get('running', 0)}[/blue]\n"
        f"• Completed: [green]{queue.get('completed', 0)}[/green]\n"
        f"• Failed: [red]{queue.get('failed', 0)}[/red]\n"
        f"• Total: [cyan]{queue.get('total', 0)}[/cyan]\n\n"
        f"[bold]Workers[/bold]\n"
        f"• Active: [green]{workers.get('active', 0)}[/green]\n"
        f"• Processed: {workers.get('total_processed', 0)} "
        f"([green]{workers.get('total_succeeded', 0)}[/green] ok, "
        f"[red]{workers.get('total_failed', 0)}[/red] failed)\n\n"
        f"[bold]Performance[/bold]\n"
        f"• Avg processing time: "
        f"[cyan]{performance.get('avg_processing_time_seconds', 0.0)}s[/cyan]"
    )
    if stats.get("errors"):
        content += (
            f"\n\n[yellow]⚠ Unavailable sections: {', '.join(stats['errors'])}[/yellow]"
        )

    return Panel(content, title="Queue Statistics", border_style="cyan")


def create_job_types_table(job_types: list[dict[str, Any]]) -> Table:
    table = Table(title="Jobs by Type", box=box.ROUNDED)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Count", justify="right", style="cyan")
    for entry in job_types:
        table.add_row(entry.get("type", ""), str(entry.get("count", 0)))
    return table
