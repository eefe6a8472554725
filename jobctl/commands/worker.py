"""Worker Commands - Run a worker process against the job store"""

import asyncio
import signal

import typer
from rich.console import Console
from rich.panel import Panel

from jobqueue.config.logging import setup_logging
from jobqueue.config.settings import Settings, get_settings
from jobqueue.infra.database import Database
from jobqueue.v1.core.registries import job_registry
from jobqueue.v1.jobs.liveness import LivenessMonitor
from jobqueue.v1.jobs.queue import QueueCore
from jobqueue.v1.jobs.registry_init import register_job_handlers
from jobqueue.v1.jobs.worker import WorkerRuntime

from ..utils.formatting import print_error, print_success

console = Console()
app = typer.Typer(name="worker", help="Run background job workers")


@app.command("run")
def run_worker(
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", min=1, help="Jobs processed in parallel"
    ),
    job_types: list[str] | None = typer.Option(
        None, "--type", "-t", help="Only claim this job type (repeatable)"
    ),
    init_db: bool = typer.Option(
        False, "--init-db", help="Create tables before starting (embedded use)"
    ),
):
    """👷 Run a worker and liveness monitor until interrupted"""
    settings = get_settings()
    registry = register_job_handlers(job_registry, settings)

    unknown = sorted(set(job_types or []) - registry.list_types())
    if unknown:
        print_error(f"Unknown job types: {', '.join(unknown)}")
        console.print(f"Available types: {', '.join(sorted(registry.list_types()))}")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"👷 [bold cyan]Starting worker[/bold cyan]\n\n"
            f"• Concurrency: [green]{concurrency or settings.job_concurrency}[/green]\n"
            f"• Job types: [magenta]{', '.join(job_types or []) or 'all'}[/magenta]\n"
            f"• Database: [blue]{settings.database_url.split('@')[-1]}[/blue]",
            title="Worker",
            border_style="cyan",
        )
    )

    asyncio.run(_run(settings, concurrency, list(job_types or []), init_db))
    print_success("Worker stopped")


async def _run(
    settings: Settings, concurrency: int | None, job_types: list[str], init_db: bool
) -> None:
    setup_logging(settings, component="worker")
    database = Database(settings)
    if init_db:
        await database.create_all()

    queue = QueueCore.from_database(database, job_registry, settings)
    monitor = LivenessMonitor(queue, settings)
    runtime = WorkerRuntime(
        queue, monitor, settings, concurrency=concurrency, job_types=job_types
    )

    loop = asyncio.get_running_loop()
    stop_tasks: list[asyncio.Task] = []

    def request_stop() -> None:
        if not stop_tasks:
            monitor.stop()
            stop_tasks.append(loop.create_task(runtime.stop()))

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_stop)

    monitor_task = asyncio.create_task(monitor.run())
    try:
        await runtime.start()
        if stop_tasks:
            await stop_tasks[0]
    finally:
        monitor.stop()
        monitor_task.cancel()
        await asyncio.gather(monitor_task, return_exceptions=True)
        await database.close()
