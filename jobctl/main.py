"""jobctl - command line front end for the HAOS Jobs queue"""

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .client.endpoints import JobCtlError, JobsClient
from .commands import config, jobs, worker, workers
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info, print_warning

console = Console()

app = typer.Typer(
    name="jobctl",
    help="⚙️ HAOS Jobs - background job queue CLI",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(workers.app, name="workers")
app.add_typer(worker.app, name="worker")
app.add_typer(config.app, name="config")


def _health_table(health: dict, base_url: str) -> Table:
    store = health.get("database") or {}
    queue = health.get("worker") or {}

    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()
    table.add_row("API", f"[blue]{base_url}[/blue]")
    table.add_row("Version", f"[cyan]{health.get('version', 'unknown')}[/cyan]")
    table.add_row("Environment", str(health.get("environment", "unknown")))
    table.add_row(
        "Job store",
        "[green]up[/green]" if store.get("connected") else "[red]down[/red]",
    )
    table.add_row("Active workers", str(queue.get("active_workers", 0)))
    table.add_row("Pending jobs", str(queue.get("queue_depth", 0)))
    table.add_row("Running jobs", str(queue.get("running_jobs", 0)))
    return table


@app.command()
def status():
    """📊 Check admin API connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobsClient(base_url) as client:
            health = client.health_check()
    except JobCtlError as e:
        print_error(str(e))
        console.print(
            Panel(
                "🚫 [red]Connection Failed[/red]\n\n"
                f"No admin API answered at [blue]{base_url}[/blue].\n"
                "Point the CLI elsewhere with "
                "[cyan]jobctl config set api.base_url <url>[/cyan]",
                border_style="red",
                box=box.ROUNDED,
            )
        )
        raise typer.Exit(1) from None

    console.print("🚀 [green]Connected Successfully![/green]")
    console.print(_health_table(health, base_url))
    if not health.get("ok"):
        print_warning("The admin API is up but cannot reach its job store")


@app.command()
def version():
    """📎 Show CLI version information"""
    console.print(f"jobctl [green]{__version__}[/green]")


def _version_callback(value: bool | None):
    if value:
        console.print(f"HAOS Jobs CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """
    ⚙️ HAOS Jobs CLI

    Inspect the job queue, submit jobs and run workers.
    """


if __name__ == "__main__":
    app()
