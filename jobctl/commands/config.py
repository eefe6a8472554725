"""jobctl config - local CLI settings (API URL, timeouts, page size)"""

from collections.abc import Callable
from typing import Any

import typer
from rich import box
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


def _url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("must start with http:// or https://")
    return value.rstrip("/")


def _positive_int(value: str) -> int:
    if not value.isdigit() or int(value) == 0:
        raise ValueError("must be a positive whole number")
    return int(value)


# Keys with a known shape are parsed before saving; anything else is kept as text
PARSERS: dict[str, Callable[[str], Any]] = {
    "api.base_url": _url,
    "api.timeout": _positive_int,
    "display.jobs_per_page": _positive_int,
}


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    rows: list[tuple[str, Any]] = []
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            rows.extend(_flatten(value, dotted))
        else:
            rows.append((dotted, value))
    return rows


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Dotted key, e.g. 'api.base_url'"),
    value: str = typer.Argument(..., help="New value"),
):
    """⚙️ Set a configuration value"""
    parse = PARSERS.get(key, str)
    try:
        parsed = parse(value)
    except ValueError as e:
        print_error(f"{key} {e}")
        raise typer.Exit(1) from None

    try:
        config.set(key, parsed)
    except OSError as e:
        print_error(f"Could not write {config.config_file}: {e}")
        raise typer.Exit(1) from None

    print_success(f"{key} = {parsed}")
    if key == "api.base_url":
        print_info("Check the new address with: jobctl status")


@app.command("get")
def get_config(key: str = typer.Argument(..., help="Dotted key")):
    """🔎 Print one configuration value"""
    value = config.get(key)
    if value is None:
        print_error(f"{key} is not set")
        raise typer.Exit(1)
    console.print(value)


@app.command("show")
def show_config():
    """📊 Show every configuration value"""
    table = Table(
        title="jobctl configuration",
        caption=str(config.config_file),
        box=box.SIMPLE,
    )
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="yellow", no_wrap=True)
    for key, value in _flatten(config.load_config()):
        table.add_row(key, str(value))
    console.print(table)


@app.command("reset")
def reset_config(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🔄 Restore the default configuration"""
    if not yes and not Confirm.ask("⚠️ Overwrite all settings with the defaults?"):
        console.print("Nothing changed.")
        return

    try:
        config.reset()
    except OSError as e:
        print_error(f"Could not write {config.config_file}: {e}")
        raise typer.Exit(1) from None

    print_success("Configuration reset to defaults")
