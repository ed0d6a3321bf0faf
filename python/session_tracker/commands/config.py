"""config subcommands: list / get / set / reset / modes."""

from __future__ import annotations

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ..config import TrackerConfig, parse_value
from ..timer_modes import TimerModeRegistry, ValidationError

console = Console()


def config_list_command():
    """Show the effective configuration."""
    config = TrackerConfig.load()
    console.print(f"[dim]# {config.path}[/dim]")
    text = yaml.safe_dump(config.data, default_flow_style=False, sort_keys=False)
    console.print(text.rstrip(), markup=False)


def config_get_command(key: str = typer.Argument(..., help="Dotted key, e.g. sessions.pollingInterval")):
    """Print one configuration value."""
    config = TrackerConfig.load()
    sentinel = object()
    value = config.get(key, sentinel)
    if value is sentinel:
        console.print(f"[red]Unknown key:[/red] {key}")
        return
    if isinstance(value, (dict, list)):
        text = yaml.safe_dump(value, default_flow_style=False, sort_keys=False)
        console.print(text.rstrip(), markup=False)
    else:
        console.print(str(value), markup=False)


def config_set_command(
    key: str = typer.Argument(..., help="Dotted key"),
    value: str = typer.Argument(..., help="Value (parsed as YAML: 30, true, [1, 2])"),
):
    """Set a configuration value and save it."""
    config = TrackerConfig.load()
    try:
        config.set(key, parse_value(value))
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        return
    errors = config.validate()
    if errors:
        console.print("[red]Configuration not saved:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        return
    try:
        path = config.save()
    except OSError as e:
        console.print(f"[red]Failed to save config:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Set[/green] {key} = {config.get(key)!r} [dim]({path})[/dim]")


def config_reset_command(
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
):
    """Restore the default configuration."""
    if not yes and not typer.confirm("Reset configuration to defaults?"):
        raise typer.Exit(0)
    config = TrackerConfig.load()
    config.reset()
    try:
        path = config.save()
    except OSError as e:
        console.print(f"[red]Failed to save config:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Configuration reset[/green] [dim]({path})[/dim]")


def config_modes_command():
    """List the available timer modes."""
    registry = TimerModeRegistry.from_config(TrackerConfig.load())
    table = Table(title="Timer Modes")
    table.add_column("Mode", style="cyan")
    table.add_column("Duration")
    table.add_column("Warnings")
    table.add_column("Auto-end")
    table.add_column("Description", style="dim")
    for name, mode in registry.items():
        table.add_row(
            name,
            f"{mode.duration // 60000}m",
            ", ".join(mode.warning_labels) or "-",
            "yes" if mode.auto_end else "no",
            mode.description,
        )
    console.print(table)
