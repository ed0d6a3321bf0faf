"""export command."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from ..config import TrackerConfig
from ..exporters import (
    FORMAT_EXTENSIONS,
    FORMATS,
    ExportError,
    ExportOptions,
    export_to_files,
    filter_by_project,
    filter_by_range,
    filter_by_type,
    parse_range,
    render,
)
from ..models import utc_now
from ..store import SessionStore, resolve_store_path

console = Console()


def export_command(
    format: Optional[str] = typer.Option(
        None, "--format", "-f", help="json, csv, markdown, or all (default: config)"
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file ('-' for stdout; base name for --format all)"
    ),
    range_: str = typer.Option(
        "all", "--range", "-r", help="today, week, month, all, or YYYY-MM-DD[:YYYY-MM-DD]"
    ),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project name"),
    project_type: Optional[str] = typer.Option(
        None, "--type", help="Only this project type (python, node, rust, ...)"
    ),
):
    """Export session records."""
    config = TrackerConfig.load()
    fmt = (format or str(config.get("export.defaultFormat", "json"))).lower()
    if fmt == "md":
        fmt = "markdown"
    if fmt not in FORMATS and fmt != "all":
        console.print(f"[red]Unknown format:[/red] {fmt} (expected {', '.join(FORMATS)} or all)")
        return

    now = utc_now()
    try:
        start, end = parse_range(range_, now)
    except ExportError as e:
        console.print(f"[red]{e}[/red]")
        return

    store = SessionStore(resolve_store_path(config.store_file))
    document = store.load()
    if store.last_error is not None:
        console.print(f"[yellow]Warning:[/yellow] {store.last_error}")

    sessions = filter_by_range(document.sessions, start, end)
    if project:
        sessions = filter_by_project(sessions, project)
    if project_type:
        sessions = filter_by_type(sessions, project_type)

    options = ExportOptions.from_config(config)

    if output == "-":
        if fmt == "all":
            console.print("[red]--format all cannot be written to stdout[/red]")
            return
        typer.echo(render(sessions, fmt, options, now=now))
        return

    default_base = f"claude-sessions-{now:%Y%m%d-%H%M%S}"
    if fmt == "all":
        base = Path(output or default_base)
        written = export_to_files(sessions, base, FORMATS, options, now=now)
        if len(written) < len(FORMATS):
            failed = [f for f in FORMATS if f not in written]
            console.print(f"[red]Export failed for:[/red] {', '.join(failed)}")
        for fmt_name, path in written.items():
            console.print(f"[green]{fmt_name.upper()} exported:[/green] {path}")
        if not written:
            raise typer.Exit(1)
        return

    target = Path(output) if output else Path(default_base + FORMAT_EXTENSIONS[fmt])
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render(sessions, fmt, options, now=now), encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Export failed:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Exported {len(sessions)} session(s):[/green] {target}")
