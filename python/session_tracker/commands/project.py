"""project subcommands: detect / info."""

from __future__ import annotations

import json
import os
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config import TrackerConfig
from ..exporters import filter_by_project, format_duration
from ..project_detector import detect_project
from ..store import SessionStore, resolve_store_path

console = Console()


def _print_project(project: dict) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Name", str(project.get("name")))
    table.add_row("Type", str(project.get("type")))
    table.add_row("Path", str(project.get("path")))
    git = project.get("git")
    if git:
        table.add_row("Branch", str(git.get("branch")))
        table.add_row("Commit", f"{git.get('lastCommit')}  {git.get('lastCommitMessage') or ''}")
        table.add_row("Remote", str(git.get("remoteUrl") or "-"))
        table.add_row("Uncommitted", "yes" if git.get("hasUncommittedChanges") else "no")
    info = project.get("packageInfo")
    if info:
        for key in ("version", "configFile", "module", "remoteUrl"):
            if info.get(key):
                table.add_row(key, str(info[key]))
    console.print(table)


def project_detect_command(
    path: Optional[str] = typer.Argument(None, help="Directory to inspect (default: cwd)"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """Detect project metadata for a directory."""
    target = os.path.abspath(path or os.getcwd())
    if not os.path.isdir(target):
        console.print(f"[red]Not a directory:[/red] {target}")
        return
    project = detect_project(target)
    if as_json:
        typer.echo(json.dumps(project, indent=2))
        return
    _print_project(project)


def project_info_command():
    """Show the current project and its tracked sessions."""
    config = TrackerConfig.load()
    project = detect_project(os.getcwd())
    _print_project(project)

    document = SessionStore(resolve_store_path(config.store_file)).load()
    sessions = filter_by_project(document.sessions, project["name"])
    completed = [s for s in sessions if s.end_time is not None]
    total = sum(s.duration or 0 for s in completed)
    tokens = sum(s.tokens.total for s in sessions)

    console.print()
    console.print(f"[bold]Sessions:[/bold] {len(sessions)} ({len(sessions) - len(completed)} active)")
    console.print(f"[bold]Tracked time:[/bold] {format_duration(total)}")
    if tokens:
        console.print(f"[bold]Tokens:[/bold] {tokens:,}")
