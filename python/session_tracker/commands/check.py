"""check command: diagnose the Claude Code install and the tracker's own files."""

from __future__ import annotations

from rich.console import Console

from ..claude_status import check_claude_code
from ..config import TrackerConfig
from ..logging_config import get_primary_log_path
from ..store import SessionStore, resolve_store_path

console = Console()


def _mark(ok: bool) -> str:
    return "[green]yes[/green]" if ok else "[red]no[/red]"


def check_command():
    """Diagnostic check of Claude Code and the session tracker."""
    status = check_claude_code()

    console.print("[bold]Claude Code[/bold]")
    console.print(f"  Config directory: {status.config_dir}")
    console.print(f"  Config exists: {_mark(status.config_exists)}")
    console.print(f"  Authentication files: {_mark(status.has_auth_files)}")
    console.print(f"  CLI accessible: {_mark(status.cli_available)}")
    if status.version:
        console.print(f"  Version: {status.version}")
    if status.error:
        console.print(f"  [red]Error:[/red] {status.error}")
    if status.config_files:
        console.print(f"  [dim]Config files: {', '.join(status.config_files)}[/dim]")

    config = TrackerConfig.load()
    console.print("\n[bold]Session tracker[/bold]")
    console.print(f"  Config file: {config.path} ({'present' if config.path.exists() else 'defaults'})")
    errors = config.validate()
    for error in errors:
        console.print(f"  [yellow]Config issue:[/yellow] {error}")

    store = SessionStore(resolve_store_path(config.store_file))
    document = store.load()
    console.print(f"  Store file: {store.path} ({'present' if store.exists() else 'not created yet'})")
    if store.last_error is not None:
        console.print(f"  [red]Store problem:[/red] {store.last_error}")
    else:
        console.print(
            f"  Sessions: {len(document.sessions)} ({len(document.active_sessions())} active), "
            f"schema v{document.version}"
        )
    console.print(f"  Log file: {get_primary_log_path()}")
    console.print(f"  Projects directory: {config.claude_projects_dir} "
                  f"({'present' if config.claude_projects_dir.is_dir() else 'missing'})")
