"""start / end / status commands."""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime
from functools import partial
from typing import Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..claude_status import get_claude_version
from ..config import TrackerConfig
from ..lifecycle import (
    Outcome,
    SessionController,
    StatusLevel,
    StatusReport,
    default_scheduler_factory,
    format_elapsed,
)
from ..models import utc_now
from ..notifications import build_notifier
from ..project_detector import detect_project
from ..store import SessionStore, StoreWriteError, resolve_store_path
from ..timer_modes import TimerModeRegistry, ValidationError

console = Console()

LEVEL_STYLES = {
    StatusLevel.ACTIVE: ("green", "ACTIVE"),
    StatusLevel.WARNING: ("yellow", "WARNING"),
    StatusLevel.CRITICAL: ("red", "CRITICAL"),
    StatusLevel.EXPIRED: ("bold red", "EXPIRED"),
}


def build_controller(
    config: TrackerConfig,
    *,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    arm_timers: bool = False,
    clock: Callable[[], datetime] = utc_now,
    claude_version: Optional[str] = None,
) -> SessionController:
    """Controller wired from config; timers are armed only when a loop will keep running."""
    store = SessionStore(resolve_store_path(config.store_file), clock=clock)
    return SessionController(
        store,
        TimerModeRegistry.from_config(config),
        notifier=build_notifier(config, console),
        scheduler_factory=default_scheduler_factory(loop, clock) if arm_timers else None,
        clock=clock,
        project_detector=(
            partial(detect_project, include_git=bool(config.get("project.detectFromGit", True)))
            if config.get("project.autoDetect", True)
            else None
        ),
        claude_version=claude_version,
        monthly_limit=int(config.get("sessions.monthlyLimit", 50)),
        monthly_warning_at=int(config.get("sessions.monthlyWarningAt", 45)),
    )


def _report_store_error(controller: SessionController) -> None:
    error = controller.store.last_error
    if error is not None:
        console.print(f"[yellow]Warning:[/yellow] {error}")
        console.print("[dim]The file will be backed up before it is overwritten.[/dim]")


def install_signal_handlers(controller: SessionController, stop: asyncio.Event) -> None:
    """SIGINT/SIGTERM: disarm every timer immediately, then let the loop finish."""
    loop = asyncio.get_running_loop()

    def _stop(signum, frame):
        controller.shutdown()
        loop.call_soon_threadsafe(stop.set)

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)


async def wait_for_timers(controller: SessionController, stop: asyncio.Event) -> None:
    """Block until no timer is pending or `stop` is set."""
    while not stop.is_set():
        if not any(s.pending for s in controller.schedulers.values()):
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            pass


def _print_started(result) -> None:
    session = result.session
    mode = session.timer_mode()
    console.print(f"[green]Session tracking started[/green] ({mode.label or mode.name})")
    console.print(f"  [dim]Session ID:[/dim] {session.id}")
    console.print(f"  [dim]Start time:[/dim] {session.start_time.astimezone():%Y-%m-%d %H:%M:%S}")
    console.print(f"  [dim]Expires at:[/dim] {session.expires_at().astimezone():%Y-%m-%d %H:%M:%S}")
    console.print(f"  [dim]Working directory:[/dim] {session.working_directory}")
    if session.project:
        console.print(
            f"  [dim]Project:[/dim] {session.project.get('name')} ({session.project.get('type')})"
        )
    if session.tags:
        console.print(f"  [dim]Tags:[/dim] {', '.join(session.tags)}")
    console.print(f"  [dim]Monthly sessions:[/dim] {result.monthly_count}/{result.monthly_limit}")
    if mode.warnings:
        console.print(f"  [dim]Warnings:[/dim] {', '.join(mode.warning_labels)} before expiry")
    if result.monthly_limit_warning:
        console.print(
            f"[red]Approaching monthly session limit:[/red] "
            f"{result.monthly_count}/{result.monthly_limit}"
        )


async def _start_and_wait(config: TrackerConfig, mode, duration, tags, claude_version) -> int:
    controller = build_controller(
        config, loop=asyncio.get_running_loop(), arm_timers=True, claude_version=claude_version
    )
    stop = asyncio.Event()
    install_signal_handlers(controller, stop)

    result = controller.start(mode, duration, tags)
    _report_store_error(controller)
    if result.outcome is Outcome.RESUMED:
        console.print("[yellow]Active session already exists.[/yellow]")
        console.print(f"  [dim]Elapsed:[/dim] {format_elapsed(result.elapsed_ms)}")
    else:
        _print_started(result)

    if result.scheduled:
        console.print("[dim]Waiting for warnings (Ctrl+C to stop the timer).[/dim]")
        await wait_for_timers(controller, stop)
    controller.shutdown()
    return 0


def start_command(
    mode: Optional[str] = typer.Option(
        None, "--mode", "-m", help="Timer mode (claude-max, pomodoro, deep-work, quick-fix, custom)"
    ),
    duration: Optional[float] = typer.Option(
        None, "--duration", "-d", help="Duration in minutes (custom mode only)"
    ),
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Comma-separated tags"),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Stay running to deliver warnings"
    ),
):
    """Start tracking a session (or resume the active one)."""
    config = TrackerConfig.load()
    if duration is not None and mode is None:
        mode = "custom"
    tag_list = config.custom_tags + [t for t in (tags or "").split(",") if t.strip()]
    claude_version, claude_error = get_claude_version()
    if claude_version is None:
        console.print("[yellow]Warning:[/yellow] Claude Code may not be authenticated.")
        console.print(f"  [dim]Claude Code status:[/dim] {claude_error or 'not available'}")
        console.print("  [dim]Run `claude` to log in, then start a new session.[/dim]")

    try:
        if wait:
            code = asyncio.run(_start_and_wait(config, mode, duration, tag_list, claude_version))
            raise typer.Exit(code)

        controller = build_controller(config, claude_version=claude_version)
        result = controller.start(mode, duration, tag_list)
        _report_store_error(controller)
    except ValidationError as e:
        console.print(f"[red]Invalid timer settings:[/red] {e}")
        return
    except StoreWriteError as e:
        console.print(f"[red]Could not save session:[/red] {e}")
        raise typer.Exit(1)

    if result.outcome is Outcome.RESUMED:
        console.print("[yellow]Active session already exists.[/yellow]")
        console.print(f"  [dim]Session:[/dim] {result.session.id}")
        console.print(f"  [dim]Elapsed:[/dim] {format_elapsed(result.elapsed_ms)}")
        return
    _print_started(result)
    console.print("[dim]Timers are not running (--no-wait); check with `claude-session status`.[/dim]")


def end_command(
    session_id: Optional[str] = typer.Argument(None, help="Session to end (default: the active one)"),
):
    """End the active session."""
    config = TrackerConfig.load()
    controller = build_controller(config)
    try:
        result = controller.end(session_id)
    except StoreWriteError as e:
        console.print(f"[red]Could not save session:[/red] {e}")
        raise typer.Exit(1)
    _report_store_error(controller)

    if result.outcome is Outcome.NO_ACTIVE_SESSION:
        console.print("[yellow]No active session found[/yellow]")
        return

    console.print("[green]Session ended[/green]")
    console.print(f"  [dim]Duration:[/dim] {format_elapsed(result.duration_ms)}")
    console.print(f"  [dim]Total usage today:[/dim] {format_elapsed(result.total_usage_ms)}")
    console.print(f"  [dim]Monthly sessions:[/dim] {result.monthly_count}/{controller.monthly_limit}")


def render_status(report: StatusReport) -> None:
    if not report.has_active:
        console.print("[yellow]No active session[/yellow]")
        console.print(f"  [dim]Total usage today:[/dim] {format_elapsed(report.total_usage_ms)}")
        console.print(f"  [dim]Monthly sessions:[/dim] {report.monthly_count}/{report.monthly_limit}")
        return

    primary = report.primary
    session = primary.session
    style, label = LEVEL_STYLES[primary.level]
    mode = session.timer_mode()

    table = Table(title="Session Status", show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Session", session.id)
    table.add_row("Mode", mode.label or mode.name)
    table.add_row("Started", f"{session.start_time.astimezone():%Y-%m-%d %H:%M:%S}")
    table.add_row("Elapsed", format_elapsed(primary.elapsed_ms))
    table.add_row("Remaining", format_elapsed(primary.remaining_ms))
    table.add_row("Total today", format_elapsed(report.usage_today_ms))
    table.add_row("Monthly sessions", f"{report.monthly_count}/{report.monthly_limit}")
    table.add_row("Working dir", session.working_directory or "Unknown")
    if session.external_id:
        table.add_row("Claude session", session.external_id)
    if session.tokens.total:
        table.add_row("Tokens", f"{session.tokens.total:,}")
    table.add_row("Status", f"[{style}]{label}[/{style}]")
    console.print(table)

    if report.others:
        console.print(f"[dim]Other active sessions: {len(report.others)}[/dim]")
        for other in report.others:
            o_style, o_label = LEVEL_STYLES[other.level]
            console.print(
                f"  {other.session.id}  {format_elapsed(other.elapsed_ms)} elapsed  "
                f"[{o_style}]{o_label}[/{o_style}]"
            )


def status_command():
    """Show the active session and usage counters."""
    config = TrackerConfig.load()
    controller = build_controller(config)
    report = controller.status()
    _report_store_error(controller)
    render_status(report)
