"""auto command: follow Claude Code activity and track sessions automatically."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console

from ..activity_poller import ActivityEvent, ActivityEventKind, ClaudeActivityPoller
from ..claude_status import get_claude_version
from ..config import TrackerConfig
from ..lifecycle import SessionController
from ..logging_config import setup_logger
from .session import build_controller, install_signal_handlers

console = Console()
logger = setup_logger("session_tracker.commands.auto")


def make_event_handler(controller: SessionController, *, auto_start: bool):
    """Route poller events to the controller."""

    def handle(event: ActivityEvent) -> None:
        if event.kind is ActivityEventKind.START:
            if not auto_start:
                console.print(
                    f"[cyan]Claude Code session detected[/cyan] in {event.cwd} "
                    "[dim](auto-start disabled; run `claude-session start`)[/dim]"
                )
                return
            session = controller.on_external_start(event)
            if session is not None:
                console.print(
                    f"[green]Tracking Claude Code session[/green] {event.external_id} "
                    f"[dim]({session.working_directory})[/dim]"
                )
        elif event.kind is ActivityEventKind.UPDATE:
            controller.on_external_update(event)
        elif event.kind is ActivityEventKind.END:
            session = controller.on_external_end(event)
            if session is not None:
                console.print(f"[yellow]Claude Code session ended[/yellow] {event.external_id}")

    return handle


async def _run_auto(config: TrackerConfig, auto_start: bool) -> int:
    claude_version, _ = get_claude_version()
    controller = build_controller(
        config, loop=asyncio.get_running_loop(), arm_timers=True, claude_version=claude_version
    )
    stop = asyncio.Event()
    install_signal_handlers(controller, stop)

    resumed = controller.resume()
    if resumed:
        console.print(f"[dim]Re-armed timers for {len(resumed)} active session(s)[/dim]")

    poller = ClaudeActivityPoller(
        config.claude_projects_dir,
        make_event_handler(controller, auto_start=auto_start),
        interval_ms=config.polling_interval_ms,
        idle_timeout=timedelta(hours=config.idle_timeout_hours),
    )
    console.print(f"[green]Watching Claude Code activity[/green] in {poller.projects_dir}")
    console.print("[dim]Press Ctrl+C to stop.[/dim]")
    poller.start()
    try:
        await stop.wait()
    finally:
        poller.stop()
        controller.shutdown()
    console.print("[dim]Auto-detection stopped[/dim]")
    return 0


def auto_command(
    auto_start: Optional[bool] = typer.Option(
        None,
        "--auto-start/--no-auto-start",
        help="Create a tracked session for every detected Claude Code session (default: config)",
    ),
):
    """Detect Claude Code sessions from their transcripts and track them."""
    config = TrackerConfig.load()
    if auto_start is None:
        auto_start = bool(config.get("sessions.autoStart", False))
    if not config.get("sessions.autoDetect", True):
        console.print("[yellow]Auto-detection is disabled[/yellow] (sessions.autoDetect: false)")
        raise typer.Exit(0)

    logger.info(f"Starting auto-detection (auto_start={auto_start})")
    raise typer.Exit(asyncio.run(_run_auto(config, auto_start)))
