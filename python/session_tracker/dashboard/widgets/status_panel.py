"""Status panel for the active session."""

from __future__ import annotations

from typing import Optional

from textual.widgets import Static

from ...lifecycle import StatusLevel, StatusReport, format_elapsed

LEVEL_MARKUP = {
    StatusLevel.ACTIVE: "[green]ACTIVE[/green]",
    StatusLevel.WARNING: "[yellow]WARNING[/yellow]",
    StatusLevel.CRITICAL: "[bold red]CRITICAL[/bold red]",
    StatusLevel.EXPIRED: "[reverse red] EXPIRED [/reverse red]",
}

BAR_WIDTH = 30


def progress_bar(elapsed_ms: int, duration_ms: int, width: int = BAR_WIDTH) -> str:
    if duration_ms <= 0:
        return "░" * width
    filled = min(width, int(width * elapsed_ms / duration_ms))
    return "█" * filled + "░" * (width - filled)


class StatusPanel(Static):
    """Primary session timer, counters and other active sessions."""

    DEFAULT_CSS = """
    StatusPanel {
        height: auto;
        min-height: 9;
        padding: 1 2;
        border: round $primary;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__("", **kwargs)
        self._report: Optional[StatusReport] = None

    def show_report(self, report: Optional[StatusReport], error: Optional[str] = None) -> None:
        self._report = report
        self.update(self.render_report(report, error))

    @staticmethod
    def render_report(report: Optional[StatusReport], error: Optional[str] = None) -> str:
        lines = []
        if error:
            lines.append(f"[red]Store problem:[/red] {error}")
        if report is None:
            lines.append("[dim]Loading...[/dim]")
            return "\n".join(lines)

        if report.primary is None:
            lines.append("[yellow]No active session[/yellow]")
            lines.append("[dim]Run `claude-session start` or press s to start one.[/dim]")
        else:
            primary = report.primary
            session = primary.session
            mode = session.timer_mode()
            lines.append(
                f"[bold]{mode.label or mode.name}[/bold]  {LEVEL_MARKUP[primary.level]}  "
                f"[dim]{session.id}[/dim]"
            )
            lines.append(
                f"{progress_bar(primary.elapsed_ms, mode.duration)}  "
                f"{format_elapsed(primary.elapsed_ms)} elapsed, "
                f"{format_elapsed(primary.remaining_ms)} left"
            )
            lines.append(f"[dim]Ends at {primary.expires_at.astimezone():%H:%M:%S}[/dim]")
            if session.working_directory:
                lines.append(f"[dim]{session.working_directory}[/dim]")
            if session.tokens.total:
                lines.append(f"Tokens: {session.tokens.total:,}")

        lines.append("")
        lines.append(
            f"Today: {format_elapsed(report.usage_today_ms)}    "
            f"Month: {report.monthly_count}/{report.monthly_limit} sessions"
        )
        if report.others:
            lines.append(f"[dim]{len(report.others)} other active session(s)[/dim]")
        return "\n".join(lines)
