"""Recent sessions table."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List

from textual.app import ComposeResult
from textual.widgets import DataTable, Static

from ...lifecycle import format_elapsed
from ...models import Session

MAX_ROWS = 20


def session_row(session: Session, now: datetime) -> tuple:
    if session.end_time is None:
        duration = f"{format_elapsed(session.elapsed_ms(now))} (running)"
    else:
        duration = format_elapsed(session.duration or 0)
    project = (session.project or {}).get("name") or "-"
    source = "auto" if session.external_id else "manual"
    return (
        f"{session.start_time.astimezone():%m-%d %H:%M}",
        session.mode,
        duration,
        project,
        source,
        f"{session.tokens.total:,}" if session.tokens.total else "-",
    )


def recent_sessions(sessions: Iterable[Session], limit: int = MAX_ROWS) -> List[Session]:
    return sorted(sessions, key=lambda s: s.start_time, reverse=True)[:limit]


class SessionsTable(Static):
    """Most recent sessions, newest first."""

    DEFAULT_CSS = """
    SessionsTable {
        height: 1fr;
        padding: 0 1;
    }

    SessionsTable DataTable {
        height: 1fr;
    }
    """

    def compose(self) -> ComposeResult:
        yield DataTable(id="sessions-table", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        table = self.query_one("#sessions-table", DataTable)
        table.add_columns("Started", "Mode", "Duration", "Project", "Source", "Tokens")

    def show_sessions(self, sessions: Iterable[Session], now: datetime) -> None:
        table = self.query_one("#sessions-table", DataTable)
        table.clear()
        for session in recent_sessions(sessions):
            table.add_row(*session_row(session, now), key=session.id)
