"""Session Tracker Dashboard - Main Application."""

from __future__ import annotations

import traceback
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import Footer, Header

from ..config import TrackerConfig
from ..lifecycle import Outcome, SessionController
from ..logging_config import setup_logger
from ..store import StoreWriteError
from .widgets import SessionsTable, StatusPanel

logger = setup_logger("session_tracker.dashboard")

REFRESH_INTERVAL_SECONDS = 1.0


class SessionDashboard(App):
    """Live view of the active session and recent history."""

    TITLE = "Claude Session Tracker"
    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("s", "start_session", "Start"),
        Binding("e", "end_session", "End"),
        Binding("r", "refresh", "Refresh"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, controller: SessionController, config: Optional[TrackerConfig] = None):
        super().__init__()
        self.controller = controller
        self.config = config or TrackerConfig.load()
        self._refresh_timer = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Vertical():
            yield StatusPanel(id="status-panel")
            yield SessionsTable(id="sessions")
        yield Footer()

    def on_mount(self) -> None:
        logger.info("Dashboard mounted")
        self.refresh_data()
        if self._refresh_timer is None:
            self._refresh_timer = self.set_interval(REFRESH_INTERVAL_SECONDS, self.refresh_data)

    def refresh_data(self) -> None:
        try:
            report = self.controller.status()
            document = self.controller.store.load()
        except Exception as e:
            logger.error(f"Dashboard refresh failed: {e}\n{traceback.format_exc()}")
            self.notify(f"Refresh failed: {e}", severity="error")
            return
        error = self.controller.store.last_error
        self.query_one(StatusPanel).show_report(report, str(error) if error else None)
        self.query_one(SessionsTable).show_sessions(document.sessions, report.now)

    def action_refresh(self) -> None:
        self.refresh_data()

    def action_start_session(self) -> None:
        try:
            result = self.controller.start()
        except StoreWriteError as e:
            self.notify(f"Could not save: {e}", severity="error")
            return
        if result.outcome is Outcome.RESUMED:
            self.notify("Active session already exists.")
        else:
            self.notify(f"Started {result.session.mode} session")
        self.refresh_data()

    def action_end_session(self) -> None:
        try:
            result = self.controller.end()
        except StoreWriteError as e:
            self.notify(f"Could not save: {e}", severity="error")
            return
        if result.outcome is Outcome.NO_ACTIVE_SESSION:
            self.notify("No active session found", severity="warning")
        else:
            self.notify("Session ended")
        self.refresh_data()
