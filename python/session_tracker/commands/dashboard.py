"""dashboard command."""

from __future__ import annotations

import os

from ..config import TrackerConfig
from ..logging_config import setup_logger
from .session import build_controller

logger = setup_logger("session_tracker.commands.dashboard")


def dashboard_command():
    """Open the live session dashboard."""
    from ..dashboard.app import SessionDashboard

    config = TrackerConfig.load()
    # Timers are not armed here; `start --wait` and `auto` own notifications.
    controller = build_controller(config)
    logger.info(f"Opening dashboard (cwd={os.getcwd()})")
    SessionDashboard(controller, config).run()
