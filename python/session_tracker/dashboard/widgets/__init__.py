"""Dashboard widgets."""

from .sessions_table import SessionsTable
from .status_panel import StatusPanel

__all__ = [
    "SessionsTable",
    "StatusPanel",
]
