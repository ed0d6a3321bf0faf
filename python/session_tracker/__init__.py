"""Claude Session Tracker: time-boxed work sessions with warnings and exports."""

__version__ = "2.1.0"
