"""
Session Tracker Logging Configuration

Provides centralized logging setup for the session tracker.
Supports file rotation and environment variable configuration.
"""

import logging
import os
import sys
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


_LOG_DIR_CACHE: tuple[str | None, Path] | None = None
_FILE_HANDLER: Optional[RotatingFileHandler] = None
_TRACKER_LOGGERS: set[str] = set()
PRIMARY_LOG_FILENAME = "tracker.log"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_FORMATTER = logging.Formatter(
    fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
)


def get_log_level() -> int:
    """
    Get log level from environment variable or default to INFO.

    Environment variable: SESSION_TRACKER_LOG_LEVEL
    Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL

    Returns:
        int: Logging level constant from logging module
    """
    level_name = os.getenv("SESSION_TRACKER_LOG_LEVEL", "INFO").upper()
    return LEVELS.get(level_name, logging.INFO)


def get_log_directory() -> Path:
    """
    Get the log directory path.

    Default: ~/.claude-session-tracker/.logs/
    Can be overridden with SESSION_TRACKER_LOG_DIR environment variable.

    Returns:
        Path: Log directory path
    """
    global _LOG_DIR_CACHE

    log_dir_str = os.getenv("SESSION_TRACKER_LOG_DIR")
    if _LOG_DIR_CACHE is not None and _LOG_DIR_CACHE[0] == log_dir_str:
        return _LOG_DIR_CACHE[1]

    candidates: list[Path] = []
    if log_dir_str:
        candidates.append(Path(log_dir_str).expanduser())
    else:
        candidates.append(Path.home() / ".claude-session-tracker" / ".logs")

    # Fallback for restricted environments (e.g., sandboxed runners).
    candidates.append(Path(tempfile.gettempdir()) / "claude-session-tracker-logs")

    def can_write_files(directory: Path) -> bool:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            probe = directory / f".write_probe_{os.getpid()}_{os.urandom(4).hex()}"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink(missing_ok=True)
            return True
        except OSError:
            return False

    for candidate in candidates:
        if can_write_files(candidate):
            _LOG_DIR_CACHE = (log_dir_str, candidate)
            return candidate

    # Nothing writable; the logger falls back to stderr-only.
    chosen = candidates[0]
    _LOG_DIR_CACHE = (log_dir_str, chosen)
    return chosen


def get_primary_log_path() -> Path:
    """Get canonical log file path (~/.claude-session-tracker/.logs/tracker.log by default)."""
    return get_log_directory() / PRIMARY_LOG_FILENAME


def _get_file_handler(max_bytes: int, backup_count: int) -> Optional[logging.Handler]:
    """One rotating handler shared by every tracker logger, so rollover happens once."""
    global _FILE_HANDLER
    path = get_primary_log_path()
    if _FILE_HANDLER is not None and Path(_FILE_HANDLER.baseFilename) == path.absolute():
        return _FILE_HANDLER
    try:
        handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # If file logging fails, fall back to stderr only
        print(f"Warning: Failed to set up file logging: {e}", file=sys.stderr)
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_FORMATTER)
    _FILE_HANDLER = handler
    return handler


def setup_logger(
    name: str,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 2,
    console_output: bool = False,
) -> logging.Logger:
    """
    Set up a logger writing to the shared tracker.log, with optional console output.

    Args:
        name: Logger name (e.g., 'session_tracker.store')
        max_bytes: Maximum size of tracker.log before rotation (default: 5MB)
        backup_count: Number of rotated files to keep
        console_output: Whether to also output to console/stderr (default: False)

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logger('session_tracker.scheduler')
        >>> logger.info("Scheduler armed")
    """
    logger = logging.getLogger(name)
    _TRACKER_LOGGERS.add(name)

    if logger.handlers:
        # Keep logger level in sync with env var, but avoid duplicating handlers.
        logger.setLevel(get_log_level())
        return logger

    logger.setLevel(get_log_level())
    logger.propagate = False

    file_handler = _get_file_handler(max_bytes, backup_count)
    if file_handler is not None:
        logger.addHandler(file_handler)

    if console_output or not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(get_log_level() if console_output else logging.WARNING)
        console_handler.setFormatter(_FORMATTER)
        logger.addHandler(console_handler)

    return logger


def set_log_level(level_name: Optional[str]) -> None:
    """Apply a configured level to every tracker logger.

    SESSION_TRACKER_LOG_LEVEL, when set, wins over the configured value.
    """
    if os.getenv("SESSION_TRACKER_LOG_LEVEL") or not level_name:
        return
    level = LEVELS.get(str(level_name).upper())
    if level is None:
        return
    for name in _TRACKER_LOGGERS:
        logging.getLogger(name).setLevel(level)
