"""Claude Code installation checks used by `start` and `check`."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .logging_config import setup_logger

logger = setup_logger("session_tracker.claude_status")

AUTH_MARKERS = ("auth", "session", "token")


def get_claude_config_dir() -> Path:
    return Path.home() / ".claude"


@dataclass
class ClaudeStatus:
    cli_available: bool
    version: Optional[str] = None
    error: Optional[str] = None
    config_dir: Path = field(default_factory=get_claude_config_dir)
    config_exists: bool = False
    has_auth_files: bool = False
    config_files: List[str] = field(default_factory=list)

    @property
    def authenticated(self) -> bool:
        return self.cli_available and self.has_auth_files


def get_claude_version(timeout: float = 5) -> tuple[Optional[str], Optional[str]]:
    """(version, error) from `claude --version`."""
    try:
        result = subprocess.run(
            ["claude", "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        return None, "claude CLI not found on PATH"
    except (OSError, subprocess.SubprocessError) as e:
        return None, str(e)
    if result.returncode != 0:
        return None, (result.stderr or "").strip() or f"exit code {result.returncode}"
    return (result.stdout or "").strip() or None, None


def check_claude_code(config_dir: Optional[Path] = None) -> ClaudeStatus:
    config_dir = config_dir or get_claude_config_dir()
    version, error = get_claude_version()
    status = ClaudeStatus(
        cli_available=version is not None,
        version=version,
        error=error,
        config_dir=config_dir,
        config_exists=config_dir.is_dir(),
    )
    if status.config_exists:
        try:
            status.config_files = sorted(p.name for p in config_dir.iterdir())
        except OSError as e:
            logger.debug(f"Cannot list {config_dir}: {e}")
        status.has_auth_files = any(
            name == "settings.json" or any(marker in name for marker in AUTH_MARKERS)
            for name in status.config_files
        )
    return status
