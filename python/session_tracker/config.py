"""User configuration (~/.claude-session-tracker/config.yaml)."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .logging_config import LEVELS, setup_logger
from .timer_modes import DEFAULT_TIMER_MODES, ValidationError, validate_mode_values

logger = setup_logger("session_tracker.config")

CONFIG_FILENAME = "config.yaml"


def get_config_dir() -> Path:
    """Tracker home directory; SESSION_TRACKER_HOME overrides the default."""
    override = os.getenv("SESSION_TRACKER_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".claude-session-tracker"


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILENAME


def get_defaults() -> Dict[str, Any]:
    return {
        "sessions": {
            "autoDetect": True,
            "autoStart": False,
            "pollingInterval": 2000,
            "idleTimeoutHours": 6,
            "storeFile": ".claude-sessions.json",
            "claudeProjectsDir": "~/.claude/projects",
            "monthlyLimit": 50,
            "monthlyWarningAt": 45,
        },
        "timerModes": copy.deepcopy(DEFAULT_TIMER_MODES),
        "notifications": {
            "enabled": True,
            "desktop": True,
            "console": True,
        },
        "project": {
            "autoDetect": True,
            "detectFromGit": True,
            "customTags": [],
        },
        "export": {
            "defaultFormat": "json",
            "includeTokens": True,
            "includeProject": True,
            "includeGit": True,
            "prettyJson": True,
            "csvDelimiter": ",",
            "markdownCharts": True,
        },
        "debug": {
            "enabled": False,
            "logLevel": "info",
        },
    }


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def parse_value(raw: str) -> Any:
    """Interpret a CLI-supplied value as YAML ("30" -> 30, "true" -> True)."""
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def get_default_config_content() -> str:
    header = (
        "# Claude Session Tracker configuration\n"
        "# Durations are in milliseconds unless the key says otherwise.\n\n"
    )
    return header + yaml.safe_dump(get_defaults(), default_flow_style=False, sort_keys=False)


class TrackerConfig:
    """Defaults deep-merged with the user's YAML file, addressed by dotted paths."""

    def __init__(self, data: Optional[Dict[str, Any]] = None, path: Optional[Path] = None):
        self.path = path or get_config_path()
        self.data: Dict[str, Any] = deep_merge(get_defaults(), data or {})

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "TrackerConfig":
        path = path or get_config_path()
        if not path.exists():
            return cls(path=path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                user_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config {path}: {e}; using defaults")
            return cls(path=path)
        if not isinstance(user_data, dict):
            logger.error(f"Config {path} is not a mapping; using defaults")
            return cls(path=path)
        return cls(user_data, path=path)

    def save(self) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".yaml.tmp")
        tmp.write_text(
            yaml.safe_dump(self.data, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
        tmp.replace(self.path)
        logger.info(f"Saved config to {self.path}")
        return self.path

    def get(self, key_path: str, default: Any = None) -> Any:
        current: Any = self.data
        for key in key_path.split("."):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def set(self, key_path: str, value: Any) -> None:
        keys = [k for k in key_path.split(".") if k]
        if not keys:
            raise ValidationError("Config key must not be empty")
        current = self.data
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def reset(self) -> None:
        self.data = get_defaults()

    def validate(self) -> List[str]:
        errors: List[str] = []

        interval = self.get("sessions.pollingInterval")
        if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
            errors.append("sessions.pollingInterval must be a positive integer (ms)")

        limit = self.get("sessions.monthlyLimit")
        warn_at = self.get("sessions.monthlyWarningAt")
        if not isinstance(limit, int) or not isinstance(warn_at, int) or warn_at > limit:
            errors.append("sessions.monthlyWarningAt must be an integer no larger than monthlyLimit")

        tags = self.get("project.customTags")
        if not isinstance(tags, list):
            errors.append("project.customTags must be a list of tags")

        level = self.get("debug.logLevel")
        if not isinstance(level, str) or level.upper() not in LEVELS:
            errors.append(f"debug.logLevel must be one of: {', '.join(l.lower() for l in LEVELS)}")

        modes = self.get("timerModes", {})
        if not isinstance(modes, dict):
            errors.append("timerModes must be a mapping")
            modes = {}
        for name, mode in modes.items():
            if not isinstance(mode, dict):
                errors.append(f"timerModes.{name} must be a mapping")
                continue
            try:
                validate_mode_values(name, mode.get("duration"), mode.get("warnings", []))
            except ValidationError as e:
                errors.append(f"timerModes.{name}: {e}")
        return errors

    # Convenience accessors used across commands.

    @property
    def polling_interval_ms(self) -> int:
        return int(self.get("sessions.pollingInterval", 2000))

    @property
    def idle_timeout_hours(self) -> float:
        return float(self.get("sessions.idleTimeoutHours", 6))

    @property
    def store_file(self) -> str:
        return str(self.get("sessions.storeFile") or ".claude-sessions.json")

    @property
    def claude_projects_dir(self) -> Path:
        return Path(str(self.get("sessions.claudeProjectsDir") or "~/.claude/projects")).expanduser()

    @property
    def log_level(self) -> str:
        """`debug.enabled` forces DEBUG; otherwise `debug.logLevel`."""
        if self.get("debug.enabled", False):
            return "DEBUG"
        return str(self.get("debug.logLevel") or "INFO").upper()

    @property
    def custom_tags(self) -> List[str]:
        tags = self.get("project.customTags") or []
        return [str(t) for t in tags] if isinstance(tags, list) else []
