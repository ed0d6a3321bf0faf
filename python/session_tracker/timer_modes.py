"""Named timer modes (duration, warning offsets, auto-end) and their registry."""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, Iterable, Mapping, Optional

from .logging_config import setup_logger

logger = setup_logger("session_tracker.timer_modes")

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

DEFAULT_MODE_NAME = "claude-max"
CUSTOM_MODE_NAME = "custom"


class ValidationError(ValueError):
    """Rejected configuration value; raised before any state is mutated."""


def warning_label(offset_ms: int) -> str:
    """Human label for a warning offset: 1800000 -> '30min', 90000 -> '90s'.

    Distinct offsets always get distinct labels; anything that is not a whole
    number of seconds is labelled in milliseconds.
    """
    offset_ms = int(offset_ms)
    if offset_ms % MINUTE_MS == 0:
        return f"{offset_ms // MINUTE_MS}min"
    if offset_ms % 1000 == 0:
        return f"{offset_ms // 1000}s"
    return f"{offset_ms}ms"


@dataclass(frozen=True)
class TimerModeConfig:
    """Immutable template for a session's duration and warning schedule."""

    name: str
    duration: int
    warnings: tuple[int, ...] = ()
    auto_end: bool = False
    label: str = ""
    description: str = ""
    break_duration: Optional[int] = None

    def __post_init__(self):
        # Order-independent: keep offsets de-duplicated, largest first.
        object.__setattr__(
            self, "warnings", tuple(sorted({int(w) for w in self.warnings}, reverse=True))
        )

    @property
    def warning_labels(self) -> list[str]:
        return [warning_label(w) for w in self.warnings]

    def to_snapshot(self) -> Dict[str, Any]:
        """Shape stored on a session so later registry edits don't affect it."""
        snapshot: Dict[str, Any] = {
            "name": self.name,
            "duration": self.duration,
            "warnings": list(self.warnings),
            "autoEnd": self.auto_end,
        }
        if self.label and self.label != self.name:
            snapshot["label"] = self.label
        if self.break_duration:
            snapshot["breakDuration"] = self.break_duration
        return snapshot

    @classmethod
    def from_dict(cls, name: str, raw: Mapping[str, Any]) -> "TimerModeConfig":
        """Build from the camelCase shape used in config files and snapshots."""
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Timer mode '{name}' must be a mapping")
        duration = raw.get("duration")
        warnings = raw.get("warnings", [])
        validate_mode_values(name, duration, warnings)
        # Whole milliseconds from here on; re-check so truncation cannot yield 0.
        duration, warnings = int(duration), [int(w) for w in warnings]
        validate_mode_values(name, duration, warnings)
        break_duration = raw.get("breakDuration")
        if break_duration and (not _is_number(break_duration) or break_duration < 0):
            raise ValidationError(f"Timer mode '{name}': breakDuration must be a non-negative number")
        return cls(
            name=name,
            duration=duration,
            warnings=tuple(warnings),
            auto_end=bool(raw.get("autoEnd", False)),
            label=str(raw.get("label") or raw.get("name") or name),
            description=str(raw.get("description") or ""),
            break_duration=int(break_duration) if break_duration else None,
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_mode_values(name: str, duration: Any, warnings: Any) -> None:
    """Raise ValidationError unless duration > 0 and every offset is in [0, duration)."""
    if not _is_number(duration) or duration <= 0:
        raise ValidationError(f"Timer mode '{name}': duration must be a positive number")
    if isinstance(warnings, (str, bytes)) or not isinstance(warnings, Iterable):
        raise ValidationError(f"Timer mode '{name}': warnings must be a sequence of numbers")
    for w in warnings:
        if not _is_number(w) or w < 0:
            raise ValidationError(
                f"Timer mode '{name}': warning offset {w!r} must be a non-negative number"
            )
        if w >= duration:
            raise ValidationError(
                f"Timer mode '{name}': warning offset {w} must be less than duration {duration}"
            )


DEFAULT_TIMER_MODES: Dict[str, Dict[str, Any]] = {
    "claude-max": {
        "name": "Claude Max",
        "duration": 5 * HOUR_MS,
        "warnings": [30 * MINUTE_MS, 10 * MINUTE_MS],
        "autoEnd": False,
        "description": "Standard 5-hour Claude Code session",
    },
    "pomodoro": {
        "name": "Pomodoro",
        "duration": 25 * MINUTE_MS,
        "warnings": [5 * MINUTE_MS],
        "autoEnd": True,
        "breakDuration": 5 * MINUTE_MS,
        "description": "Pomodoro Technique: 25min work + 5min break",
    },
    "deep-work": {
        "name": "Deep Work",
        "duration": 90 * MINUTE_MS,
        "warnings": [15 * MINUTE_MS, 5 * MINUTE_MS],
        "autoEnd": True,
        "description": "Deep work session: 90 minutes of focused work",
    },
    "quick-fix": {
        "name": "Quick Fix",
        "duration": 15 * MINUTE_MS,
        "warnings": [5 * MINUTE_MS],
        "autoEnd": True,
        "description": "Quick fix session: 15 minutes for small tasks",
    },
    "custom": {
        "name": "Custom",
        "duration": HOUR_MS,
        "warnings": [10 * MINUTE_MS],
        "autoEnd": False,
        "description": "Custom duration timer",
    },
}


def builtin_mode(name: str) -> TimerModeConfig:
    """Built-in mode by name, falling back to the default mode."""
    raw = DEFAULT_TIMER_MODES.get(name) or DEFAULT_TIMER_MODES[DEFAULT_MODE_NAME]
    mode_name = name if name in DEFAULT_TIMER_MODES else DEFAULT_MODE_NAME
    return TimerModeConfig.from_dict(mode_name, raw)


DEFAULT_MODE = builtin_mode(DEFAULT_MODE_NAME)


def create_custom_timer(duration_minutes: float, base: Optional[TimerModeConfig] = None) -> TimerModeConfig:
    """Custom-duration mode; warnings scale with the duration."""
    if not _is_number(duration_minutes) or duration_minutes <= 0:
        raise ValidationError("Custom duration must be a positive number of minutes")

    duration = int(duration_minutes * MINUTE_MS)
    if duration <= 0:
        raise ValidationError("Custom duration must be at least one millisecond")
    warnings = []
    if duration > 30 * MINUTE_MS:
        warnings.append(15 * MINUTE_MS)
    if duration > 10 * MINUTE_MS:
        warnings.append(5 * MINUTE_MS)

    return TimerModeConfig(
        name=CUSTOM_MODE_NAME,
        duration=duration,
        warnings=tuple(warnings),
        auto_end=base.auto_end if base else False,
        label="Custom",
        description=f"Custom timer: {duration_minutes:g} minutes",
    )


class TimerModeRegistry:
    """Lookup of named timer modes with a fixed fallback."""

    def __init__(self, modes: Optional[Mapping[str, TimerModeConfig]] = None):
        self._modes: Dict[str, TimerModeConfig] = {}
        for name in DEFAULT_TIMER_MODES:
            self._modes[name] = builtin_mode(name)
        if modes:
            for name, config in modes.items():
                self.register(name, config)

    @classmethod
    def from_config(cls, config: Any) -> "TimerModeRegistry":
        """Registry seeded with built-ins, then the user's configured modes.

        Invalid user modes are logged and skipped so one bad entry doesn't
        disable the tracker.
        """
        registry = cls()
        raw_modes = config.get("timerModes", {}) if config is not None else {}
        if not isinstance(raw_modes, Mapping):
            logger.warning("Ignoring timerModes: expected a mapping")
            return registry

        for name, raw in raw_modes.items():
            try:
                registry.register(str(name), TimerModeConfig.from_dict(str(name), raw))
            except ValidationError as e:
                logger.warning(f"Skipping invalid timer mode '{name}': {e}")
        return registry

    def register(self, name: str, config: TimerModeConfig) -> None:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Timer mode name must not be empty")
        validate_mode_values(name, config.duration, config.warnings)
        if config.name != name:
            config = TimerModeConfig(
                name=name,
                duration=config.duration,
                warnings=config.warnings,
                auto_end=config.auto_end,
                label=config.label,
                description=config.description,
                break_duration=config.break_duration,
            )
        self._modes[name] = config

    def get(self, name: Optional[str]) -> TimerModeConfig:
        if name and name in self._modes:
            return self._modes[name]
        if name:
            logger.info(f"Unknown timer mode '{name}', using {DEFAULT_MODE_NAME}")
        return self._modes.get(DEFAULT_MODE_NAME, DEFAULT_MODE)

    def resolve(
        self, name: Optional[str], custom_duration_minutes: Optional[float] = None
    ) -> TimerModeConfig:
        """Mode for a new session; the duration override applies to 'custom' only."""
        mode = self.get(name)
        if custom_duration_minutes is None:
            return mode
        if mode.name != CUSTOM_MODE_NAME:
            logger.info(f"Ignoring --duration for non-custom mode '{mode.name}'")
            return mode
        return create_custom_timer(custom_duration_minutes, base=mode)

    def names(self) -> list[str]:
        return list(self._modes)

    def __contains__(self, name: object) -> bool:
        return name in self._modes

    def items(self):
        return list(self._modes.items())
