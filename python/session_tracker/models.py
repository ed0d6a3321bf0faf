"""Session records and the persisted store document."""

from __future__ import annotations

import os
import platform
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from .timer_modes import DEFAULT_MODE_NAME, TimerModeConfig, ValidationError, builtin_mode

CURRENT_SCHEMA_VERSION = 2

DAILY_RESET_WINDOW = timedelta(hours=24)
MONTHLY_RESET_WINDOW = timedelta(days=30)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 (including the trailing 'Z' form) or epoch-ms into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        return None


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Millisecond-precision UTC timestamp, e.g. 2025-01-01T10:00:00.000Z."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def ms_between(start: datetime, end: datetime) -> int:
    return int(round((end - start).total_seconds() * 1000))


def generate_session_id(now: Optional[datetime] = None) -> str:
    now = now or utc_now()
    return f"session_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}"


def detect_environment() -> str:
    if sys.platform == "darwin":
        return "macOS"
    if sys.platform.startswith("win"):
        return "Windows"
    if os.environ.get("WSL_DISTRO_NAME") or "microsoft" in platform.release().lower():
        return "WSL"
    return "Linux"


def _as_int(value: Any, default: int = 0) -> int:
    try:
        if isinstance(value, bool):
            return default
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


@dataclass
class TokenUsage:
    """Aggregate token counters for a session."""

    input: int = 0
    output: int = 0
    cache_create: int = 0
    cache_read: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_create + self.cache_read

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_create=self.cache_create + other.cache_create,
            cache_read=self.cache_read + other.cache_read,
        )

    def merged_max(self, other: "TokenUsage") -> "TokenUsage":
        """Element-wise max; applying the same cumulative totals twice is a no-op."""
        return TokenUsage(
            input=max(self.input, other.input),
            output=max(self.output, other.output),
            cache_create=max(self.cache_create, other.cache_create),
            cache_read=max(self.cache_read, other.cache_read),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "input": self.input,
            "output": self.output,
            "cacheCreate": self.cache_create,
            "cacheRead": self.cache_read,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "TokenUsage":
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            input=max(0, _as_int(raw.get("input"))),
            output=max(0, _as_int(raw.get("output"))),
            cache_create=max(0, _as_int(raw.get("cacheCreate"))),
            cache_read=max(0, _as_int(raw.get("cacheRead"))),
        )

    @classmethod
    def from_claude_usage(cls, usage: Any) -> "TokenUsage":
        """Convert a Claude API `usage` block (snake_case keys)."""
        if not isinstance(usage, Mapping):
            return cls()
        return cls(
            input=max(0, _as_int(usage.get("input_tokens"))),
            output=max(0, _as_int(usage.get("output_tokens"))),
            cache_create=max(0, _as_int(usage.get("cache_creation_input_tokens"))),
            cache_read=max(0, _as_int(usage.get("cache_read_input_tokens"))),
        )


_SESSION_KEYS = (
    "id",
    "startTime",
    "endTime",
    "duration",
    "mode",
    "modeConfig",
    "warningsFired",
    "tokens",
    "externalId",
    "workingDirectory",
    "project",
    "tags",
    "environment",
    "claudeCodeVersion",
    "lastActivity",
    "messageCount",
)


@dataclass
class Session:
    """One tracked work interval."""

    id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    mode: str = DEFAULT_MODE_NAME
    mode_config: Dict[str, Any] = field(default_factory=dict)
    warnings_fired: Dict[str, bool] = field(default_factory=dict)
    tokens: TokenUsage = field(default_factory=TokenUsage)
    external_id: Optional[str] = None
    working_directory: Optional[str] = None
    project: Optional[Dict[str, Any]] = None
    tags: List[str] = field(default_factory=list)
    environment: Optional[str] = None
    claude_code_version: Optional[str] = None
    last_activity: Optional[datetime] = None
    message_count: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def timer_mode(self) -> TimerModeConfig:
        """Mode snapshot captured at start; falls back to the built-in of the same name."""
        if self.mode_config:
            try:
                return TimerModeConfig.from_dict(self.mode, self.mode_config)
            except ValidationError:
                pass
        return builtin_mode(self.mode)

    def elapsed_ms(self, now: datetime) -> int:
        end = self.end_time or now
        return max(0, ms_between(self.start_time, end))

    def expires_at(self) -> datetime:
        return self.start_time + timedelta(milliseconds=self.timer_mode().duration)

    def mark_warning_fired(self, label: str) -> bool:
        """Flip a warning flag to True. Returns False if it was already set."""
        if self.warnings_fired.get(label):
            return False
        self.warnings_fired[label] = True
        return True

    def finish(self, now: datetime) -> int:
        """Close the session at `now`; returns the duration in ms."""
        if self.end_time is not None:
            return int(self.duration or 0)
        self.end_time = now
        self.duration = max(0, ms_between(self.start_time, now))
        return self.duration

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "duration": self.duration,
            "mode": self.mode,
            "modeConfig": dict(self.mode_config),
            "warningsFired": dict(self.warnings_fired),
            "tokens": self.tokens.to_dict(),
            "externalId": self.external_id,
            "workingDirectory": self.working_directory,
            "project": self.project,
            "tags": list(self.tags),
            "environment": self.environment,
            "claudeCodeVersion": self.claude_code_version,
            "lastActivity": format_timestamp(self.last_activity),
            "messageCount": self.message_count,
        }
        for key, value in self.extra.items():
            if key not in data:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Session":
        """Parse a current-shape record. Use migration for older shapes."""
        start = parse_timestamp(raw.get("startTime"))
        if start is None:
            raise ValueError(f"Session {raw.get('id')!r} has no valid startTime")
        end = parse_timestamp(raw.get("endTime"))
        duration = raw.get("duration")
        warnings = raw.get("warningsFired") or {}
        return cls(
            id=str(raw.get("id")),
            start_time=start,
            end_time=end,
            duration=_as_int(duration) if duration is not None and end is not None else None,
            mode=str(raw.get("mode") or DEFAULT_MODE_NAME),
            mode_config=dict(raw.get("modeConfig") or {}),
            warnings_fired={str(k): bool(v) for k, v in dict(warnings).items()},
            tokens=TokenUsage.from_dict(raw.get("tokens")),
            external_id=raw.get("externalId") or None,
            working_directory=raw.get("workingDirectory"),
            project=raw.get("project"),
            tags=[str(t) for t in (raw.get("tags") or [])],
            environment=raw.get("environment"),
            claude_code_version=raw.get("claudeCodeVersion"),
            last_activity=parse_timestamp(raw.get("lastActivity")),
            message_count=max(0, _as_int(raw.get("messageCount"))),
            extra={k: v for k, v in raw.items() if k not in _SESSION_KEYS},
        )


_DOCUMENT_KEYS = (
    "version",
    "sessions",
    "totalUsage",
    "lastReset",
    "monthlySessionCount",
    "lastMonthReset",
    "lastUpdate",
)


@dataclass
class StoreDocument:
    """Top-level persisted aggregate: sessions plus rollover counters."""

    version: int = CURRENT_SCHEMA_VERSION
    sessions: List[Session] = field(default_factory=list)
    total_usage: int = 0
    last_reset: datetime = field(default_factory=utc_now)
    monthly_session_count: int = 0
    last_month_reset: datetime = field(default_factory=utc_now)
    last_update: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls, now: Optional[datetime] = None) -> "StoreDocument":
        now = now or utc_now()
        return cls(last_reset=now, last_month_reset=now)

    def active_sessions(self) -> List[Session]:
        return [s for s in self.sessions if s.is_active]

    def manual_active_session(self) -> Optional[Session]:
        for session in self.sessions:
            if session.is_active and not session.external_id:
                return session
        return None

    def primary_active_session(self) -> Optional[Session]:
        """The manual active session, else the earliest active external one."""
        manual = self.manual_active_session()
        if manual is not None:
            return manual
        active = self.active_sessions()
        return active[0] if active else None

    def find(self, session_id: str) -> Optional[Session]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def find_by_external_id(self, external_id: str) -> Optional[Session]:
        for session in self.sessions:
            if external_id and session.external_id == external_id:
                return session
        return None

    def apply_rollovers(self, now: datetime) -> List[str]:
        """Reset daily/monthly counters whose window has elapsed.

        Returns the names of the counters that were reset; a second call in
        the same window returns an empty list.
        """
        reset: List[str] = []
        if now - self.last_reset >= DAILY_RESET_WINDOW:
            self.total_usage = 0
            self.last_reset = now
            reset.append("daily")
        if now - self.last_month_reset >= MONTHLY_RESET_WINDOW:
            self.monthly_session_count = 0
            self.last_month_reset = now
            reset.append("monthly")
        return reset

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "sessions": [s.to_dict() for s in self.sessions],
            "totalUsage": self.total_usage,
            "lastReset": format_timestamp(self.last_reset),
            "monthlySessionCount": self.monthly_session_count,
            "lastMonthReset": format_timestamp(self.last_month_reset),
            "lastUpdate": format_timestamp(self.last_update),
        }
        for key, value in self.extra.items():
            if key not in data:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StoreDocument":
        """Parse a document already in the current shape (see migration.migrate)."""
        now = utc_now()
        return cls(
            version=_as_int(raw.get("version"), CURRENT_SCHEMA_VERSION),
            sessions=[Session.from_dict(s) for s in raw.get("sessions") or []],
            total_usage=max(0, _as_int(raw.get("totalUsage"))),
            last_reset=parse_timestamp(raw.get("lastReset")) or now,
            monthly_session_count=max(0, _as_int(raw.get("monthlySessionCount"))),
            last_month_reset=parse_timestamp(raw.get("lastMonthReset")) or now,
            last_update=parse_timestamp(raw.get("lastUpdate")),
            extra={k: v for k, v in raw.items() if k not in _DOCUMENT_KEYS},
        )
