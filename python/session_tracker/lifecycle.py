"""Session lifecycle: start / end / status / resume, plus externally detected sessions.

Every operation is a read-modify-write of the store document; the warning
scheduler is armed only after the document has been saved.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .activity_poller import ActivityEvent
from .logging_config import setup_logger
from .models import (
    Session,
    StoreDocument,
    detect_environment,
    generate_session_id,
    utc_now,
)
from .notifications import Notifier, safe_notify
from .project_detector import detect_project, validate_tags
from .scheduler import ScheduledFire, SchedulerCallbacks, WarningScheduler
from .store import SessionStore, StoreWriteError
from .timer_modes import TimerModeConfig, TimerModeRegistry, warning_label

logger = setup_logger("session_tracker.lifecycle")

DEFAULT_MONTHLY_LIMIT = 50
DEFAULT_MONTHLY_WARNING_AT = 45


class NoActiveSessionError(Exception):
    """The operation needs an active session and there is none."""


class Outcome(str, Enum):
    STARTED = "started"
    RESUMED = "resumed"
    ENDED = "ended"
    NO_ACTIVE_SESSION = "no_active_session"


class StatusLevel(str, Enum):
    ACTIVE = "active"
    WARNING = "warning"
    CRITICAL = "critical"
    EXPIRED = "expired"


@dataclass
class StartResult:
    outcome: Outcome
    session: Session
    elapsed_ms: int
    scheduled: List[ScheduledFire] = field(default_factory=list)
    monthly_count: int = 0
    monthly_limit: int = DEFAULT_MONTHLY_LIMIT
    monthly_limit_warning: bool = False


@dataclass
class EndResult:
    outcome: Outcome
    session: Optional[Session] = None
    duration_ms: int = 0
    total_usage_ms: int = 0
    monthly_count: int = 0


@dataclass
class SessionStatus:
    session: Session
    elapsed_ms: int
    remaining_ms: int
    level: StatusLevel
    expires_at: datetime


@dataclass
class StatusReport:
    now: datetime
    primary: Optional[SessionStatus]
    others: List[SessionStatus]
    total_usage_ms: int
    monthly_count: int
    monthly_limit: int

    @property
    def has_active(self) -> bool:
        return self.primary is not None

    @property
    def usage_today_ms(self) -> int:
        """Daily usage including the running primary session."""
        running = self.primary.elapsed_ms if self.primary else 0
        return self.total_usage_ms + running


def status_level(remaining_ms: int, mode: TimerModeConfig) -> StatusLevel:
    """Smallest warning offset bounds CRITICAL, the largest bounds WARNING."""
    if remaining_ms <= 0:
        return StatusLevel.EXPIRED
    if mode.warnings:
        if remaining_ms <= min(mode.warnings):
            return StatusLevel.CRITICAL
        if remaining_ms <= max(mode.warnings):
            return StatusLevel.WARNING
    return StatusLevel.ACTIVE


def session_status(session: Session, now: datetime) -> SessionStatus:
    mode = session.timer_mode()
    elapsed = session.elapsed_ms(now)
    remaining = max(0, mode.duration - elapsed)
    return SessionStatus(
        session=session,
        elapsed_ms=elapsed,
        remaining_ms=remaining,
        level=status_level(remaining, mode),
        expires_at=session.expires_at(),
    )


def format_elapsed(ms: int) -> str:
    """`2h 5m`, `4m 10s` or `12s`."""
    ms = max(0, int(ms))
    hours, rem = divmod(ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds = rem // 1000
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


SchedulerFactory = Callable[[], WarningScheduler]


class SessionController:
    """Coordinates the store, the timer-mode registry and per-session schedulers."""

    def __init__(
        self,
        store: SessionStore,
        registry: Optional[TimerModeRegistry] = None,
        *,
        notifier: Optional[Notifier] = None,
        scheduler_factory: Optional[SchedulerFactory] = None,
        clock: Callable[[], datetime] = utc_now,
        project_detector: Optional[Callable[[str], dict]] = detect_project,
        claude_version: Optional[str] = None,
        monthly_limit: int = DEFAULT_MONTHLY_LIMIT,
        monthly_warning_at: int = DEFAULT_MONTHLY_WARNING_AT,
        external_mode: Optional[str] = None,
    ):
        self.store = store
        self.registry = registry or TimerModeRegistry()
        self.notifier = notifier
        self.scheduler_factory = scheduler_factory
        self.clock = clock
        self.project_detector = project_detector
        self.claude_version = claude_version
        self.monthly_limit = monthly_limit
        self.monthly_warning_at = monthly_warning_at
        self.external_mode = external_mode
        self._schedulers: Dict[str, WarningScheduler] = {}

    @property
    def schedulers(self) -> Dict[str, WarningScheduler]:
        return dict(self._schedulers)

    # -- helpers -----------------------------------------------------------

    def _detect_project(self, path: Optional[str]) -> Optional[dict]:
        if not self.project_detector or not path:
            return None
        try:
            return self.project_detector(path)
        except Exception as e:
            logger.warning(f"Project detection failed for {path}: {e}")
            return None

    def _new_session(
        self,
        now: datetime,
        mode: TimerModeConfig,
        *,
        start_time: Optional[datetime] = None,
        working_directory: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        external_id: Optional[str] = None,
    ) -> Session:
        cwd = working_directory or self.store.cwd
        return Session(
            id=generate_session_id(now),
            start_time=start_time or now,
            mode=mode.name,
            mode_config=mode.to_snapshot(),
            external_id=external_id,
            working_directory=cwd,
            project=self._detect_project(cwd),
            tags=validate_tags(list(tags or [])),
            environment=detect_environment(),
            claude_code_version=self.claude_version,
        )

    def _require_active(self, document: StoreDocument, session_id: str) -> Session:
        session = document.find(session_id)
        if session is None or not session.is_active:
            raise NoActiveSessionError(f"Session {session_id} is not active")
        return session

    def _arm(self, session: Session) -> List[ScheduledFire]:
        if self.scheduler_factory is None:
            return []
        scheduler = self._schedulers.get(session.id)
        if scheduler is None:
            scheduler = self._schedulers[session.id] = self.scheduler_factory()
        callbacks = SchedulerCallbacks(
            on_warning=lambda label, offset, sid=session.id: self._on_warning(sid, label, offset),
            on_expired=lambda sid=session.id: self._on_expired(sid),
            on_auto_end=lambda sid=session.id: self._on_auto_end(sid),
        )
        return scheduler.arm(session.start_time, session.timer_mode(), callbacks)

    def _disarm(self, session_id: str) -> None:
        scheduler = self._schedulers.pop(session_id, None)
        if scheduler is not None:
            scheduler.disarm()

    def _close(self, document: StoreDocument, session: Session, end_time: datetime) -> int:
        end_time = max(end_time, session.start_time)
        duration = session.finish(end_time)
        document.total_usage += duration
        return duration

    def _notify(self, title: str, message: str) -> None:
        safe_notify(self.notifier, title, message)

    # -- manual sessions ---------------------------------------------------

    def start(
        self,
        mode: Optional[str] = None,
        custom_duration_minutes: Optional[float] = None,
        tags: Optional[Sequence[str]] = None,
        working_directory: Optional[str] = None,
    ) -> StartResult:
        """Start a manual session, or resume the one already running.

        Raises:
            ValidationError: bad mode or custom duration (nothing is written).
            StoreWriteError: the new session could not be persisted.
        """
        resolved = self.registry.resolve(mode, custom_duration_minutes)
        now = self.clock()
        document = self.store.load()

        existing = document.manual_active_session()
        if existing is not None:
            logger.info(f"Session {existing.id} already active; re-arming")
            return StartResult(
                outcome=Outcome.RESUMED,
                session=existing,
                elapsed_ms=existing.elapsed_ms(now),
                scheduled=self._arm(existing),
                monthly_count=document.monthly_session_count,
                monthly_limit=self.monthly_limit,
            )

        session = self._new_session(
            now, resolved, working_directory=working_directory or os.getcwd(), tags=tags
        )
        document.sessions.append(session)
        document.monthly_session_count += 1
        self.store.save(document)
        logger.info(f"Started session {session.id} ({session.mode})")

        scheduled = self._arm(session)
        limit_warning = document.monthly_session_count >= self.monthly_warning_at
        if limit_warning:
            self._notify(
                "Claude Code Session Limit Warning",
                f"You've used {document.monthly_session_count}/{self.monthly_limit} sessions this month",
            )
        return StartResult(
            outcome=Outcome.STARTED,
            session=session,
            elapsed_ms=0,
            scheduled=scheduled,
            monthly_count=document.monthly_session_count,
            monthly_limit=self.monthly_limit,
            monthly_limit_warning=limit_warning,
        )

    def end(self, session_id: Optional[str] = None) -> EndResult:
        """End `session_id`, or the primary active session."""
        now = self.clock()
        document = self.store.load()
        if session_id:
            session = document.find(session_id)
            if session is not None and not session.is_active:
                session = None
        else:
            session = document.primary_active_session()

        if session is None:
            return EndResult(
                outcome=Outcome.NO_ACTIVE_SESSION,
                total_usage_ms=document.total_usage,
                monthly_count=document.monthly_session_count,
            )

        duration = self._close(document, session, now)
        self.store.save(document)
        self._disarm(session.id)
        logger.info(f"Ended session {session.id} after {duration}ms")
        return EndResult(
            outcome=Outcome.ENDED,
            session=session,
            duration_ms=duration,
            total_usage_ms=document.total_usage,
            monthly_count=document.monthly_session_count,
        )

    def status(self) -> StatusReport:
        """Snapshot of active sessions and counters; never writes."""
        now = self.clock()
        document = self.store.load()
        primary = document.primary_active_session()
        others = [
            session_status(s, now)
            for s in document.active_sessions()
            if primary is None or s.id != primary.id
        ]
        return StatusReport(
            now=now,
            primary=session_status(primary, now) if primary else None,
            others=others,
            total_usage_ms=document.total_usage,
            monthly_count=document.monthly_session_count,
            monthly_limit=self.monthly_limit,
        )

    def resume(self) -> Dict[str, List[ScheduledFire]]:
        """Re-arm schedules for every active session (after a restart)."""
        document = self.store.load()
        return {session.id: self._arm(session) for session in document.active_sessions()}

    def shutdown(self) -> None:
        """Cancel every pending timer."""
        for session_id in list(self._schedulers):
            self._disarm(session_id)

    # -- externally detected sessions -----------------------------------

    def on_external_start(self, event: ActivityEvent) -> Optional[Session]:
        """Track a newly seen Claude Code session; repeated delivery is a no-op."""
        document = self.store.load()
        if document.find_by_external_id(event.external_id) is not None:
            return None

        now = self.clock()
        mode = self.registry.get(self.external_mode)
        session = self._new_session(
            now,
            mode,
            start_time=event.timestamp,
            working_directory=event.cwd,
            external_id=event.external_id,
        )
        session.tokens = event.tokens_total
        session.message_count = event.message_count
        session.last_activity = event.last_activity or event.timestamp
        document.sessions.append(session)
        document.monthly_session_count += 1
        self.store.save(document)
        logger.info(f"Tracking Claude Code session {event.external_id} as {session.id}")
        self._arm(session)
        return session

    def on_external_update(self, event: ActivityEvent) -> Optional[Session]:
        """Merge cumulative token totals and activity; never changes timing."""
        document = self.store.load()
        session = document.find_by_external_id(event.external_id)
        if session is None or not session.is_active:
            return None

        tokens = session.tokens.merged_max(event.tokens_total)
        last_activity = event.last_activity or event.timestamp
        if session.last_activity is not None:
            last_activity = max(last_activity, session.last_activity)
        message_count = max(session.message_count, event.message_count)
        if (
            tokens == session.tokens
            and last_activity == session.last_activity
            and message_count == session.message_count
        ):
            return session

        session.tokens = tokens
        session.last_activity = last_activity
        session.message_count = message_count
        self.store.save(document)
        return session

    def on_external_end(self, event: ActivityEvent) -> Optional[Session]:
        """End exactly the session carrying the event's external id."""
        document = self.store.load()
        session = document.find_by_external_id(event.external_id)
        if session is None or not session.is_active:
            return None

        session.tokens = session.tokens.merged_max(event.tokens_total)
        self._close(document, session, event.last_activity or event.timestamp)
        self.store.save(document)
        self._disarm(session.id)
        logger.info(f"Claude Code session {event.external_id} ended ({session.id})")
        return session

    # -- scheduler callbacks ---------------------------------------------

    def _on_warning(self, session_id: str, label: str, offset_ms: int) -> None:
        document = self.store.load()
        try:
            session = self._require_active(document, session_id)
        except NoActiveSessionError as e:
            logger.debug(f"Skipping {label} warning: {e}")
            return

        if session.mark_warning_fired(label):
            try:
                self.store.save(document)
            except StoreWriteError as e:
                logger.error(f"Could not record {label} warning: {e}")

        remaining = warning_label(offset_ms)
        if offset_ms <= min(session.timer_mode().warnings or (offset_ms,)):
            title = f"URGENT: {session.timer_mode().label or session.mode} session"
            message = f"Only {remaining} left! Save your work now."
        else:
            title = f"{session.timer_mode().label or session.mode} session warning"
            message = f"{remaining} remaining. Save your work and prepare to wrap up."
        self._notify(title, message)

    def _on_expired(self, session_id: str) -> None:
        document = self.store.load()
        try:
            session = self._require_active(document, session_id)
        except NoActiveSessionError:
            return
        mode = session.timer_mode()
        self._notify(
            f"{mode.label or session.mode} session expired",
            f"Your {format_elapsed(mode.duration)} session has ended. "
            "Run `claude-session end` when you are done.",
        )

    def _on_auto_end(self, session_id: str) -> None:
        document = self.store.load()
        try:
            session = self._require_active(document, session_id)
        except NoActiveSessionError:
            return

        self._close(document, session, self.clock())
        self.store.save(document)
        # The scheduler stays in AUTO_ENDED; just forget it.
        self._schedulers.pop(session_id, None)

        mode = session.timer_mode()
        message = f"Session complete after {format_elapsed(session.duration or 0)}."
        if mode.break_duration:
            message += f" Take a {format_elapsed(mode.break_duration)} break."
        self._notify(f"{mode.label or session.mode} finished", message)
        logger.info(f"Auto-ended session {session_id}")


def default_scheduler_factory(loop=None, clock: Callable[[], datetime] = utc_now) -> SchedulerFactory:
    return lambda: WarningScheduler(loop=loop, clock=clock)

