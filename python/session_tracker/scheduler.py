"""One-shot warning/expiry timers for a single session, on asyncio loop handles."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from .logging_config import setup_logger
from .models import utc_now
from .timer_modes import TimerModeConfig, warning_label

logger = setup_logger("session_tracker.scheduler")


class SchedulerState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    EXPIRED = "expired"
    AUTO_ENDED = "auto_ended"


@dataclass
class SchedulerCallbacks:
    """Hooks invoked from the event loop when a timer fires."""

    on_warning: Optional[Callable[[str, int], None]] = None
    on_expired: Optional[Callable[[], None]] = None
    on_auto_end: Optional[Callable[[], None]] = None


@dataclass(frozen=True)
class ScheduledFire:
    kind: str  # "warning" | "expiry"
    label: str
    offset_ms: int
    fire_at: datetime


class WarningScheduler:
    """Arms the warnings and expiry of one session relative to its start time.

    Only fire times strictly after "now" are scheduled, so re-arming a session
    that was started earlier (e.g. after a restart) never replays warnings that
    are already in the past.
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._loop = loop
        self._clock = clock
        self._handles: Dict[str, asyncio.Handle] = {}
        self._pending: Dict[str, ScheduledFire] = {}
        self._fired: set[str] = set()
        self._callbacks = SchedulerCallbacks()
        self._auto_end = False
        self.state = SchedulerState.IDLE

    @property
    def pending(self) -> List[ScheduledFire]:
        return sorted(self._pending.values(), key=lambda f: f.fire_at)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def plan(self, session_start: datetime, mode: TimerModeConfig) -> List[ScheduledFire]:
        """Fire times still in the future, without scheduling anything."""
        now = self._clock()
        expires_at = session_start + timedelta(milliseconds=mode.duration)
        fires: List[ScheduledFire] = []
        for offset in mode.warnings:
            fire_at = expires_at - timedelta(milliseconds=offset)
            if fire_at > now:
                fires.append(ScheduledFire("warning", warning_label(offset), offset, fire_at))
        if expires_at > now:
            fires.append(ScheduledFire("expiry", "expiry", 0, expires_at))
        return sorted(fires, key=lambda f: f.fire_at)

    def arm(
        self,
        session_start: datetime,
        mode: TimerModeConfig,
        callbacks: SchedulerCallbacks,
    ) -> List[ScheduledFire]:
        """(Re)arm timers for a session; returns what was scheduled."""
        self.disarm()
        loop = self._get_loop()
        now = self._clock()
        self._callbacks = callbacks
        self._auto_end = mode.auto_end

        fires = self.plan(session_start, mode)
        for fire in fires:
            key = f"{fire.kind}:{fire.offset_ms}"
            delay = max(0.0, (fire.fire_at - now).total_seconds())
            self._pending[key] = fire
            self._handles[key] = loop.call_later(delay, self._fire, key)

        self.state = SchedulerState.ARMED
        logger.debug(
            f"Armed {len(fires)} timer(s) for session started {session_start.isoformat()}"
        )
        return fires

    def disarm(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._pending.clear()
        self._fired.clear()
        self.state = SchedulerState.IDLE

    def _fire(self, key: str) -> None:
        fire = self._pending.pop(key, None)
        self._handles.pop(key, None)
        if fire is None or key in self._fired:
            return
        self._fired.add(key)

        try:
            if fire.kind == "warning":
                if self._callbacks.on_warning:
                    self._callbacks.on_warning(fire.label, fire.offset_ms)
            elif self._auto_end:
                self.state = SchedulerState.AUTO_ENDED
                if self._callbacks.on_auto_end:
                    self._callbacks.on_auto_end()
            else:
                self.state = SchedulerState.EXPIRED
                if self._callbacks.on_expired:
                    self._callbacks.on_expired()
        except Exception as e:
            logger.error(f"Timer callback for {fire.label} failed: {e}", exc_info=True)
