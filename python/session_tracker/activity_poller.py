"""Polls Claude Code JSONL transcripts and turns them into session activity events.

Claude Code appends one JSON object per line to
``~/.claude/projects/<encoded-cwd>/<session-id>.jsonl``. The poller keeps a
``(size, mtime, offset)`` record per file, reads only the bytes appended since
the last tick, and reports per-session START / UPDATE / END events.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .logging_config import setup_logger
from .models import TokenUsage, parse_timestamp, utc_now

logger = setup_logger("session_tracker.activity_poller")

DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_IDLE_TIMEOUT = timedelta(hours=6)


def default_projects_dir() -> Path:
    return Path.home() / ".claude" / "projects"


def decode_project_path(dir_name: str) -> str:
    """Claude project dir name to a filesystem path.

    Claude naming: -Users-me-Projects-app
    Decoded: /Users/me/Projects/app

    Lossy for paths that contain '-' themselves; prefer the ``cwd`` field of
    transcript entries when one is available.
    """
    if dir_name.startswith("-"):
        return "/" + dir_name[1:].replace("-", "/")
    return dir_name


class ActivityEventKind(str, Enum):
    START = "start"
    UPDATE = "update"
    END = "end"


@dataclass(frozen=True)
class ActivityEvent:
    kind: ActivityEventKind
    external_id: str
    timestamp: datetime
    token_delta: TokenUsage = field(default_factory=TokenUsage)
    tokens_total: TokenUsage = field(default_factory=TokenUsage)
    cwd: Optional[str] = None
    message_count: int = 0
    file_path: Optional[str] = None
    last_activity: Optional[datetime] = None


@dataclass
class _FileState:
    size: int = 0
    mtime: float = 0.0
    offset: int = 0


@dataclass
class _TrackedSession:
    external_id: str
    first_seen: datetime
    last_activity: datetime
    cwd: Optional[str]
    file_path: str
    tokens: TokenUsage = field(default_factory=TokenUsage)
    message_count: int = 0


@dataclass
class _Batch:
    """Lines of one session read during one tick."""

    first_activity: datetime
    last_activity: datetime
    cwd: Optional[str]
    delta: TokenUsage = field(default_factory=TokenUsage)
    messages: int = 0


EventHandler = Callable[[ActivityEvent], None]


class ClaudeActivityPoller:
    """Stat-based change detection over Claude Code transcripts."""

    def __init__(
        self,
        projects_dir: Optional[Path] = None,
        on_event: Optional[EventHandler] = None,
        *,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.projects_dir = Path(projects_dir) if projects_dir else default_projects_dir()
        self.on_event = on_event
        self.interval_ms = interval_ms
        self.idle_timeout = idle_timeout
        self.clock = clock
        self.running = False

        self._files: Dict[str, _FileState] = {}
        self._sessions: Dict[str, _TrackedSession] = {}
        self._task: Optional[asyncio.Task] = None
        self._first_scan = True
        self._missing_dir_logged = False

    @property
    def active_sessions(self) -> List[str]:
        return list(self._sessions)

    def _discover_files(self) -> List[Path]:
        if not self.projects_dir.is_dir():
            if not self._missing_dir_logged:
                self._missing_dir_logged = True
                logger.info(f"Claude projects directory not found: {self.projects_dir}")
            return []
        self._missing_dir_logged = False
        try:
            return sorted(self.projects_dir.glob("*/*.jsonl"))
        except OSError as e:
            logger.warning(f"Error scanning {self.projects_dir}: {e}")
            return []

    def _read_appended(self, path: Path, state: _FileState) -> List[str]:
        """Complete lines appended since `state.offset`; a trailing partial line waits."""
        with open(path, "rb") as f:
            f.seek(state.offset)
            chunk = f.read()
        if not chunk:
            return []
        end = chunk.rfind(b"\n")
        if end < 0:
            return []
        state.offset += end + 1
        return chunk[: end + 1].decode("utf-8", errors="replace").splitlines()

    def _parse_lines(self, path: Path, lines: List[str], batches: Dict[str, _Batch]) -> None:
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed line in {path.name}")
                continue
            if not isinstance(entry, dict):
                continue

            external_id = entry.get("sessionId")
            timestamp = parse_timestamp(entry.get("timestamp"))
            if not isinstance(external_id, str) or not external_id or timestamp is None:
                logger.debug(f"Skipping entry without a usable sessionId/timestamp in {path.name}")
                continue
            cwd = entry.get("cwd")
            cwd = cwd if isinstance(cwd, str) and cwd else None

            batch = batches.get(external_id)
            if batch is None:
                batch = batches[external_id] = _Batch(
                    first_activity=timestamp,
                    last_activity=timestamp,
                    cwd=cwd,
                )
            batch.first_activity = min(batch.first_activity, timestamp)
            batch.last_activity = max(batch.last_activity, timestamp)
            batch.cwd = cwd or batch.cwd
            batch.messages += 1

            message = entry.get("message")
            usage = message.get("usage") if isinstance(message, dict) else None
            usage = usage or entry.get("usage")
            if usage:
                batch.delta = batch.delta + TokenUsage.from_claude_usage(usage)

    def _apply_batches(self, path: Path, batches: Dict[str, _Batch]) -> List[ActivityEvent]:
        events: List[ActivityEvent] = []
        fallback_cwd = decode_project_path(path.parent.name)
        for external_id, batch in batches.items():
            tracked = self._sessions.get(external_id)
            if tracked is None:
                tracked = _TrackedSession(
                    external_id=external_id,
                    first_seen=batch.first_activity,
                    last_activity=batch.last_activity,
                    cwd=batch.cwd or fallback_cwd,
                    file_path=str(path),
                )
                self._sessions[external_id] = tracked
                kind = ActivityEventKind.START
                logger.info(f"New Claude Code session detected: {external_id} ({tracked.cwd})")
            else:
                kind = ActivityEventKind.UPDATE
                tracked.cwd = batch.cwd or tracked.cwd

            tracked.last_activity = max(tracked.last_activity, batch.last_activity)
            tracked.tokens = tracked.tokens + batch.delta
            tracked.message_count += batch.messages
            events.append(
                ActivityEvent(
                    kind=kind,
                    external_id=external_id,
                    timestamp=tracked.first_seen if kind is ActivityEventKind.START else tracked.last_activity,
                    token_delta=batch.delta,
                    tokens_total=tracked.tokens,
                    cwd=tracked.cwd,
                    message_count=tracked.message_count,
                    file_path=tracked.file_path,
                    last_activity=tracked.last_activity,
                )
            )
        return events

    def _check_idle(self, now: datetime) -> List[ActivityEvent]:
        events: List[ActivityEvent] = []
        for external_id, tracked in list(self._sessions.items()):
            if now - tracked.last_activity < self.idle_timeout:
                continue
            logger.info(f"Claude Code session idle, treating as ended: {external_id}")
            del self._sessions[external_id]
            events.append(
                ActivityEvent(
                    kind=ActivityEventKind.END,
                    external_id=external_id,
                    timestamp=tracked.last_activity,
                    tokens_total=tracked.tokens,
                    cwd=tracked.cwd,
                    message_count=tracked.message_count,
                    file_path=tracked.file_path,
                    last_activity=tracked.last_activity,
                )
            )
        return events

    def scan_once(self) -> List[ActivityEvent]:
        """One polling tick. Never raises for filesystem or parse problems."""
        now = self.clock()
        events: List[ActivityEvent] = []
        seen: set[str] = set()

        try:
            for path in self._discover_files():
                seen.add(str(path))
                try:
                    events.extend(self._scan_file(path, now))
                except Exception as e:
                    logger.error(f"Error processing {path}: {e}", exc_info=True)

            for key in list(self._files):
                if key not in seen:
                    del self._files[key]

            self._first_scan = False
            events.extend(self._check_idle(now))
        finally:
            # Offsets already moved past what was collected, so always deliver it.
            for event in events:
                self._dispatch(event)
        return events

    def _scan_file(self, path: Path, now: datetime) -> List[ActivityEvent]:
        key = str(path)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.debug(f"Error stat-ing {key}: {e}")
            return []

        state = self._files.get(key)
        if state is None:
            state = self._files[key] = _FileState()
            modified = datetime.fromtimestamp(stat.st_mtime, tz=now.tzinfo)
            if self._first_scan and now - modified >= self.idle_timeout:
                # Stale transcript from before the tracker started.
                state.size, state.mtime, state.offset = stat.st_size, stat.st_mtime, stat.st_size
                return []
        elif stat.st_size == state.size and stat.st_mtime == state.mtime:
            return []

        if stat.st_size < state.offset:
            logger.debug(f"{path.name} was truncated, re-reading from start")
            state.offset = 0
        state.size, state.mtime = stat.st_size, stat.st_mtime

        try:
            lines = self._read_appended(path, state)
        except OSError as e:
            logger.warning(f"Could not read {key}: {e}")
            return []

        batches: Dict[str, _Batch] = {}
        self._parse_lines(path, lines, batches)
        return self._apply_batches(path, batches)

    def _dispatch(self, event: ActivityEvent) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Activity handler failed for {event.kind.value} {event.external_id}: {e}", exc_info=True)

    async def run(self) -> None:
        """Poll until stop() is called."""
        self.running = True
        logger.info(f"Watching {self.projects_dir} every {self.interval_ms}ms")
        while self.running:
            try:
                self.scan_once()
            except Exception as e:
                logger.error(f"Error in polling loop: {e}", exc_info=True)
            await asyncio.sleep(self.interval_ms / 1000)

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        loop = loop or asyncio.get_running_loop()
        self._task = loop.create_task(self.run())
        return self._task

    def stop(self) -> None:
        """Cancel the polling task; no further tick runs after this returns."""
        self.running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("Activity poller stopped")
