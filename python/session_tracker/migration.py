"""Schema migration for the session store document.

Each historical document shape has its own upgrade step; every document runs
through the same pipeline (detect version -> upgrade step by step ->
normalise) and comes out in the current shape.

Known shapes:
    v0  no ``version`` field. Written by the first tracker: sessions carry
        only id/startTime/endTime/duration plus environment details.
    v1  ``version: 1`` (or the legacy string ``"1.x"``). Sessions gained
        ``mode``, ``tokens``, ``warnings`` ({"30min": bool, ...}),
        ``claudeSessionId`` and ``project``.
    v2  current. ``warnings`` -> ``warningsFired``, ``claudeSessionId`` ->
        ``externalId``, plus ``modeConfig`` snapshot and ``tags``.

``migrate`` is pure: it never touches the filesystem, never mutates its input,
and ``migrate(migrate(doc)) == migrate(doc)``.
"""

from __future__ import annotations

import copy
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .models import (
    CURRENT_SCHEMA_VERSION,
    DAILY_RESET_WINDOW,
    MONTHLY_RESET_WINDOW,
    Session,
    StoreDocument,
    format_timestamp,
    ms_between,
    parse_timestamp,
    utc_now,
)
from .timer_modes import DEFAULT_MODE_NAME, builtin_mode

Document = Dict[str, Any]

_LEGACY_VERSION_RE = re.compile(r"^\s*v?(\d+)")


def detect_version(doc: Mapping[str, Any]) -> int:
    """Schema version of a raw document. Missing or unreadable -> 0."""
    raw = doc.get("version")
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, (int, float)):
        return max(0, int(raw))
    match = _LEGACY_VERSION_RE.match(str(raw))
    return int(match.group(1)) if match else 0


def _upgrade_v0(doc: Document, *, cwd: str, now: datetime) -> Document:
    for session in doc["sessions"]:
        if not isinstance(session, dict):
            continue
        session.setdefault("mode", DEFAULT_MODE_NAME)
        session.setdefault("workingDirectory", cwd)
        session.setdefault("tokens", {})
        session.setdefault("warnings", {})
        session.setdefault("project", None)
    doc["version"] = 1
    return doc


def _upgrade_v1(doc: Document, *, cwd: str, now: datetime) -> Document:
    for session in doc["sessions"]:
        if not isinstance(session, dict):
            continue
        legacy_warnings = session.pop("warnings", None)
        if "warningsFired" not in session:
            session["warningsFired"] = dict(legacy_warnings or {})

        legacy_external = session.pop("claudeSessionId", None)
        if not session.get("externalId") and legacy_external:
            session["externalId"] = legacy_external

        if not session.get("modeConfig"):
            session["modeConfig"] = builtin_mode(session.get("mode") or DEFAULT_MODE_NAME).to_snapshot()

        project = session.get("project")
        if "tags" not in session:
            tags = project.get("tags") if isinstance(project, Mapping) else None
            session["tags"] = list(tags or [])
    doc["version"] = 2
    return doc


UpgradeStep = Callable[..., Document]

# version -> step that upgrades a document *from* that version.
UPGRADE_STEPS: Dict[int, UpgradeStep] = {
    0: _upgrade_v0,
    1: _upgrade_v1,
}


def _normalize_session(raw: Any, *, index: int, cwd: str, now: datetime) -> Optional[Document]:
    if not isinstance(raw, Mapping):
        return None
    session = dict(raw)

    start = parse_timestamp(session.get("startTime"))
    end = parse_timestamp(session.get("endTime"))
    if start is None:
        # Never drop a record: fall back to the end time, else to "now".
        start = end or now
    session["startTime"] = format_timestamp(start)
    session["endTime"] = format_timestamp(end)

    if not session.get("id"):
        session["id"] = f"session_{int(start.timestamp() * 1000)}_{index}"

    if end is None:
        session["duration"] = None
    elif not isinstance(session.get("duration"), (int, float)) or isinstance(
        session.get("duration"), bool
    ):
        session["duration"] = max(0, ms_between(start, end))

    session.setdefault("mode", DEFAULT_MODE_NAME)
    if not session.get("mode"):
        session["mode"] = DEFAULT_MODE_NAME
    if not isinstance(session.get("modeConfig"), Mapping) or not session.get("modeConfig"):
        session["modeConfig"] = builtin_mode(session["mode"]).to_snapshot()
    if not isinstance(session.get("warningsFired"), Mapping):
        session["warningsFired"] = {}
    if not session.get("workingDirectory"):
        session["workingDirectory"] = cwd
    if not isinstance(session.get("tags"), list):
        session["tags"] = []

    # Round-trip through the model so every field has its canonical form.
    return Session.from_dict(session).to_dict()


def _recompute_counters(doc: Document, sessions: List[Session], now: datetime) -> None:
    """Fill missing or malformed counters from the session list, conservatively."""
    last_reset = parse_timestamp(doc.get("lastReset"))
    if last_reset is None:
        last_reset = now
        doc["lastReset"] = format_timestamp(now)
    usage = doc.get("totalUsage")
    if not isinstance(usage, (int, float)) or isinstance(usage, bool) or usage < 0:
        window_start = max(last_reset, now - DAILY_RESET_WINDOW) if last_reset <= now else now
        doc["totalUsage"] = sum(
            int(s.duration or 0)
            for s in sessions
            if s.end_time is not None and s.end_time >= window_start
        )

    last_month = parse_timestamp(doc.get("lastMonthReset"))
    if last_month is None:
        last_month = now
        doc["lastMonthReset"] = format_timestamp(now)
    count = doc.get("monthlySessionCount")
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        window_start = max(last_month, now - MONTHLY_RESET_WINDOW) if last_month <= now else now
        doc["monthlySessionCount"] = sum(1 for s in sessions if s.start_time >= window_start)


def _normalize(doc: Document, *, cwd: str, now: datetime) -> Document:
    raw_sessions = doc.get("sessions")
    if not isinstance(raw_sessions, list):
        raw_sessions = []

    normalized = []
    for index, raw in enumerate(raw_sessions):
        session = _normalize_session(raw, index=index, cwd=cwd, now=now)
        if session is not None:
            normalized.append(session)
    doc["sessions"] = normalized

    sessions = [Session.from_dict(s) for s in normalized]
    _recompute_counters(doc, sessions, now)

    # Canonical key order and timestamp formats.
    return StoreDocument.from_dict(doc).to_dict()


def migrate(
    doc: Mapping[str, Any],
    *,
    cwd: str,
    now: Optional[datetime] = None,
) -> Document:
    """Bring a raw store document of any known shape to the current shape.

    Args:
        doc: Parsed JSON document (not modified).
        cwd: Working directory recorded on sessions that lack one.
        now: Reference time for filling missing reset stamps.

    Returns:
        A new document at CURRENT_SCHEMA_VERSION (or its own version when it
        is already newer; versions never decrease).
    """
    now = now or utc_now()
    result: Document = copy.deepcopy(dict(doc))
    if not isinstance(result.get("sessions"), list):
        result["sessions"] = []

    version = detect_version(result)
    while version < CURRENT_SCHEMA_VERSION:
        step = UPGRADE_STEPS[version]
        result = step(result, cwd=cwd, now=now)
        version = detect_version(result)

    result["version"] = max(version, CURRENT_SCHEMA_VERSION)
    return _normalize(result, cwd=cwd, now=now)


def needs_migration(doc: Mapping[str, Any]) -> bool:
    return detect_version(doc) < CURRENT_SCHEMA_VERSION
