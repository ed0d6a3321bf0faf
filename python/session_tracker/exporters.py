"""Render session records as JSON, CSV or a Markdown report."""

from __future__ import annotations

import csv
import io
import json
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from . import __version__
from .logging_config import setup_logger
from .models import Session, format_timestamp, utc_now

logger = setup_logger("session_tracker.exporters")

FORMATS = ("json", "csv", "markdown")
FORMAT_EXTENSIONS = {"json": ".json", "csv": ".csv", "markdown": ".md"}


class ExportError(ValueError):
    """Unknown format or unparseable filter."""


@dataclass
class ExportOptions:
    include_tokens: bool = True
    include_project: bool = True
    include_git: bool = True
    include_stats: bool = True
    include_charts: bool = True
    pretty_json: bool = True
    csv_delimiter: str = ","
    title: str = "Claude Code Session Report"

    @classmethod
    def from_config(cls, config) -> "ExportOptions":
        return cls(
            include_tokens=bool(config.get("export.includeTokens", True)),
            include_project=bool(config.get("export.includeProject", True)),
            include_git=bool(config.get("export.includeGit", True)),
            include_charts=bool(config.get("export.markdownCharts", True)),
            pretty_json=bool(config.get("export.prettyJson", True)),
            csv_delimiter=str(config.get("export.csvDelimiter", ",") or ","),
        )


def format_duration(duration_ms: Optional[float]) -> str:
    """1h 5m / 12m style; non-positive durations render as 0m."""
    if not duration_ms or duration_ms <= 0:
        return "0m"
    hours = int(duration_ms // 3_600_000)
    minutes = int((duration_ms % 3_600_000) // 60_000)
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


def _project(session: Session) -> Dict[str, Any]:
    return session.project if isinstance(session.project, dict) else {}


def _git(session: Session) -> Dict[str, Any]:
    git = _project(session).get("git")
    return git if isinstance(git, dict) else {}


def session_export_record(session: Session, options: Optional[ExportOptions] = None) -> Dict[str, Any]:
    options = options or ExportOptions()
    project = _project(session)
    record: Dict[str, Any] = {
        "id": session.id,
        "startTime": format_timestamp(session.start_time),
        "endTime": format_timestamp(session.end_time),
        "duration": session.duration,
        "mode": session.mode,
        "workingDirectory": session.working_directory or project.get("path"),
        "tags": list(session.tags),
        "warningsFired": dict(session.warnings_fired),
        "environment": session.environment,
        "externalId": session.external_id,
        "claudeCodeVersion": session.claude_code_version,
    }
    if options.include_project:
        record["project"] = (
            {
                "name": project.get("name"),
                "type": project.get("type"),
                "path": project.get("path"),
                "git": project.get("git") if options.include_git else None,
            }
            if project
            else None
        )
    if options.include_tokens:
        record["tokens"] = session.tokens.to_dict()
    return record


def render_json(sessions: Sequence[Session], options: ExportOptions, now: datetime) -> str:
    data = {
        "metadata": {
            "exportDate": format_timestamp(now),
            "totalSessions": len(sessions),
            "exportedBy": "Claude Session Tracker",
            "version": __version__,
        },
        "sessions": [session_export_record(s, options) for s in sessions],
    }
    return json.dumps(data, indent=2 if options.pretty_json else None, ensure_ascii=False)


def render_csv(sessions: Sequence[Session], options: ExportOptions) -> str:
    headers = [
        "Session ID",
        "Start Time",
        "End Time",
        "Duration (minutes)",
        "Mode",
        "Working Directory",
    ]
    if options.include_project:
        headers += ["Project Name", "Project Type"]
    if options.include_git:
        headers += ["Git Branch", "Git Commit", "Has Uncommitted Changes"]
    if options.include_tokens:
        headers += [
            "Input Tokens",
            "Output Tokens",
            "Cache Create Tokens",
            "Cache Read Tokens",
            "Total Tokens",
        ]
    headers += ["Warnings Fired", "Tags", "Environment", "External Session ID"]

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=options.csv_delimiter, lineterminator="\n")
    writer.writerow(headers)
    for s in sessions:
        project = _project(s)
        row: List[Any] = [
            s.id,
            format_timestamp(s.start_time),
            format_timestamp(s.end_time) or "",
            round(s.duration / 60_000) if s.duration is not None else "",
            s.mode,
            s.working_directory or project.get("path") or "",
        ]
        if options.include_project:
            row += [project.get("name") or "", project.get("type") or ""]
        if options.include_git:
            git = _git(s)
            row += [
                git.get("branch") or "",
                git.get("lastCommit") or "",
                "Yes" if git.get("hasUncommittedChanges") else "No",
            ]
        if options.include_tokens:
            t = s.tokens
            row += [t.input, t.output, t.cache_create, t.cache_read, t.total]
        row += [
            " ".join(label for label, fired in s.warnings_fired.items() if fired),
            " ".join(s.tags),
            s.environment or "",
            s.external_id or "",
        ]
        writer.writerow(row)
    return buffer.getvalue()


def _markdown_stats(sessions: Sequence[Session]) -> str:
    completed = [s for s in sessions if s.end_time is not None]
    total = sum(s.duration or 0 for s in completed)
    average = total / len(completed) if completed else 0
    tokens = sum(s.tokens.total for s in sessions)
    types = Counter((_project(s).get("type") or "unknown") for s in sessions)

    lines = [
        "## Summary Statistics",
        "",
        f"- **Total Duration:** {format_duration(total)}",
        f"- **Average Session:** {format_duration(average)}",
        f"- **Total Tokens Used:** {tokens:,}",
        f"- **Active Sessions:** {len(sessions) - len(completed)}",
        "",
        "### Project Types",
        "",
    ]
    lines += [f"- **{name}:** {count} sessions" for name, count in types.items()]
    return "\n".join(lines) + "\n\n"


def _markdown_charts(sessions: Sequence[Session]) -> str:
    by_day = Counter(s.start_time.date().isoformat() for s in sessions)
    by_project = Counter((_project(s).get("name") or "Unknown") for s in sessions)

    lines = ["## Visual Analysis", "", "### Sessions by Day", "", "```"]
    for day in sorted(by_day):
        count = by_day[day]
        lines.append(f"{day}: {'█' * max(1, round(count / 2))} ({count})")
    lines += ["```", "", "### Sessions by Project", ""]
    for name, count in by_project.most_common():
        percentage = round(count / len(sessions) * 100) if sessions else 0
        lines.append(f"- **{name}:** {count} sessions ({percentage}%)")
    return "\n".join(lines) + "\n\n"


def _md_cell(value: Any) -> str:
    return str(value).replace("|", "\\|")


def render_markdown(sessions: Sequence[Session], options: ExportOptions, now: datetime) -> str:
    parts = [
        f"# {options.title}\n\n",
        f"**Generated:** {now.strftime('%Y-%m-%d %H:%M:%S %Z')}\n",
        f"**Total Sessions:** {len(sessions)}\n\n",
    ]
    if options.include_stats:
        parts.append(_markdown_stats(sessions))

    parts.append("## Session Details\n\n")
    parts.append("| Start Time | Duration | Mode | Project | Type | Tokens | Status |\n")
    parts.append("|------------|----------|------|---------|------|--------|--------|\n")
    for s in sessions:
        project = _project(s)
        duration = format_duration(s.duration) if s.end_time is not None else "In Progress"
        cells = [
            s.start_time.strftime("%Y-%m-%d %H:%M"),
            duration,
            s.mode,
            project.get("name") or "Unknown",
            project.get("type") or "unknown",
            f"{s.tokens.total:,}",
            "Completed" if s.end_time is not None else "Active",
        ]
        parts.append("| " + " | ".join(_md_cell(c) for c in cells) + " |\n")
    parts.append("\n")

    if options.include_charts and sessions:
        parts.append(_markdown_charts(sessions))
    return "".join(parts)


def render(
    sessions: Sequence[Session],
    fmt: str,
    options: Optional[ExportOptions] = None,
    *,
    now: Optional[datetime] = None,
) -> str:
    """Render sessions in `fmt` ("json", "csv", "markdown"/"md")."""
    options = options or ExportOptions()
    now = now or utc_now()
    fmt = (fmt or "").lower()
    if fmt == "md":
        fmt = "markdown"
    if fmt == "json":
        return render_json(sessions, options, now)
    if fmt == "csv":
        return render_csv(sessions, options)
    if fmt == "markdown":
        return render_markdown(sessions, options, now)
    raise ExportError(f"Unknown export format '{fmt}' (expected one of {', '.join(FORMATS)})")


def parse_range(text: str, now: Optional[datetime] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Resolve today | week | month | all | YYYY-MM-DD[:YYYY-MM-DD] to a UTC window.

    Bounds are inclusive; `None` means unbounded.
    """
    now = now or utc_now()
    text = (text or "all").strip().lower()
    if text == "all":
        return None, None
    if text == "today":
        start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
        return start, now
    if text == "week":
        return now - timedelta(days=7), now
    if text == "month":
        return now - timedelta(days=30), now

    first, _, last = text.partition(":")
    try:
        start_day = date.fromisoformat(first)
        end_day = date.fromisoformat(last) if last else start_day
    except ValueError as e:
        raise ExportError(f"Invalid range '{text}': {e}") from e
    if end_day < start_day:
        raise ExportError(f"Invalid range '{text}': end is before start")
    return (
        datetime.combine(start_day, time.min, tzinfo=timezone.utc),
        datetime.combine(end_day, time.max, tzinfo=timezone.utc),
    )


def filter_by_range(
    sessions: Iterable[Session], start: Optional[datetime], end: Optional[datetime]
) -> List[Session]:
    return [
        s
        for s in sessions
        if (start is None or s.start_time >= start) and (end is None or s.start_time <= end)
    ]


def filter_by_project(sessions: Iterable[Session], project_name: str) -> List[Session]:
    return [s for s in sessions if _project(s).get("name") == project_name]


def filter_by_type(sessions: Iterable[Session], project_type: str) -> List[Session]:
    return [s for s in sessions if _project(s).get("type") == project_type]


def export_to_files(
    sessions: Sequence[Session],
    base_path: Path,
    formats: Sequence[str] = FORMATS,
    options: Optional[ExportOptions] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Path]:
    """Write `<base_path>.<ext>` per format; returns format -> written path.

    A failing format is logged and skipped so the others are still written.
    """
    written: Dict[str, Path] = {}
    for fmt in formats:
        fmt = "markdown" if fmt == "md" else fmt
        target = base_path.with_name(base_path.name + FORMAT_EXTENSIONS.get(fmt, f".{fmt}"))
        try:
            content = render(sessions, fmt, options, now=now)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except (ExportError, OSError) as e:
            logger.error(f"{fmt} export failed: {e}")
            continue
        written[fmt] = target
    return written
