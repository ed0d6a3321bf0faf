"""Unit tests for the JSON session store."""

import json
import os
from datetime import timedelta

import pytest

from session_tracker.models import CURRENT_SCHEMA_VERSION, Session, StoreDocument, parse_timestamp
from session_tracker.store import (
    DEFAULT_STORE_FILENAME,
    SessionStore,
    StoreWriteError,
    resolve_store_path,
)
from session_tracker.timer_modes import builtin_mode


@pytest.fixture
def store(tmp_path, clock):
    return SessionStore(tmp_path / "sessions.json", clock=clock, cwd=str(tmp_path))


def _session(clock, **kwargs):
    kwargs.setdefault("mode_config", builtin_mode("claude-max").to_snapshot())
    kwargs.setdefault("working_directory", "/work")
    return Session(id=kwargs.pop("id", "session_1"), start_time=clock.now, **kwargs)


class TestResolvePath:
    def test_relative_to_cwd(self, tmp_path):
        assert resolve_store_path(cwd=str(tmp_path)) == tmp_path / DEFAULT_STORE_FILENAME

    def test_absolute_kept(self, tmp_path):
        target = tmp_path / "elsewhere.json"
        assert resolve_store_path(str(target), cwd="/ignored") == target


class TestLoad:
    def test_missing_file_is_empty_document(self, store, clock):
        document = store.load()
        assert document.sessions == []
        assert document.version == CURRENT_SCHEMA_VERSION
        assert document.last_reset == clock.now
        assert store.last_error is None
        assert not store.exists()

    @pytest.mark.parametrize("content", ["", "{not json", "[1, 2, 3]"])
    def test_corrupt_file_degrades(self, store, content):
        store.path.write_text(content, encoding="utf-8")
        document = store.load()
        assert document.sessions == []
        assert store.last_error is not None
        # Never rewritten by a load.
        assert store.path.read_text(encoding="utf-8") == content

    @pytest.mark.parametrize(
        "start",
        [1e30, -1e30, "9999-12-31T23:59:59-05:00"],
    )
    def test_out_of_range_timestamp_does_not_crash(self, store, clock, start):
        store.path.write_text(
            json.dumps({"version": 2, "sessions": [{"id": "x", "startTime": start}]}),
            encoding="utf-8",
        )
        document = store.load()
        assert [s.id for s in document.sessions] == ["x"]
        assert document.sessions[0].start_time == clock.now

    def test_out_of_range_epoch_is_unparseable(self):
        assert parse_timestamp(1e30) is None
        assert parse_timestamp(float("nan")) is None

    def test_infinite_duration_does_not_crash(self, store):
        store.path.write_text(
            '{"version": 2, "sessions": [{"id": "x", "startTime": "2025-03-10T08:00:00Z",'
            ' "endTime": "2025-03-10T08:30:00Z", "duration": Infinity}]}',
            encoding="utf-8",
        )
        document = store.load()
        assert document.sessions[0].duration == 0

    def test_legacy_document_migrated_on_load(self, store):
        store.path.write_text(
            json.dumps({"sessions": [{"id": "old", "startTime": "2025-03-10T08:00:00Z"}]}),
            encoding="utf-8",
        )
        document = store.load()
        assert document.version == CURRENT_SCHEMA_VERSION
        assert document.sessions[0].mode == "claude-max"
        assert document.sessions[0].working_directory == store.cwd


class TestSave:
    def test_round_trip(self, store, clock):
        document = store.load()
        document.sessions.append(_session(clock, tags=["api"]))
        document.total_usage = 1234
        store.save(document)

        loaded = store.load()
        assert loaded.to_dict() == document.to_dict()
        assert loaded.last_update == clock.now

    def test_pretty_printed_utf8(self, store, clock):
        document = store.load()
        document.sessions.append(_session(clock, working_directory="/tmp/café"))
        store.save(document)
        text = store.path.read_text(encoding="utf-8")
        assert text.startswith("{\n  ")
        assert "café" in text
        assert text.endswith("\n")

    def test_no_temp_files_left(self, store):
        store.save(store.load())
        assert os.listdir(store.path.parent) == [store.path.name]

    def test_corrupt_file_backed_up_before_overwrite(self, store):
        store.path.write_text("{broken", encoding="utf-8")
        document = store.load()
        store.save(document)
        backups = [p for p in store.path.parent.iterdir() if ".corrupt-" in p.name]
        assert len(backups) == 1
        assert backups[0].read_text(encoding="utf-8") == "{broken"
        assert json.loads(store.path.read_text(encoding="utf-8"))["sessions"] == []

    def test_write_failure_raises(self, tmp_path, clock):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = SessionStore(blocker / "sessions.json", clock=clock)
        document = StoreDocument.empty(clock.now)
        with pytest.raises(StoreWriteError):
            store.save(document)
        assert document.last_update is None


class TestRollovers:
    def test_daily_reset_after_window(self, store, clock):
        document = store.load()
        document.total_usage = 5000
        store.save(document)

        clock.advance(hours=23)
        assert store.load().total_usage == 5000

        clock.advance(hours=2)
        assert store.load().total_usage == 0

    def test_monthly_reset_after_window(self, store, clock):
        document = store.load()
        document.monthly_session_count = 12
        store.save(document)

        clock.advance(days=31)
        assert store.load().monthly_session_count == 0

    def test_rollover_idempotent(self, clock):
        document = StoreDocument.empty(clock.now - timedelta(days=2))
        document.total_usage = 100
        assert document.apply_rollovers(clock.now) == ["daily"]
        assert document.apply_rollovers(clock.now) == []
        assert document.total_usage == 0
