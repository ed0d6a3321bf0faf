"""Shared fixtures for the session tracker tests."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Loggers are configured at import time; keep their files out of $HOME.
os.environ.setdefault(
    "SESSION_TRACKER_LOG_DIR", os.path.join(tempfile.gettempdir(), "session-tracker-test-logs")
)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeHandle:
    def __init__(self, loop, when, callback, args):
        self.loop = loop
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Just enough of an event loop for `call_later`, driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles = []

    def call_later(self, delay, callback, *args):
        when = self.clock.now + timedelta(seconds=delay)
        handle = FakeHandle(self, when, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def advance(self, **kwargs) -> int:
        """Move the clock forward and run every handle that became due, in order."""
        target = self.clock.now + timedelta(**kwargs)
        fired = 0
        while True:
            due = sorted(
                (h for h in self.pending if h.when <= target), key=lambda h: h.when
            )
            if not due:
                break
            handle = due[0]
            handle.cancelled = True
            self.clock.now = max(self.clock.now, handle.when)
            handle.callback(*handle.args)
            fired += 1
        self.clock.now = target
        return fired


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, title: str, message: str) -> None:
        self.messages.append((title, message))

    @property
    def titles(self):
        return [title for title, _ in self.messages]


@pytest.fixture(autouse=True)
def isolated_home(tmp_path_factory, monkeypatch):
    """Point config and home lookups at a temporary directory."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("SESSION_TRACKER_HOME", str(home / ".claude-session-tracker"))
    return home


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_loop(clock):
    return FakeLoop(clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()
