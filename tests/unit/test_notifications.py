"""Unit tests for notification sinks."""

import subprocess

from rich.console import Console

from session_tracker import notifications
from session_tracker.config import TrackerConfig
from session_tracker.notifications import (
    CompositeNotifier,
    ConsoleNotifier,
    DesktopNotifier,
    build_notifier,
    safe_notify,
)


class Exploding:
    def notify(self, title, message):
        raise RuntimeError("no display")


class Recording:
    def __init__(self):
        self.calls = []

    def notify(self, title, message):
        self.calls.append((title, message))


class TestDesktopCommand:
    def test_macos_uses_osascript(self):
        cmd = DesktopNotifier("macOS")._command('Say "hi"', "body")
        assert cmd[0] == "osascript"
        assert '\\"hi\\"' in cmd[2]

    def test_wsl_uses_powershell_toast(self):
        cmd = DesktopNotifier("WSL")._command("It's time", "Break")
        assert cmd[0].startswith("powershell")
        assert cmd[1:3] == ["-NoProfile", "-Command"]
        assert "It''s time" in cmd[3]

    def test_linux_uses_notify_send(self, monkeypatch):
        monkeypatch.setattr(notifications.shutil, "which", lambda name: "/usr/bin/notify-send")
        cmd = DesktopNotifier("Linux")._command("Title", "Body")
        assert cmd[0] == "notify-send"
        assert cmd[-2:] == ["Title", "Body"]

    def test_linux_without_backend(self, monkeypatch):
        monkeypatch.setattr(notifications.shutil, "which", lambda name: None)
        assert DesktopNotifier("Linux")._command("Title", "Body") is None

    def test_nonzero_exit_does_not_raise(self, monkeypatch):
        monkeypatch.setattr(
            notifications.subprocess,
            "run",
            lambda cmd, **kw: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="denied"),
        )
        DesktopNotifier("macOS").notify("Title", "Body")


class TestComposite:
    def test_failures_isolated(self):
        recording = Recording()
        CompositeNotifier([Exploding(), recording]).notify("T", "M")
        assert recording.calls == [("T", "M")]

    def test_safe_notify_swallows_and_accepts_none(self):
        safe_notify(Exploding(), "T", "M")
        safe_notify(None, "T", "M")


class TestBuildNotifier:
    def test_disabled(self):
        notifier = build_notifier(TrackerConfig({"notifications": {"enabled": False}}))
        assert notifier.notifiers == []

    def test_console_only(self):
        console = Console(record=True, width=80)
        notifier = build_notifier(TrackerConfig({"notifications": {"desktop": False}}), console)
        assert [type(n) for n in notifier.notifiers] == [ConsoleNotifier]
        notifier.notify("Pomodoro finished", "Take a break.")
        assert "Pomodoro finished" in console.export_text()
