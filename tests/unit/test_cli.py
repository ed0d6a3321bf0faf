"""CLI tests using typer's CliRunner."""

import asyncio
import json
import signal

import pytest
from typer.testing import CliRunner

from session_tracker import __version__
from session_tracker.claude_status import ClaudeStatus
from session_tracker.cli import app
from session_tracker.commands import check as check_module
from session_tracker.commands import session as session_module
from session_tracker.store import DEFAULT_STORE_FILENAME

runner = CliRunner()


@pytest.fixture(autouse=True)
def workspace(tmp_path, monkeypatch):
    """Run every command from an empty project directory without a claude binary."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    monkeypatch.setattr(session_module, "get_claude_version", lambda: (None, "claude CLI not found on PATH"))
    return project


def _store(workspace):
    return json.loads((workspace / DEFAULT_STORE_FILENAME).read_text(encoding="utf-8"))


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestStartEnd:
    def test_start_no_wait_creates_session(self, workspace):
        result = runner.invoke(app, ["start", "--no-wait", "--mode", "pomodoro", "--tags", "api,Docs"])
        assert result.exit_code == 0, result.stdout
        assert "Session tracking started" in result.stdout

        data = _store(workspace)
        assert data["version"] == 2
        assert len(data["sessions"]) == 1
        session = data["sessions"][0]
        assert session["mode"] == "pomodoro"
        assert session["tags"] == ["api", "docs"]
        assert session["workingDirectory"] == str(workspace)
        assert session["project"]["name"] == "project"

    def test_missing_claude_cli_warns(self):
        result = runner.invoke(app, ["start", "--no-wait"])
        assert result.exit_code == 0
        assert "may not be authenticated" in result.stdout
        assert "claude CLI not found on PATH" in result.stdout

    def test_available_claude_cli_no_warning(self, monkeypatch):
        monkeypatch.setattr(session_module, "get_claude_version", lambda: ("1.0.0", None))
        result = runner.invoke(app, ["start", "--no-wait"])
        assert "may not be authenticated" not in result.stdout

    def test_custom_tags_added_to_every_session(self, workspace):
        runner.invoke(app, ["config", "set", "project.customTags", "[client-a]"])
        runner.invoke(app, ["start", "--no-wait", "--tags", "api"])
        assert _store(workspace)["sessions"][0]["tags"] == ["client-a", "api"]

    def test_git_detection_can_be_disabled(self, workspace, monkeypatch):
        monkeypatch.setattr(
            "session_tracker.project_detector.get_git_info",
            lambda path: pytest.fail("git should not be queried"),
        )
        (workspace / ".git").mkdir()
        runner.invoke(app, ["config", "set", "project.detectFromGit", "false"])
        result = runner.invoke(app, ["start", "--no-wait"])
        assert result.exit_code == 0
        assert _store(workspace)["sessions"][0]["project"]["git"] is None

    def test_second_start_reports_existing(self, workspace):
        runner.invoke(app, ["start", "--no-wait"])
        result = runner.invoke(app, ["start", "--no-wait"])
        assert result.exit_code == 0
        assert "Active session already exists." in result.stdout
        assert len(_store(workspace)["sessions"]) == 1

    def test_invalid_duration_reported_without_failing(self, workspace):
        result = runner.invoke(app, ["start", "--no-wait", "--duration", "0"])
        assert result.exit_code == 0
        assert "Invalid timer settings" in result.stdout
        assert not (workspace / DEFAULT_STORE_FILENAME).exists()

    def test_end_without_session(self):
        result = runner.invoke(app, ["end"])
        assert result.exit_code == 0
        assert "No active session found" in result.stdout

    def test_start_then_end(self, workspace):
        runner.invoke(app, ["start", "--no-wait"])
        result = runner.invoke(app, ["end"])
        assert result.exit_code == 0
        assert "Session ended" in result.stdout
        session = _store(workspace)["sessions"][0]
        assert session["endTime"] is not None
        assert session["duration"] is not None

    def test_store_write_failure_exits_1(self, workspace):
        (workspace / "blocked").write_text("x")
        runner.invoke(app, ["config", "set", "sessions.storeFile", str(workspace / "blocked" / "s.json")])
        result = runner.invoke(app, ["start", "--no-wait"])
        assert result.exit_code == 1


class TestStatus:
    def test_no_active_session(self):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "No active session" in result.stdout

    def test_active_session(self, workspace):
        runner.invoke(app, ["start", "--no-wait", "--mode", "deep-work"])
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Deep Work" in result.stdout
        assert "ACTIVE" in result.stdout

    def test_corrupt_store_reported(self, workspace):
        (workspace / DEFAULT_STORE_FILENAME).write_text("{nope", encoding="utf-8")
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Warning" in result.stdout
        assert (workspace / DEFAULT_STORE_FILENAME).read_text(encoding="utf-8") == "{nope"


class TestConfig:
    def test_set_then_get(self):
        assert runner.invoke(app, ["config", "set", "sessions.pollingInterval", "500"]).exit_code == 0
        result = runner.invoke(app, ["config", "get", "sessions.pollingInterval"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "500"

    def test_set_invalid_value_rejected(self):
        result = runner.invoke(app, ["config", "set", "sessions.pollingInterval", "0"])
        assert result.exit_code == 0
        assert "not saved" in result.stdout
        assert runner.invoke(app, ["config", "get", "sessions.pollingInterval"]).stdout.strip() == "2000"

    def test_get_unknown_key(self):
        result = runner.invoke(app, ["config", "get", "no.such.key"])
        assert result.exit_code == 0
        assert "Unknown key" in result.stdout

    def test_reset(self):
        runner.invoke(app, ["config", "set", "sessions.pollingInterval", "500"])
        assert runner.invoke(app, ["config", "reset", "--yes"]).exit_code == 0
        assert runner.invoke(app, ["config", "get", "sessions.pollingInterval"]).stdout.strip() == "2000"

    def test_modes(self):
        result = runner.invoke(app, ["config", "modes"])
        assert result.exit_code == 0
        assert "pomodoro" in result.stdout
        assert "quick-fix" in result.stdout


class TestExport:
    def test_json_to_stdout(self):
        runner.invoke(app, ["start", "--no-wait"])
        runner.invoke(app, ["end"])
        result = runner.invoke(app, ["export", "--format", "json", "--output", "-"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["metadata"]["totalSessions"] == 1

    def test_all_formats_to_files(self, workspace):
        runner.invoke(app, ["start", "--no-wait"])
        result = runner.invoke(app, ["export", "--format", "all", "--output", str(workspace / "report")])
        assert result.exit_code == 0
        for suffix in (".json", ".csv", ".md"):
            assert (workspace / f"report{suffix}").exists()

    def test_unknown_format(self):
        result = runner.invoke(app, ["export", "--format", "xml"])
        assert result.exit_code == 0
        assert "Unknown format" in result.stdout

    def test_bad_range(self):
        result = runner.invoke(app, ["export", "--range", "someday", "--output", "-"])
        assert result.exit_code == 0
        assert "Invalid range" in result.stdout


class TestProjectAndCheck:
    def test_project_detect_json(self, workspace):
        (workspace / "pyproject.toml").write_text('[project]\nname = "demo"\n', encoding="utf-8")
        result = runner.invoke(app, ["project", "detect", str(workspace), "--json"])
        assert result.exit_code == 0
        info = json.loads(result.stdout)
        assert (info["name"], info["type"]) == ("demo", "python")

    def test_project_detect_missing_dir(self, workspace):
        result = runner.invoke(app, ["project", "detect", str(workspace / "nope")])
        assert result.exit_code == 0
        assert "Not a directory" in result.stdout

    def test_project_info(self):
        runner.invoke(app, ["start", "--no-wait"])
        result = runner.invoke(app, ["project", "info"])
        assert result.exit_code == 0
        assert "Sessions:" in result.stdout

    def test_check(self, monkeypatch):
        monkeypatch.setattr(
            check_module,
            "check_claude_code",
            lambda: ClaudeStatus(cli_available=False, error="claude CLI not found on PATH"),
        )
        result = runner.invoke(app, ["check"])
        assert result.exit_code == 0
        assert "claude CLI not found on PATH" in result.stdout
        assert "Store file" in result.stdout


class TestSignalHandlers:
    def test_sigint_disarms_before_loop_resumes(self, monkeypatch):
        calls = []
        installed = {}

        class Controller:
            def shutdown(self):
                calls.append("shutdown")

        monkeypatch.setattr(
            session_module.signal, "signal", lambda signum, handler: installed.__setitem__(signum, handler)
        )

        async def scenario():
            stop = asyncio.Event()
            session_module.install_signal_handlers(Controller(), stop)
            installed[signal.SIGINT](signal.SIGINT, None)
            # shutdown already ran; the stop flag is only set once the loop gets control.
            assert calls == ["shutdown"]
            assert not stop.is_set()
            await asyncio.wait_for(stop.wait(), timeout=1)

        asyncio.run(scenario())
        assert set(installed) == {signal.SIGINT, signal.SIGTERM}
        assert calls == ["shutdown"]
