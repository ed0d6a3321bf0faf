"""Unit tests for project and git detection."""

import json
import subprocess

import pytest

from session_tracker import project_detector
from session_tracker.project_detector import (
    detect_project,
    determine_node_project_type,
    get_git_info,
    validate_tags,
)


class TestDetectProject:
    def test_missing_directory(self, tmp_path):
        info = detect_project(str(tmp_path / "nope"))
        assert info["name"] == "Unknown Project"
        assert info["type"] == "unknown"

    def test_plain_directory(self, tmp_path):
        info = detect_project(str(tmp_path), include_git=False)
        assert info == {
            "name": tmp_path.name,
            "path": str(tmp_path),
            "type": "unknown",
            "git": None,
            "packageInfo": None,
        }

    def test_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text(
            json.dumps({"name": "shop", "version": "1.2.0", "dependencies": {"react": "^18"}}),
            encoding="utf-8",
        )
        info = detect_project(str(tmp_path), include_git=False)
        assert info["name"] == "shop"
        assert info["type"] == "react"
        assert info["packageInfo"]["version"] == "1.2.0"

    def test_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "tracker"\nversion = "0.3.0"\n', encoding="utf-8"
        )
        info = detect_project(str(tmp_path), include_git=False)
        assert (info["name"], info["type"]) == ("tracker", "python")
        assert info["packageInfo"]["configFile"] == "pyproject.toml"

    def test_setup_py(self, tmp_path):
        (tmp_path / "setup.py").write_text('setup(name="legacy-pkg")\n', encoding="utf-8")
        assert detect_project(str(tmp_path), include_git=False)["name"] == "legacy-pkg"

    def test_cargo(self, tmp_path):
        (tmp_path / "Cargo.toml").write_text('[package]\nname = "fastthing"\n', encoding="utf-8")
        info = detect_project(str(tmp_path), include_git=False)
        assert (info["name"], info["type"]) == ("fastthing", "rust")

    def test_go_mod(self, tmp_path):
        (tmp_path / "go.mod").write_text("module github.com/me/svc\n\ngo 1.22\n", encoding="utf-8")
        info = detect_project(str(tmp_path), include_git=False)
        assert (info["name"], info["type"]) == ("svc", "go")

    def test_broken_manifest_still_detected(self, tmp_path):
        (tmp_path / "package.json").write_text("{oops", encoding="utf-8")
        info = detect_project(str(tmp_path), include_git=False)
        assert (info["name"], info["type"]) == (tmp_path.name, "node")

    def test_git_config_remote_name(self, tmp_path):
        git_dir = tmp_path / ".git"
        git_dir.mkdir()
        (git_dir / "config").write_text(
            '[remote "origin"]\n\turl = git@github.com:me/cool-repo.git\n', encoding="utf-8"
        )
        info = detect_project(str(tmp_path), include_git=False)
        assert (info["name"], info["type"]) == ("cool-repo", "git")


class TestNodeType:
    @pytest.mark.parametrize(
        "deps, expected",
        [
            ({"vue": "3"}, "vue"),
            ({"express": "4"}, "node-backend"),
            ({"typescript": "5"}, "typescript"),
            ({}, "node"),
        ],
    )
    def test_types(self, deps, expected):
        assert determine_node_project_type({"dependencies": deps}) == expected


class TestGitInfo:
    def test_not_a_repo(self, tmp_path):
        assert get_git_info(tmp_path) is None

    def test_git_missing(self, tmp_path, monkeypatch):
        (tmp_path / ".git").mkdir()

        def missing(*args, **kwargs):
            raise FileNotFoundError("git")

        monkeypatch.setattr(project_detector.subprocess, "run", missing)
        assert get_git_info(tmp_path) is None

    def test_git_timeout(self, tmp_path, monkeypatch):
        (tmp_path / ".git").mkdir()

        def slow(*args, **kwargs):
            raise subprocess.TimeoutExpired(cmd="git", timeout=5)

        monkeypatch.setattr(project_detector.subprocess, "run", slow)
        assert get_git_info(tmp_path) is None

    def test_parses_git_output(self, tmp_path, monkeypatch):
        (tmp_path / ".git").mkdir()
        outputs = {
            ("rev-parse", "--abbrev-ref", "HEAD"): "feature/x\n",
            ("rev-parse", "HEAD"): "0123456789abcdef\n",
            ("log", "-1", "--pretty=%B"): "Fix parser\n\nLonger body\n",
            ("config", "--get", "remote.origin.url"): "https://example.com/me/repo.git\n",
            ("status", "--porcelain"): " M file.py\n",
        }

        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 0, stdout=outputs[tuple(cmd[1:])], stderr="")

        monkeypatch.setattr(project_detector.subprocess, "run", fake_run)
        assert get_git_info(tmp_path) == {
            "branch": "feature/x",
            "lastCommit": "01234567",
            "lastCommitMessage": "Fix parser",
            "remoteUrl": "https://example.com/me/repo.git",
            "hasUncommittedChanges": True,
        }


class TestValidateTags:
    def test_comma_string(self):
        assert validate_tags("Bug, feature ,bug") == ["bug", "feature"]

    def test_strips_invalid_characters(self):
        assert validate_tags(["hot fix!", "v1.2"]) == ["hotfix", "v12"]

    def test_caps_at_ten(self):
        assert len(validate_tags([f"t{i}" for i in range(15)])) == 10

    def test_non_list(self):
        assert validate_tags(42) == []
