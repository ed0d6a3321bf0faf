"""Project and git metadata for the directory a session was started in."""

from __future__ import annotations

import json
import re
import subprocess
import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .logging_config import setup_logger

logger = setup_logger("session_tracker.project_detector")

MAX_TAGS = 10
GIT_TIMEOUT_SECONDS = 5

ProjectInfo = Dict[str, Any]
Detection = Dict[str, Any]


def _run_git(path: Path, *args: str) -> Optional[str]:
    result = subprocess.run(
        ["git", *args],
        cwd=str(path),
        capture_output=True,
        text=True,
        timeout=GIT_TIMEOUT_SECONDS,
        check=False,
    )
    if result.returncode != 0:
        return None
    return (result.stdout or "").strip()


def get_git_info(path: Path) -> Optional[Dict[str, Any]]:
    """Branch, short HEAD and remote for a git checkout; None when not a repo or git fails."""
    if not (path / ".git").exists():
        return None
    try:
        branch = _run_git(path, "rev-parse", "--abbrev-ref", "HEAD")
        if branch is None:
            return None
        head = _run_git(path, "rev-parse", "HEAD")
        message = _run_git(path, "log", "-1", "--pretty=%B")
        remote = _run_git(path, "config", "--get", "remote.origin.url")
        status = _run_git(path, "status", "--porcelain")
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"git info unavailable for {path}: {e}")
        return None

    return {
        "branch": branch,
        "lastCommit": head[:8] if head else None,
        "lastCommitMessage": message.splitlines()[0] if message else None,
        "remoteUrl": remote or None,
        "hasUncommittedChanges": bool(status) if status is not None else None,
    }


def determine_node_project_type(package_json: Dict[str, Any]) -> str:
    deps: Dict[str, Any] = {}
    deps.update(package_json.get("dependencies") or {})
    deps.update(package_json.get("devDependencies") or {})

    checks = [
        (("react", "@types/react"), "react"),
        (("vue", "@vue/cli"), "vue"),
        (("angular", "@angular/core"), "angular"),
        (("svelte", "@sveltejs/kit"), "svelte"),
        (("next", "next.js"), "nextjs"),
        (("nuxt", "@nuxt/core"), "nuxt"),
        (("express", "fastify", "koa"), "node-backend"),
        (("electron",), "electron"),
        (("typescript", "@types/node"), "typescript"),
    ]
    for names, project_type in checks:
        if any(name in deps for name in names):
            return project_type
    return "node"


def _from_package_json(path: Path) -> Optional[Detection]:
    file = path / "package.json"
    if not file.exists():
        return None
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {"name": path.name, "type": "node", "packageInfo": None}
    return {
        "name": data.get("name") or path.name,
        "type": determine_node_project_type(data),
        "packageInfo": {
            "version": data.get("version"),
            "description": data.get("description"),
            "main": data.get("main"),
            "scripts": list((data.get("scripts") or {}).keys()),
            "dependencies": list((data.get("dependencies") or {}).keys()),
            "devDependencies": list((data.get("devDependencies") or {}).keys()),
        },
    }


def _read_toml(file: Path) -> Dict[str, Any]:
    with open(file, "rb") as f:
        return tomllib.load(f)


def _from_pyproject(path: Path) -> Optional[Detection]:
    file = path / "pyproject.toml"
    if not file.exists():
        return None
    try:
        data = _read_toml(file)
    except (OSError, tomllib.TOMLDecodeError):
        return {"name": path.name, "type": "python", "packageInfo": None}
    project = data.get("project") or data.get("tool", {}).get("poetry") or {}
    return {
        "name": project.get("name") or path.name,
        "type": "python",
        "packageInfo": {"version": project.get("version"), "configFile": "pyproject.toml"},
    }


_SETUP_NAME_RE = re.compile(r"""name\s*=\s*["']([^"']+)["']""")


def _from_setup_py(path: Path) -> Optional[Detection]:
    file = path / "setup.py"
    if not file.exists():
        return None
    try:
        match = _SETUP_NAME_RE.search(file.read_text(encoding="utf-8"))
    except OSError:
        match = None
    return {
        "name": match.group(1) if match else path.name,
        "type": "python",
        "packageInfo": {"configFile": "setup.py"},
    }


def _from_cargo(path: Path) -> Optional[Detection]:
    file = path / "Cargo.toml"
    if not file.exists():
        return None
    try:
        package = _read_toml(file).get("package") or {}
    except (OSError, tomllib.TOMLDecodeError):
        return {"name": path.name, "type": "rust", "packageInfo": None}
    return {
        "name": package.get("name") or path.name,
        "type": "rust",
        "packageInfo": {"version": package.get("version"), "configFile": "Cargo.toml"},
    }


def _from_composer(path: Path) -> Optional[Detection]:
    file = path / "composer.json"
    if not file.exists():
        return None
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {"name": path.name, "type": "php", "packageInfo": None}
    return {
        "name": data.get("name") or path.name,
        "type": "php",
        "packageInfo": {
            "version": data.get("version"),
            "description": data.get("description"),
            "configFile": "composer.json",
        },
    }


def _from_gemfile(path: Path) -> Optional[Detection]:
    if not (path / "Gemfile").exists():
        return None
    return {"name": path.name, "type": "ruby", "packageInfo": {"configFile": "Gemfile"}}


_GO_MODULE_RE = re.compile(r"^module\s+(\S+)", re.MULTILINE)


def _from_go_mod(path: Path) -> Optional[Detection]:
    file = path / "go.mod"
    if not file.exists():
        return None
    try:
        match = _GO_MODULE_RE.search(file.read_text(encoding="utf-8"))
    except OSError:
        match = None
    module = match.group(1) if match else None
    return {
        "name": module.rstrip("/").rsplit("/", 1)[-1] if module else path.name,
        "type": "go",
        "packageInfo": {"module": module, "configFile": "go.mod"},
    }


def _from_makefile(path: Path) -> Optional[Detection]:
    for name in ("Makefile", "makefile", "GNUmakefile"):
        if (path / name).exists():
            return {"name": path.name, "type": "makefile", "packageInfo": {"configFile": name}}
    return None


_GIT_URL_RE = re.compile(r"^\s*url\s*=\s*(.+)$", re.MULTILINE)
_REPO_NAME_RE = re.compile(r"[/:]([^/:]+?)(?:\.git)?/?$")


def _from_git_config(path: Path) -> Optional[Detection]:
    file = path / ".git" / "config"
    if not file.exists():
        return None
    try:
        url_match = _GIT_URL_RE.search(file.read_text(encoding="utf-8"))
    except OSError:
        url_match = None
    if url_match:
        url = url_match.group(1).strip()
        repo_match = _REPO_NAME_RE.search(url)
        if repo_match:
            return {"name": repo_match.group(1), "type": "git", "packageInfo": {"remoteUrl": url}}
    return {"name": path.name, "type": "git", "packageInfo": None}


DETECTORS: List[Callable[[Path], Optional[Detection]]] = [
    _from_package_json,
    _from_pyproject,
    _from_setup_py,
    _from_cargo,
    _from_composer,
    _from_gemfile,
    _from_go_mod,
    _from_makefile,
    _from_git_config,
]


def detect_project(path: Optional[str], *, include_git: bool = True) -> ProjectInfo:
    """Describe the project at `path`: {name, path, type, git, packageInfo}.

    The first detector that recognises a manifest wins; a detector that
    raises is logged and skipped.
    """
    if not path or not Path(path).is_dir():
        return {
            "name": "Unknown Project",
            "path": path or "Unknown",
            "type": "unknown",
            "git": None,
            "packageInfo": None,
        }

    root = Path(path)
    project: ProjectInfo = {
        "name": root.name,
        "path": str(root),
        "type": "unknown",
        "git": get_git_info(root) if include_git else None,
        "packageInfo": None,
    }

    for detector in DETECTORS:
        try:
            result = detector(root)
        except Exception as e:
            logger.debug(f"{detector.__name__} failed for {root}: {e}")
            continue
        if result:
            project["name"] = result.get("name") or project["name"]
            project["type"] = result.get("type") or project["type"]
            project["packageInfo"] = result.get("packageInfo")
            break

    return project


_TAG_INVALID_RE = re.compile(r"[^a-z0-9_-]")


def validate_tags(tags: Any) -> List[str]:
    """Lowercase, strip to [a-z0-9_-], drop empties and duplicates, keep at most 10."""
    if isinstance(tags, str):
        tags = tags.split(",")
    if not isinstance(tags, (list, tuple)):
        return []
    cleaned: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        value = _TAG_INVALID_RE.sub("", tag.strip().lower())
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned[:MAX_TAGS]
