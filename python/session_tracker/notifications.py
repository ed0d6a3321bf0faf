"""Notification sinks: rich console output plus a best-effort desktop popup."""

from __future__ import annotations

import shutil
import subprocess
from typing import Iterable, List, Optional, Protocol

from rich.console import Console

from .logging_config import setup_logger
from .models import detect_environment

logger = setup_logger("session_tracker.notifications")


class Notifier(Protocol):
    def notify(self, title: str, message: str) -> None: ...


class ConsoleNotifier:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def notify(self, title: str, message: str) -> None:
        self.console.print(f"\n[bold yellow]{title}[/bold yellow]")
        self.console.print(f"{message}\n")


def _escape_applescript(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _escape_powershell(text: str) -> str:
    return text.replace("'", "''")


_TOAST_SCRIPT = """
[Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
[Windows.Data.Xml.Dom.XmlDocument, Windows.Data.Xml.Dom.XmlDocument, ContentType = WindowsRuntime] | Out-Null
$template = @'
<toast scenario="reminder"><visual><binding template="ToastGeneric">
<text>{title}</text><text>{message}</text>
<text placement="attribution">Claude Session Tracker</text>
</binding></visual></toast>
'@
$xml = New-Object Windows.Data.Xml.Dom.XmlDocument
$xml.LoadXml($template)
$toast = [Windows.UI.Notifications.ToastNotification]::new($xml)
[Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier('Claude Session Tracker').Show($toast)
"""


class DesktopNotifier:
    """Native popup: osascript (macOS), notify-send (Linux), toast (WSL/Windows)."""

    def __init__(self, environment: Optional[str] = None, timeout: float = 5):
        self.environment = environment or detect_environment()
        self.timeout = timeout

    def _command(self, title: str, message: str) -> Optional[List[str]]:
        if self.environment == "macOS":
            script = (
                f'display notification "{_escape_applescript(message)}" '
                f'with title "{_escape_applescript(title)}"'
            )
            return ["osascript", "-e", script]
        if self.environment in ("WSL", "Windows"):
            exe = "powershell.exe" if shutil.which("powershell.exe") else "powershell"
            script = _TOAST_SCRIPT.format(
                title=_escape_powershell(title), message=_escape_powershell(message)
            )
            return [exe, "-NoProfile", "-Command", script]
        if shutil.which("notify-send"):
            return ["notify-send", "--app-name=Claude Session Tracker", title, message]
        return None

    def notify(self, title: str, message: str) -> None:
        cmd = self._command(title, message)
        if cmd is None:
            logger.debug("No desktop notification backend available")
            return
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=self.timeout, check=False
        )
        if result.returncode != 0:
            logger.warning(
                f"Desktop notification via {cmd[0]} failed: {(result.stderr or '').strip()}"
            )


class CompositeNotifier:
    def __init__(self, notifiers: Iterable[Notifier]):
        self.notifiers = list(notifiers)

    def notify(self, title: str, message: str) -> None:
        for notifier in self.notifiers:
            safe_notify(notifier, title, message)


def safe_notify(notifier: Optional[Notifier], title: str, message: str) -> None:
    """Deliver a notification; failures are logged, never raised."""
    if notifier is None:
        return
    try:
        notifier.notify(title, message)
    except Exception as e:
        logger.warning(f"Notification '{title}' failed: {e}")


def build_notifier(config=None, console: Optional[Console] = None) -> Notifier:
    """Notifier stack selected by the `notifications.*` config keys."""
    get = config.get if config is not None else (lambda key, default=None: default)
    if not get("notifications.enabled", True):
        return CompositeNotifier([])
    notifiers: List[Notifier] = []
    if get("notifications.console", True):
        notifiers.append(ConsoleNotifier(console))
    if get("notifications.desktop", True):
        notifiers.append(DesktopNotifier())
    return CompositeNotifier(notifiers)
