"""
CLI interface for the Claude session tracker using Typer.
"""

from typing import Optional

import typer
from rich.console import Console

from . import __version__
from .commands.auto import auto_command
from .commands.check import check_command
from .commands.config import (
    config_get_command,
    config_list_command,
    config_modes_command,
    config_reset_command,
    config_set_command,
)
from .commands.dashboard import dashboard_command
from .commands.export import export_command
from .commands.project import project_detect_command, project_info_command
from .commands.session import end_command, start_command, status_command
from .config import TrackerConfig
from .logging_config import set_log_level

console = Console()

app = typer.Typer(
    name="claude-session",
    help="Track Claude Code sessions against their time windows",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(name="config", help="View and edit configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")

project_app = typer.Typer(name="project", help="Project detection.", no_args_is_help=True)
app.add_typer(project_app, name="project")


def _version_callback(value: bool):
    if value:
        console.print(f"claude-session {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Optional[bool] = typer.Option(
        None, "--version", "-V", callback=_version_callback, is_eager=True, help="Show version"
    ),
):
    """Claude Code session tracker."""
    set_log_level(TrackerConfig.load().log_level)


app.command("start")(start_command)
app.command("end")(end_command)
app.command("status")(status_command)
app.command("auto")(auto_command)
app.command("export")(export_command)
app.command("check")(check_command)
app.command("dashboard")(dashboard_command)

config_app.command("list")(config_list_command)
config_app.command("get")(config_get_command)
config_app.command("set")(config_set_command)
config_app.command("reset")(config_reset_command)
config_app.command("modes")(config_modes_command)

project_app.command("detect")(project_detect_command)
project_app.command("info")(project_info_command)


def main():
    """Entry point for the claude-session command."""
    app()


if __name__ == "__main__":
    main()
