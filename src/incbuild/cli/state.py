"""Build-state management commands."""

from pathlib import Path
from typing import Optional

import typer

from ..exceptions import ConfigurationError, FileAccessError
from ..filesystem import LocalFileSystem
from ..fingerprint import FingerprintCache
from ..state import BuildStateStore
from . import app
from ._common import (
    EXIT_BUILD_FAILED,
    EXIT_CONFIG,
    console,
    print_error,
    resolve_config,
    resolve_project,
)

_PROJECT_OPTION = typer.Option(
    None, "-p", "--project", help="Project directory (default: current directory)"
)
_CONFIG_OPTION = typer.Option(None, "-c", "--config", help="incbuild configuration file (TOML)")


@app.command()
def state(
    project: Optional[Path] = _PROJECT_OPTION,
    config: Optional[Path] = _CONFIG_OPTION,
):
    """Show the persisted build state."""
    try:
        settings = resolve_config(config=config)
    except ConfigurationError as e:
        print_error("Configuration error", e)
        raise typer.Exit(EXIT_CONFIG)

    project_dir = resolve_project(project)
    info = BuildStateStore(LocalFileSystem(), settings.state_path(project_dir)).info()

    console.print("[bold cyan]incbuild Build State[/bold cyan]")
    console.print()
    console.print(f"File: [blue]{info['path']}[/blue]")

    if not info["present"]:
        console.print("Status: [yellow]No build state[/yellow] (next build is a full build)")
        return
    if not info["valid"]:
        console.print("Status: [red]Unreadable[/red] (next build is a full build)")
        return

    console.print("Status: [green]Valid[/green]")
    console.print(f"Tool version: [yellow]{info['tool_version']}[/yellow]")
    console.print(f"Options hash: [yellow]{info['options_hash']}[/yellow]")
    console.print(f"Units: [yellow]{info['units']}[/yellow]")
    console.print(f"Artifacts: [yellow]{info['artifacts']}[/yellow]")
    if info["incomplete"]:
        console.print(f"Incomplete: [red]{', '.join(info['incomplete'])}[/red]")


@app.command()
def clean(
    project: Optional[Path] = _PROJECT_OPTION,
    config: Optional[Path] = _CONFIG_OPTION,
):
    """Remove the build state so the next build is a full build."""
    try:
        settings = resolve_config(config=config)
    except ConfigurationError as e:
        print_error("Configuration error", e)
        raise typer.Exit(EXIT_CONFIG)

    project_dir = resolve_project(project)
    try:
        removed = BuildStateStore(LocalFileSystem(), settings.state_path(project_dir)).clear()
        cache_dir = settings.cache_dir(project_dir)
        if cache_dir.exists():
            with FingerprintCache(cache_dir) as cache:
                cache.clear()
    except FileAccessError as e:
        print_error("Could not remove build state", e)
        raise typer.Exit(EXIT_BUILD_FAILED)

    if removed:
        console.print("[green]Build state removed[/green]")
    else:
        console.print("[yellow]No build state to remove[/yellow]")
