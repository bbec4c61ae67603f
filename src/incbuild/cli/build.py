"""``incbuild build``: one incremental pass, or watch and rebuild."""

from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from ..config import BuildConfig
from ..driver import SessionDriver
from ..engine import ReferenceEngine
from ..exceptions import ConfigurationError, IncrementalBuildError
from ..filesystem import LocalFileSystem
from ..fingerprint import FingerprintCache
from ..logging_config import setup_logging
from ..models import ArtifactEvent, CycleResult, CycleStatus
from ..watcher import WatchLoop
from . import app
from ._common import (
    EXIT_BUILD_FAILED,
    EXIT_CONFIG,
    EXIT_OK,
    EXIT_USAGE,
    console,
    err_console,
    error_count,
    print_diagnostics,
    print_error,
    resolve_config,
    resolve_project,
)

MODES = ("once", "watch")


@app.command()
def build(
    mode: str = typer.Argument("once", help="once | watch"),
    project: Optional[Path] = typer.Option(
        None,
        "-p",
        "--project",
        help="Project directory (default: current directory)",
        file_okay=False,
        dir_okay=True,
    ),
    config: Optional[Path] = typer.Option(
        None,
        "-c",
        "--config",
        help="incbuild configuration file (TOML)",
        file_okay=True,
        dir_okay=False,
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only print diagnostics"),
) -> None:
    """
    Build the project incrementally.

    [bold cyan]Examples:[/bold cyan]

      incbuild build

      incbuild build watch -p ./app
    """
    if mode not in MODES:
        err_console.print(
            f"Unknown build mode '{mode}'. Expected one of: {', '.join(MODES)}",
            markup=False,
            highlight=False,
        )
        raise typer.Exit(EXIT_USAGE)

    try:
        settings = resolve_config(config=config, verbose=verbose, quiet=quiet)
    except ConfigurationError as e:
        print_error("Configuration error", e)
        raise typer.Exit(EXIT_CONFIG)

    setup_logging(
        verbose=settings.verbosity == "verbose", quiet=settings.verbosity == "quiet"
    )
    project_dir = resolve_project(project)

    cache = FingerprintCache(
        settings.cache_dir(project_dir),
        enabled=settings.fingerprint_cache and settings.fingerprint_mode == "content",
    )
    try:
        _run(mode, settings, project_dir, cache)
    finally:
        cache.close()


def _run(mode: str, settings: BuildConfig, project_dir: Path, cache: FingerprintCache) -> None:
    fs = LocalFileSystem(debounce_ms=settings.debounce_ms)
    watching = mode == "watch"
    verbose = settings.verbosity == "verbose"

    def on_progress(message: str) -> None:
        if watching and settings.verbosity != "quiet":
            stamp = datetime.now().strftime("%H:%M:%S")
            console.print(f"[dim]{stamp}[/dim] - {message}", highlight=False)

    def on_artifact(event: ArtifactEvent) -> None:
        if verbose:
            action = "wrote" if event.written else "unchanged"
            console.print(f"  {action} {event.path} ({event.size} bytes)", highlight=False)

    driver = SessionDriver(
        ReferenceEngine(fs),
        fs,
        settings,
        project_dir,
        on_progress=on_progress,
        on_artifact=on_artifact,
        fingerprint_cache=cache if cache.enabled else None,
    )

    try:
        driver.start()
    except ConfigurationError as e:
        print_error("Configuration error", e)
        raise typer.Exit(EXIT_CONFIG)

    if watching:
        _watch(driver, fs, settings)
        raise typer.Exit(EXIT_OK)

    try:
        result = driver.run_once()
    except IncrementalBuildError as e:
        print_error("Error", e)
        raise typer.Exit(EXIT_BUILD_FAILED)

    _report(result, quiet=settings.verbosity == "quiet")
    raise typer.Exit(EXIT_BUILD_FAILED if result.has_errors else EXIT_OK)


def _watch(driver: SessionDriver, fs: LocalFileSystem, settings: BuildConfig) -> None:
    quiet = settings.verbosity == "quiet"
    loop = WatchLoop(driver, fs, settings, on_cycle=lambda r: _report(r, quiet=quiet))
    try:
        loop.start()
        loop.wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch stopped[/yellow]")
    finally:
        loop.stop()


def _report(result: CycleResult, quiet: bool = False) -> None:
    print_diagnostics(result.diagnostics)
    if quiet:
        return

    errors = error_count(result.diagnostics)
    emit = result.emit
    if result.status is CycleStatus.ABORTED:
        console.print("[red]Build aborted[/red] - nothing was emitted")
        return

    status = "[green]Build complete[/green]" if not errors else "[red]Build finished with errors[/red]"
    console.print(
        f"{status}: {len(emit.written)} written, {len(emit.skipped)} unchanged, "
        f"{len(emit.failed)} failed, {errors} error(s) [dim]({result.duration:.2f}s)[/dim]"
    )
    if result.status is CycleStatus.PERSIST_FAILED:
        console.print("[yellow]Build state was not saved; the next build repeats this work[/yellow]")
