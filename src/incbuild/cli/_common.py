"""Shared CLI helpers."""

from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape

from ..config import BuildConfig, load_config
from ..models import Diagnostic

console = Console()
err_console = Console(stderr=True)

# Process exit codes
EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_USAGE = 2
EXIT_CONFIG = 3


def resolve_config(
    config: Optional[Path] = None,
    verbose: bool = False,
    quiet: bool = False,
) -> BuildConfig:
    """Build configuration from CLI options."""
    return load_config(config_file=config, verbose=verbose, quiet=quiet)


def resolve_project(project: Optional[Path]) -> Path:
    return (project or Path.cwd()).resolve()


def print_diagnostics(diagnostics: Iterable[Diagnostic]) -> None:
    """Errors go to stderr, everything else to stdout."""
    for diagnostic in diagnostics:
        target = err_console if diagnostic.is_error else console
        target.print(diagnostic.format(), markup=False, highlight=False, soft_wrap=True)


def error_count(diagnostics: Iterable[Diagnostic]) -> int:
    return sum(1 for d in diagnostics if d.is_error)


def print_error(label: str, exc: Exception) -> None:
    err_console.print(f"[red]{label}:[/red] {escape(str(exc))}", soft_wrap=True)
