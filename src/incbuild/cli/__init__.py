"""CLI entry point: registers all subcommands."""

import typer

from .. import __version__
from ._common import console

app = typer.Typer(
    name="incbuild",
    help="incbuild - Incremental Build Orchestrator",
    add_completion=False,
    rich_markup_mode="rich",
)


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        is_eager=True,
    ),
) -> None:
    """
    Rebuild only what changed since the last successful build.

    [bold cyan]Examples:[/bold cyan]

      incbuild build

      incbuild build watch --project path/to/project

      incbuild clean
    """
    if version:
        console.print(f"[bold cyan]incbuild[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit(0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# Import subcommands to register them
from .build import build as _build  # noqa: F401, E402
from .state import clean as _clean, state as _state  # noqa: F401, E402


def main() -> None:
    app()
