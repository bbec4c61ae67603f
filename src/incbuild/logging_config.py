"""
Logging for incbuild.

Build components log through ``get_logger(__name__)``; nothing in the core
prints. ``setup_logging`` is called once by the CLI and routes records to a
rich handler on stderr, leaving stdout to the build report and diagnostics.
In watch mode the log is long-lived, so records can also be appended to a
file.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "incbuild"

LOG_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(threadName)s] %(message)s"

# watchfiles reports every batch at INFO; only show it when debugging
_CHATTY_LOGGERS = ("watchfiles",)


def resolve_level(verbose: bool = False, quiet: bool = False) -> int:
    """Log level for the CLI's -v/-q flags. ``quiet`` wins over ``verbose``."""
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    return logging.WARNING


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """
    Route incbuild logging to stderr, and optionally to ``log_file``.

    Replaces any handlers installed by an earlier call, so the CLI can call
    it per command.

    Returns:
        The ``incbuild`` package logger
    """
    level = resolve_level(verbose, quiet)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            tracebacks_show_locals=verbose,
            # Unit paths and diagnostic text may contain [brackets]
            markup=False,
            show_path=verbose,
        )
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the ``incbuild`` namespace; ``"driver"`` becomes ``incbuild.driver``."""
    if name is None or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if not name.startswith(LOGGER_NAME + "."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)
