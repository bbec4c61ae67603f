"""Analysis session: the orchestrator's handle on the analysis engine.

The session keeps the engine's ProgramState between cycles. The first update
is a full analysis; later updates pass the previous state and the change set
so the engine re-analyzes only what is affected. Diagnostics always describe
the whole program in a stable order:

    1. diagnostics without a location
    2. located diagnostics by unit path, line, column, severity, code, message
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .engine.base import AnalysisEngine, ProgramState, ProjectConfig
from .exceptions import FatalAnalysisError, ProjectConfigError
from .logging_config import get_logger
from .models import ChangeSet, Diagnostic, Severity, sort_diagnostics

logger = get_logger(__name__)


class AnalysisSession:
    """Wraps an AnalysisEngine across build cycles."""

    def __init__(self, engine: AnalysisEngine, project_file: Path) -> None:
        self.engine = engine
        self.project_file = project_file
        self._state: Optional[ProgramState] = None

    @property
    def program_state(self) -> Optional[ProgramState]:
        """State from the last successful update."""
        return self._state

    def load_config(self) -> ProjectConfig:
        """Parse the project descriptor.

        Raises:
            ProjectConfigError: If the descriptor is missing or malformed
        """
        return self.engine.parse_project_config(self.project_file)

    def refresh_config(self) -> ProjectConfig:
        """Re-parse the descriptor at the start of a cycle.

        Raises:
            FatalAnalysisError: If the descriptor can no longer be parsed
        """
        try:
            return self.load_config()
        except ProjectConfigError as exc:
            raise FatalAnalysisError(
                exc.reason,
                diagnostics=[Diagnostic(Severity.ERROR, str(exc), code="IB0001")],
            ) from exc

    def update(
        self, config: ProjectConfig, change_set: ChangeSet
    ) -> tuple[ProgramState, list[Diagnostic]]:
        """Bring the program up to date with ``change_set``.

        Returns:
            (program state, complete sorted diagnostics)

        Raises:
            FatalAnalysisError: If the engine cannot produce a program. The
                previous state is kept.
        """
        prior = self._state
        if prior is None:
            logger.debug("Full analysis of %d root unit(s)", len(config.root_names))
        else:
            logger.debug("Incremental analysis: %s", change_set.summary())

        state = self.engine.create_or_update_program(config, prior, change_set)
        diagnostics = sort_diagnostics(self.engine.get_diagnostics(state))
        self._state = state
        return state, diagnostics

    def reset(self) -> None:
        """Drop the program state so the next update is a full analysis."""
        self._state = None
