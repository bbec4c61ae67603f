"""Protocol and value types for the analysis engine boundary.

The orchestrator never parses or type-checks anything itself. It asks an
engine to parse the project descriptor, build or update a program from a
change set, report diagnostics for the whole program and produce an emit
plan. Any object with these four methods can drive a build.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

from ..fingerprint import compute_options_hash
from ..models import ChangeSet, Diagnostic, InputUnit


@dataclass(frozen=True)
class ProjectConfig:
    """Parsed project descriptor.

    Attributes:
        path: Descriptor file the configuration was read from
        root_dir: Directory logical unit paths are relative to
        root_names: Root units of the project (logical POSIX paths)
        out_dir: Output directory, relative to ``root_dir``
        source_maps: Whether source maps are emitted
        options: Engine-specific options, folded into ``options_hash``
    """

    path: Path
    root_dir: Path
    root_names: tuple[str, ...]
    out_dir: str = "out"
    source_maps: bool = True
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def options_hash(self) -> str:
        return compute_options_hash(
            {"out_dir": self.out_dir, "source_maps": self.source_maps, "options": self.options}
        )


@dataclass
class ProgramState:
    """Engine-maintained representation of the analyzed program.

    ``units`` carries the live dependency edges. ``data`` is private to the
    engine that produced the state.
    """

    config: ProjectConfig
    units: dict[str, InputUnit] = field(default_factory=dict)
    generation: int = 0
    data: dict[str, Any] = field(default_factory=dict)

    def references(self) -> dict[str, frozenset[str]]:
        return {path: unit.references for path, unit in self.units.items()}


@dataclass(frozen=True)
class PlannedArtifact:
    """One file the engine wants on the output side."""

    path: str
    sources: tuple[str, ...]
    content: bytes


class AnalysisEngine(Protocol):
    """Capability the orchestrator consumes to analyze and emit a project."""

    def parse_project_config(self, path: Path) -> ProjectConfig:
        """Raises ProjectConfigError if the descriptor is missing or malformed."""
        ...

    def create_or_update_program(
        self,
        config: ProjectConfig,
        prior: Optional[ProgramState],
        change_set: ChangeSet,
    ) -> ProgramState:
        """Full analysis when ``prior`` is None; otherwise re-analyze ``change_set.affected``."""
        ...

    def get_diagnostics(self, state: ProgramState) -> list[Diagnostic]:
        """Diagnostics for the whole program, not just the delta."""
        ...

    def get_emit_plan(self, state: ProgramState) -> list[PlannedArtifact]: ...
