"""Analysis engine boundary and the bundled reference engine."""

from .base import AnalysisEngine, PlannedArtifact, ProgramState, ProjectConfig
from .reference import ReferenceEngine

__all__ = [
    "AnalysisEngine",
    "PlannedArtifact",
    "ProgramState",
    "ProjectConfig",
    "ReferenceEngine",
]
