"""
incbuild - Incremental Build Orchestrator

Drives incremental recompilation of a multi-file project: detects which
inputs changed since the last successful build, asks an analysis engine to
re-analyze only the affected units, emits the stale artifacts and persists a
build snapshot that makes the next run cheaper. Works as a single pass or as
a long-lived watch loop.
"""

__version__ = "0.1.0"

from .driver import CycleStatus, DriverState, SessionDriver
from .engine import AnalysisEngine, ReferenceEngine
from .models import BuildSnapshot, ChangeSet, CycleResult, Diagnostic, Severity

__all__ = [
    "SessionDriver",  # Main entry point
    "DriverState",
    "CycleStatus",
    "CycleResult",
    "AnalysisEngine",
    "ReferenceEngine",
    "BuildSnapshot",
    "ChangeSet",
    "Diagnostic",
    "Severity",
]
