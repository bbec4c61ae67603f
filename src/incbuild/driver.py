"""Session driver: owns the build cycle.

One cycle moves through

    IDLE -> DETECTING -> ANALYZING -> EMITTING -> PERSISTING -> IDLE

and ``stop()`` ends in the terminal STOPPED state. Cycles never overlap: the
driver holds a lock for the whole cycle and the watch loop feeds it through a
single worker thread.

A fatal analysis error returns to IDLE without emitting or persisting. Emit
failures are per artifact: the snapshot is still persisted, with the
producing units marked incomplete. The new snapshot becomes the driver's
prior only after it has been persisted.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import __version__
from .config import BuildConfig
from .detector import ChangeDetector
from .emit import ArtifactCallback, EmitSequencer
from .engine.base import AnalysisEngine, ProgramState, ProjectConfig
from .exceptions import FatalAnalysisError, PersistenceError
from .filesystem import FileSystem
from .fingerprint import FingerprintCache, Fingerprinter
from .logging_config import get_logger
from .models import (
    ArtifactRecord,
    BuildSnapshot,
    ChangeSet,
    CycleResult,
    CycleStatus,
    Diagnostic,
    EmitResult,
    InputUnit,
    Severity,
    sort_diagnostics,
)
from .session import AnalysisSession
from .state import BuildStateStore

logger = get_logger(__name__)

ProgressCallback = Callable[[str], None]

__all__ = ["CycleStatus", "DriverState", "SessionDriver"]


class DriverState(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    ANALYZING = "analyzing"
    EMITTING = "emitting"
    PERSISTING = "persisting"
    STOPPED = "stopped"


class SessionDriver:
    """Runs detect, analyze, emit and persist cycles for one project.

    Usage:
        driver = SessionDriver(ReferenceEngine(fs), fs, config, project_dir)
        driver.start()              # parses the project descriptor
        result = driver.run_once()  # one incremental cycle
    """

    def __init__(
        self,
        engine: AnalysisEngine,
        fs: FileSystem,
        config: BuildConfig,
        project_dir: Path,
        on_progress: Optional[ProgressCallback] = None,
        on_artifact: Optional[ArtifactCallback] = None,
        fingerprint_cache: Optional[FingerprintCache] = None,
        store: Optional[BuildStateStore] = None,
    ) -> None:
        self.engine = engine
        self.fs = fs
        self.config = config
        self.project_dir = Path(project_dir)
        self.on_progress = on_progress

        self.session = AnalysisSession(engine, self.project_dir / config.project_file)
        self.store = store or BuildStateStore(fs, config.state_path(self.project_dir))
        self.detector = ChangeDetector(
            Fingerprinter(
                fs, self.project_dir, mode=config.fingerprint_mode, cache=fingerprint_cache
            )
        )
        self.emitter = EmitSequencer(engine, fs, self.project_dir, on_artifact=on_artifact)

        self.state = DriverState.IDLE
        self.project_config: Optional[ProjectConfig] = None
        self._prior: Optional[BuildSnapshot] = None
        self._started = False
        self._cycle_lock = threading.Lock()

    @property
    def prior(self) -> Optional[BuildSnapshot]:
        """The last snapshot known to be persisted."""
        return self._prior

    def start(self) -> ProjectConfig:
        """Parse the project descriptor and load the persisted snapshot.

        Raises:
            ConfigurationError: If the descriptor cannot be parsed. This is
                fatal to the whole session.
        """
        project = self.session.load_config()
        self._use_project(project)
        self._prior = self.store.load()
        self._started = True
        self.state = DriverState.IDLE
        logger.debug(
            "Session started: %d root unit(s), prior snapshot %s",
            len(project.root_names),
            "loaded" if self._prior is not None else "absent",
        )
        return project

    def run_once(self) -> CycleResult:
        """Run one complete build cycle.

        Raises:
            ConfigurationError: If the session was not started and the
                descriptor cannot be parsed
            RuntimeError: If the driver has been stopped
        """
        with self._cycle_lock:
            if self.state is DriverState.STOPPED:
                raise RuntimeError("driver has been stopped")
            if not self._started:
                self.start()

            started = time.monotonic()
            try:
                result = self._run_cycle()
            finally:
                if self.state is not DriverState.STOPPED:
                    self.state = DriverState.IDLE
            result.duration = time.monotonic() - started

        logger.info(
            "Cycle %s in %.2fs: %s", result.status.value, result.duration, result.change_set.summary()
        )
        return result

    def stop(self) -> None:
        """Wait for a running cycle to finish, then stop for good."""
        with self._cycle_lock:
            self.state = DriverState.STOPPED
        logger.debug("Driver stopped")

    def report_progress(self, message: str) -> None:
        """Forward a status line to the progress observer."""
        if self.on_progress is None:
            return
        try:
            self.on_progress(message)
        except Exception:
            logger.exception("Progress observer failed")

    def _use_project(self, project: ProjectConfig) -> None:
        # Logical unit and artifact paths are relative to the descriptor's root
        self.detector.fingerprinter.root_dir = project.root_dir
        self.emitter.root_dir = project.root_dir
        self.project_config = project

    # ── Cycle ─────────────────────────────────────────────────────

    def _run_cycle(self) -> CycleResult:
        self.state = DriverState.DETECTING
        try:
            project = self.session.refresh_config()
        except FatalAnalysisError as exc:
            return self._aborted(exc, ChangeSet())
        self._use_project(project)

        prior = self._prior
        if prior is not None and not prior.compatible_with(__version__, project.options_hash):
            logger.info("Tool version or project options changed, rebuilding everything")
            prior = None
            self.session.reset()

        # Unreadable units are skipped here and reported by the engine
        current = self.detector.collect_inputs(project.root_names, prior)
        change_set = self.detector.detect(current, prior)
        self.report_progress(f"Detected changes: {change_set.summary()}")

        self.state = DriverState.ANALYZING
        try:
            program, diagnostics = self.session.update(project, change_set)
            live = self._live_units(program, current)
        except FatalAnalysisError as exc:
            return self._aborted(exc, change_set)

        # Second pass: classify against what analysis actually reached
        change_set = self.detector.close(self.detector.detect(live, prior), program.references())

        self.state = DriverState.EMITTING
        emit_result = self.emitter.emit(program, change_set, prior)
        diagnostics = sort_diagnostics([*diagnostics, *emit_result.diagnostics])

        self.state = DriverState.PERSISTING
        snapshot = self._next_snapshot(project, live, change_set, emit_result, prior)
        try:
            self.store.persist(snapshot)
        except PersistenceError as exc:
            diagnostics = sort_diagnostics(
                [*diagnostics, Diagnostic(Severity.ERROR, str(exc), code="IB5001")]
            )
            self.report_progress("Build state could not be saved; changes will be reprocessed")
            return CycleResult(
                status=CycleStatus.PERSIST_FAILED,
                change_set=change_set,
                diagnostics=diagnostics,
                emit=emit_result,
                snapshot=self._prior,
            )

        self._prior = snapshot
        status = CycleStatus.COMPLETED if emit_result.ok else CycleStatus.INCOMPLETE
        errors = sum(1 for d in diagnostics if d.is_error)
        self.report_progress(
            f"Found {errors} error{'s' if errors != 1 else ''}. "
            f"Wrote {len(emit_result.written)} artifact(s)."
        )
        return CycleResult(
            status=status,
            change_set=change_set,
            diagnostics=diagnostics,
            emit=emit_result,
            snapshot=snapshot,
        )

    def _aborted(self, exc: FatalAnalysisError, change_set: ChangeSet) -> CycleResult:
        logger.error("%s", exc.message)
        diagnostics = exc.diagnostics or [Diagnostic(Severity.ERROR, exc.message)]
        self.report_progress(f"Build aborted: {exc.reason}")
        return CycleResult(
            status=CycleStatus.ABORTED,
            change_set=change_set,
            diagnostics=sort_diagnostics(diagnostics),
            emit=EmitResult(),
            snapshot=self._prior,
        )

    def _live_units(
        self, program: ProgramState, current: dict[str, InputUnit]
    ) -> dict[str, InputUnit]:
        """Units analysis reached, with detector fingerprints and live edges."""
        discovered = [path for path in program.units if path not in current]
        fingerprints = {path: unit.fingerprint for path, unit in current.items()}
        for path, unit in self.detector.fingerprint_units(discovered).items():
            fingerprints[path] = unit.fingerprint

        live = {}
        for path, unit in program.units.items():
            if path in fingerprints:
                live[path] = InputUnit(path, fingerprints[path], frozenset(unit.references))
        return live

    def _next_snapshot(
        self,
        project: ProjectConfig,
        live: dict[str, InputUnit],
        change_set: ChangeSet,
        emit_result: EmitResult,
        prior: Optional[BuildSnapshot],
    ) -> BuildSnapshot:
        records: dict[str, dict[str, ArtifactRecord]] = {unit: {} for unit in live}

        if prior is not None:
            for unit, previous in prior.artifacts.items():
                if unit in live and unit not in change_set.affected:
                    for record in previous:
                        records[unit][record.path] = record

        for record in emit_result.emitted:
            for unit in _present(record.sources, live):
                records[unit][record.path] = record

        for unit_records in records.values():
            for path in emit_result.failed:
                unit_records.pop(path, None)

        return BuildSnapshot(
            fingerprints={path: unit.fingerprint for path, unit in live.items()},
            references={path: tuple(sorted(unit.references)) for path, unit in live.items()},
            artifacts={
                unit: tuple(by_path[p] for p in sorted(by_path))
                for unit, by_path in records.items()
                if by_path
            },
            incomplete=frozenset(emit_result.failed_units) & frozenset(live),
            tool_version=__version__,
            options_hash=project.options_hash,
        )


def _present(sources: Iterable[str], live: dict[str, InputUnit]) -> list[str]:
    return [source for source in sources if source in live]
