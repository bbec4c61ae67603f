"""Emit sequencer: writes stale artifacts and records their provenance.

Candidates are the planned artifacts produced from an affected unit, those
the snapshot has never recorded, those of units left incomplete by an earlier
failure, and those missing from disk. A candidate whose content hash matches
both the snapshot record and the file on disk is not rewritten but is still
recorded.

The build-state file is not emitted here. The driver persists it after
``emit`` returns so it is always the last write of a cycle.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from .engine.base import AnalysisEngine, PlannedArtifact, ProgramState
from .exceptions import FileAccessError
from .filesystem import FileSystem, resolve_within
from .fingerprint import hash_bytes
from .logging_config import get_logger
from .models import (
    ArtifactEvent,
    ArtifactRecord,
    BuildSnapshot,
    ChangeSet,
    Diagnostic,
    EmitResult,
    Severity,
)

logger = get_logger(__name__)

ArtifactCallback = Callable[[ArtifactEvent], None]

EMIT_FAILED = "IB4001"


class EmitSequencer:
    """Streams the engine's emit plan through the file system."""

    def __init__(
        self,
        engine: AnalysisEngine,
        fs: FileSystem,
        root_dir: Path,
        on_artifact: Optional[ArtifactCallback] = None,
    ) -> None:
        self.engine = engine
        self.fs = fs
        self.root_dir = root_dir
        self.on_artifact = on_artifact

    def emit(
        self,
        program: ProgramState,
        change_set: ChangeSet,
        prior: Optional[BuildSnapshot],
    ) -> EmitResult:
        """Write every stale or new artifact of ``program``.

        A failed write is recorded and reported; the remaining artifacts are
        still emitted.
        """
        result = EmitResult()
        recorded = prior.artifact_index() if prior is not None else {}
        incomplete = prior.incomplete if prior is not None else frozenset()

        plan = sorted(self.engine.get_emit_plan(program), key=lambda a: a.path)
        for planned in plan:
            if not self._is_candidate(planned, change_set, recorded, incomplete):
                continue

            record = ArtifactRecord(
                path=planned.path,
                sources=tuple(planned.sources),
                content_hash=hash_bytes(planned.content),
                size=len(planned.content),
            )

            try:
                target = resolve_within(self.root_dir, planned.path)
                if self._already_current(target, record, recorded.get(planned.path)):
                    result.emitted.append(record)
                    result.skipped.append(planned.path)
                    self._notify(record, written=False)
                    continue
                self.fs.write_file(target, planned.content)
            except (FileAccessError, OSError) as exc:
                reason = exc.reason if isinstance(exc, FileAccessError) else str(exc)
                logger.error(
                    "Failed to emit %s (from %s): %s",
                    planned.path,
                    "+".join(planned.sources) or "??",
                    reason,
                )
                result.failed[planned.path] = reason
                result.failed_units.update(planned.sources)
                result.diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        f"Could not write file '{planned.path}': {reason}",
                        unit=planned.sources[0] if planned.sources else None,
                        code=EMIT_FAILED,
                    )
                )
                continue

            result.emitted.append(record)
            result.written.append(planned.path)
            self._notify(record, written=True)

        logger.debug(
            "Emit complete: %d written, %d unchanged, %d failed",
            len(result.written),
            len(result.skipped),
            len(result.failed),
        )
        return result

    def _is_candidate(
        self,
        planned: PlannedArtifact,
        change_set: ChangeSet,
        recorded: dict[str, ArtifactRecord],
        incomplete: frozenset[str],
    ) -> bool:
        sources = set(planned.sources)
        if sources & change_set.affected or sources & incomplete:
            return True
        if planned.path not in recorded:
            return True
        try:
            return not self.fs.file_exists(resolve_within(self.root_dir, planned.path))
        except FileAccessError:
            return True

    def _already_current(
        self, target: Path, record: ArtifactRecord, previous: Optional[ArtifactRecord]
    ) -> bool:
        if previous is None or previous.content_hash != record.content_hash:
            return False
        try:
            return hash_bytes(self.fs.read_file(target)) == record.content_hash
        except (FileNotFoundError, FileAccessError):
            return False

    def _notify(self, record: ArtifactRecord, written: bool) -> None:
        if self.on_artifact is None:
            return
        event = ArtifactEvent(
            path=record.path, size=record.size, sources=record.sources, written=written
        )
        try:
            self.on_artifact(event)
        except Exception:
            # observer errors never affect the build
            logger.exception("Artifact observer failed for %s", record.path)
