"""Data models shared by the build pipeline.

Input units and output artifacts describe the project; a BuildSnapshot is the
persisted record of the last successful cycle; a ChangeSet is the per-cycle
classification of inputs. Diagnostics are re-derived every cycle and never
persisted.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

# Bump when the serialized snapshot layout changes
SCHEMA_VERSION = 1


class Severity(Enum):
    """Diagnostic category. ``MESSAGE`` is the informational level."""

    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"
    MESSAGE = "message"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.ERROR: 0,
    Severity.WARNING: 1,
    Severity.SUGGESTION: 2,
    Severity.MESSAGE: 3,
}


@dataclass(frozen=True)
class Diagnostic:
    """A reported condition, optionally located in an input unit.

    Lines and columns are 1-based.
    """

    severity: Severity
    message: str
    unit: str | None = None
    line: int | None = None
    column: int | None = None
    code: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def format(self) -> str:
        """Render as ``path (line,col): message``."""
        if self.unit is None:
            return self.message
        if self.line is None:
            return f"{self.unit}: {self.message}"
        return f"{self.unit} ({self.line},{self.column or 1}): {self.message}"


def diagnostic_sort_key(diagnostic: Diagnostic) -> tuple:
    """Stable ordering: location-less diagnostics first, then by unit and position."""
    return (
        diagnostic.unit is not None,
        diagnostic.unit or "",
        diagnostic.line if diagnostic.line is not None else 0,
        diagnostic.column if diagnostic.column is not None else 0,
        diagnostic.severity.rank,
        diagnostic.code or "",
        diagnostic.message,
    )


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    """Deduplicate and order diagnostics for reproducible output."""
    return sorted(set(diagnostics), key=diagnostic_sort_key)


@dataclass(frozen=True)
class InputUnit:
    """One source file tracked by the build."""

    path: str
    fingerprint: str
    references: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ArtifactRecord:
    """Provenance of one emitted file."""

    path: str
    sources: tuple[str, ...]
    content_hash: str
    size: int

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "sources": list(self.sources),
            "content_hash": self.content_hash,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ArtifactRecord:
        return cls(
            path=data["path"],
            sources=tuple(data["sources"]),
            content_hash=data["content_hash"],
            size=int(data["size"]),
        )


@dataclass(frozen=True)
class ArtifactEvent:
    """Progress notification for one artifact. Informational only."""

    path: str
    size: int
    sources: tuple[str, ...]
    written: bool


@dataclass(frozen=True)
class BuildSnapshot:
    """Persisted record of the last successful build cycle.

    Attributes:
        fingerprints: unit path -> fingerprint
        references: unit path -> referenced unit paths (dependency edges)
        artifacts: unit path -> artifacts produced from that unit
        incomplete: units whose artifacts failed to emit; re-processed next cycle
        tool_version: incbuild version that wrote the snapshot
        options_hash: fingerprint of the project options
    """

    fingerprints: dict[str, str] = field(default_factory=dict)
    references: dict[str, tuple[str, ...]] = field(default_factory=dict)
    artifacts: dict[str, tuple[ArtifactRecord, ...]] = field(default_factory=dict)
    incomplete: frozenset[str] = frozenset()
    tool_version: str = ""
    options_hash: str = ""
    schema_version: int = SCHEMA_VERSION

    @property
    def unit_paths(self) -> frozenset[str]:
        return frozenset(self.fingerprints)

    def consistent(self) -> bool:
        """Every listed artifact is traceable to a unit in this snapshot."""
        for unit, records in self.artifacts.items():
            if unit not in self.fingerprints:
                return False
            for record in records:
                if not any(source in self.fingerprints for source in record.sources):
                    return False
        return all(unit in self.fingerprints for unit in self.incomplete)

    def compatible_with(self, tool_version: str, options_hash: str) -> bool:
        return self.tool_version == tool_version and self.options_hash == options_hash

    def artifact_index(self) -> dict[str, ArtifactRecord]:
        """Map artifact path -> record across all units."""
        index: dict[str, ArtifactRecord] = {}
        for unit in sorted(self.artifacts):
            for record in self.artifacts[unit]:
                index[record.path] = record
        return index

    def to_dict(self) -> dict:
        return {
            "schema_version": self.schema_version,
            "tool_version": self.tool_version,
            "options_hash": self.options_hash,
            "fingerprints": dict(sorted(self.fingerprints.items())),
            "references": {k: list(v) for k, v in sorted(self.references.items())},
            "artifacts": {
                unit: [r.to_dict() for r in records]
                for unit, records in sorted(self.artifacts.items())
            },
            "incomplete": sorted(self.incomplete),
        }

    @classmethod
    def from_dict(cls, data: dict) -> BuildSnapshot:
        """Rebuild a snapshot from its serialized form.

        Raises:
            KeyError, TypeError, ValueError: If the payload is malformed
        """
        version = int(data["schema_version"])
        if version != SCHEMA_VERSION:
            raise ValueError(f"unsupported schema version {version}")
        return cls(
            fingerprints={str(k): str(v) for k, v in data["fingerprints"].items()},
            references={str(k): tuple(v) for k, v in data["references"].items()},
            artifacts={
                str(unit): tuple(ArtifactRecord.from_dict(r) for r in records)
                for unit, records in data["artifacts"].items()
            },
            incomplete=frozenset(data["incomplete"]),
            tool_version=str(data["tool_version"]),
            options_hash=str(data["options_hash"]),
            schema_version=version,
        )


def affected_closure(
    seeds: Iterable[str], edges: Mapping[str, Iterable[str]]
) -> frozenset[str]:
    """Seeds plus every unit that transitively references one of them.

    ``edges`` maps a unit to the units it references; the walk follows them
    backwards.
    """
    dependents: dict[str, set[str]] = {}
    for unit, refs in edges.items():
        for ref in refs:
            dependents.setdefault(ref, set()).add(unit)

    seen = set(seeds)
    queue = deque(sorted(seen))
    while queue:
        current = queue.popleft()
        for dependent in sorted(dependents.get(current, ())):
            if dependent not in seen:
                seen.add(dependent)
                queue.append(dependent)
    return frozenset(seen)


@dataclass(frozen=True)
class ChangeSet:
    """Per-cycle classification of input units.

    ``modified``, ``added`` and ``removed`` are disjoint. ``affected`` always
    contains every changed unit plus whatever depends on one.
    """

    modified: frozenset[str] = frozenset()
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    affected: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        for name in ("modified", "added", "removed"):
            object.__setattr__(self, name, frozenset(getattr(self, name)))
        if (
            self.modified & self.added
            or self.modified & self.removed
            or self.added & self.removed
        ):
            raise ValueError("modified, added and removed must be disjoint")
        object.__setattr__(self, "affected", frozenset(self.affected) | self.changed)

    @property
    def changed(self) -> frozenset[str]:
        return self.modified | self.added | self.removed

    @property
    def is_empty(self) -> bool:
        return not self.affected

    def summary(self) -> str:
        return (
            f"{len(self.modified)} modified, {len(self.added)} added, "
            f"{len(self.removed)} removed ({len(self.affected)} affected)"
        )


@dataclass
class EmitResult:
    """What the emit sequencer did during one cycle."""

    emitted: list[ArtifactRecord] = field(default_factory=list)
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    failed_units: set[str] = field(default_factory=set)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class CycleStatus(Enum):
    """How a build cycle ended."""

    COMPLETED = "completed"
    INCOMPLETE = "incomplete"  # Some artifacts failed; snapshot marks their units
    ABORTED = "aborted"  # Fatal analysis error; nothing emitted or persisted
    PERSIST_FAILED = "persist_failed"  # Emitted, but the snapshot was not replaced


@dataclass
class CycleResult:
    """Outcome of one detect → analyze → emit → persist cycle."""

    status: CycleStatus
    change_set: ChangeSet
    diagnostics: list[Diagnostic]
    emit: EmitResult
    snapshot: BuildSnapshot | None
    duration: float = 0.0

    @property
    def has_errors(self) -> bool:
        return self.status is not CycleStatus.COMPLETED or any(
            d.is_error for d in self.diagnostics
        )
