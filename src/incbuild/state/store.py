"""JSON build-state store with atomic replacement.

The store owns the persisted BuildSnapshot. ``persist`` writes a new file and
renames it over the old one, so a crash mid-write leaves the previous snapshot
in place. An unreadable or malformed file is treated as "no snapshot", which
forces a full rebuild.

State location: .incbuild/buildstate.json (next to the project descriptor)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..exceptions import FileAccessError, PersistenceError
from ..filesystem import FileSystem
from ..logging_config import get_logger
from ..models import BuildSnapshot

logger = get_logger(__name__)


class BuildStateStore:
    """Loads and atomically replaces the build snapshot for one project.

    Usage:
        store = BuildStateStore(fs, project_dir / ".incbuild" / "buildstate.json")
        prior = store.load()          # None on first run or corruption
        ...
        store.persist(new_snapshot)   # once per successful cycle, after emit
    """

    def __init__(self, fs: FileSystem, path: Path) -> None:
        self.fs = fs
        self.path = Path(path)

    def load(self) -> BuildSnapshot | None:
        """Read the last persisted snapshot.

        Returns:
            The snapshot, or None if it is absent, unreadable or inconsistent
        """
        if not self.fs.file_exists(self.path):
            logger.debug("No build state at %s", self.path)
            return None

        try:
            data = json.loads(self.fs.read_file(self.path).decode("utf-8"))
            snapshot = BuildSnapshot.from_dict(data)
        except FileNotFoundError:
            return None
        except (FileAccessError, OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring unreadable build state at %s: %s", self.path, exc)
            return None

        if not snapshot.consistent():
            logger.warning(
                "Ignoring inconsistent build state at %s: artifacts without source units",
                self.path,
            )
            return None

        logger.debug(
            "Loaded build state: %d unit(s), %d incomplete",
            len(snapshot.fingerprints),
            len(snapshot.incomplete),
        )
        return snapshot

    def persist(self, snapshot: BuildSnapshot) -> bool:
        """Atomically replace the persisted snapshot.

        Returns:
            True if the file was written, False if it already held this snapshot

        Raises:
            PersistenceError: If the snapshot is inconsistent or cannot be written
        """
        if not snapshot.consistent():
            raise PersistenceError(self.path, "snapshot lists artifacts without source units")

        payload = self.serialize(snapshot)

        try:
            if self.fs.file_exists(self.path) and self.fs.read_file(self.path) == payload:
                logger.debug("Build state unchanged, skipping write")
                return False
        except (FileNotFoundError, FileAccessError):
            pass  # Unreadable current file: replace it

        try:
            self.fs.atomic_write(self.path, payload)
        except (FileAccessError, OSError) as exc:
            reason = exc.reason if isinstance(exc, FileAccessError) else str(exc)
            logger.error("Failed to persist build state to %s: %s", self.path, reason)
            raise PersistenceError(self.path, reason) from exc

        logger.debug("Build state written: %s (%d bytes)", self.path, len(payload))
        return True

    @staticmethod
    def serialize(snapshot: BuildSnapshot) -> bytes:
        return (json.dumps(snapshot.to_dict(), indent=2, sort_keys=True) + "\n").encode("utf-8")

    def clear(self) -> bool:
        """Delete the persisted snapshot so the next build is a full rebuild."""
        removed = self.fs.remove(self.path)
        if removed:
            logger.info("Removed build state %s", self.path)
        return removed

    def info(self) -> dict[str, Any]:
        """Summary of the persisted snapshot for display."""
        snapshot = self.load()
        if snapshot is None:
            return {"path": str(self.path), "present": self.fs.file_exists(self.path), "valid": False}
        return {
            "path": str(self.path),
            "present": True,
            "valid": True,
            "tool_version": snapshot.tool_version,
            "options_hash": snapshot.options_hash,
            "units": len(snapshot.fingerprints),
            "artifacts": len(snapshot.artifact_index()),
            "incomplete": sorted(snapshot.incomplete),
        }
