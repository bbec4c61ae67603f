"""Build-cycle exceptions: analysis, emit and persistence failures."""

from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from .base import IncrementalBuildError

if TYPE_CHECKING:
    from ..models import Diagnostic


class BuildError(IncrementalBuildError):
    """Base class for errors raised while running a build cycle."""

    pass


class FatalAnalysisError(BuildError):
    """Raised when analysis cannot produce a program state.

    Aborts the current cycle only. The previous snapshot stays valid and
    watch mode keeps waiting for the next trigger.
    """

    def __init__(self, reason: str, diagnostics: Optional[List["Diagnostic"]] = None):
        super().__init__(f"Analysis aborted: {reason}", details={"reason": reason})
        self.reason = reason
        self.diagnostics = list(diagnostics or [])


class FileAccessError(BuildError):
    """Raised when a file cannot be read or written."""

    def __init__(self, filepath: Path, reason: str):
        super().__init__(
            f"Cannot access file: {filepath}",
            details={"filepath": str(filepath), "reason": reason},
        )
        self.filepath = filepath
        self.reason = reason


class PersistenceError(BuildError):
    """Raised when the build snapshot cannot be written.

    The previously persisted snapshot remains authoritative.
    """

    def __init__(self, path: Path, reason: str):
        super().__init__(
            f"Failed to persist build state: {path}",
            details={"path": str(path), "reason": reason},
        )
        self.path = path
        self.reason = reason
