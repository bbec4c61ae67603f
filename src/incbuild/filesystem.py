"""
File-system boundary for incbuild.

The build core never touches ``os`` directly: it reads, writes and watches
through a ``FileSystem``. ``LocalFileSystem`` is the real implementation;
tests substitute an in-memory one.
"""

from __future__ import annotations

import os
import posixpath
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, NamedTuple, Optional, Protocol

from .exceptions import FileAccessError
from .logging_config import get_logger

logger = get_logger(__name__)


class FileStat(NamedTuple):
    """The subset of ``os.stat`` the build needs."""

    mtime_ns: int
    size: int


class ChangeKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileEvent:
    """One file-system notification."""

    kind: ChangeKind
    path: Path


BatchCallback = Callable[[list[FileEvent]], None]


class FileSystem(Protocol):
    """Operations the build core performs on the file system."""

    def read_file(self, path: Path) -> bytes:
        """Raises FileNotFoundError if the file does not exist."""
        ...

    def write_file(self, path: Path, data: bytes) -> None: ...

    def atomic_write(self, path: Path, data: bytes) -> None: ...

    def file_exists(self, path: Path) -> bool: ...

    def remove(self, path: Path) -> bool: ...

    def stat(self, path: Path) -> FileStat: ...

    def glob(self, root: Path, pattern: str) -> list[Path]: ...

    def watch(
        self,
        roots: Iterable[Path],
        on_batch: BatchCallback,
        stop_event: threading.Event,
        ready: Optional[threading.Event] = None,
    ) -> None:
        """Block, delivering event batches to ``on_batch`` until ``stop_event`` is set.

        ``ready`` is set once changes under ``roots`` are being observed.
        """
        ...


def to_logical(root: Path, path: Path) -> str:
    """POSIX path of ``path`` relative to ``root``."""
    return PurePosixPath(*Path(path).relative_to(root).parts).as_posix()


def resolve_within(root: Path, logical: str) -> Path:
    """
    Resolve a logical project path against ``root``.

    Args:
        root: Project root directory
        logical: POSIX path relative to the root

    Returns:
        Absolute path inside the root

    Raises:
        FileAccessError: If the path is absolute or escapes the root
    """
    normalized = posixpath.normpath(logical)
    if (
        normalized.startswith("/")
        or normalized == ".."
        or normalized.startswith("../")
        or PurePosixPath(normalized).is_absolute()
    ):
        raise FileAccessError(Path(logical), "path escapes the project root")
    return root.joinpath(*PurePosixPath(normalized).parts)


class LocalFileSystem:
    """FileSystem backed by the local disk and ``watchfiles``."""

    def __init__(self, debounce_ms: int = 200, rust_timeout_ms: int = 500) -> None:
        self.debounce_ms = debounce_ms
        self.rust_timeout_ms = rust_timeout_ms

    def read_file(self, path: Path) -> bytes:
        try:
            return Path(path).read_bytes()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise FileAccessError(path, f"Read failed: {e}")

    def write_file(self, path: Path, data: bytes) -> None:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise FileAccessError(path, f"Write failed: {e}")

    def atomic_write(self, path: Path, data: bytes) -> None:
        """Write-new-then-rename: readers see either the old file or the new one."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise FileAccessError(path, f"Write failed: {e}")

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            _discard(tmp_name)
            raise FileAccessError(path, f"Atomic write failed: {e}")
        except BaseException:
            _discard(tmp_name)
            raise

    def file_exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def remove(self, path: Path) -> bool:
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FileAccessError(path, f"Remove failed: {e}")

    def stat(self, path: Path) -> FileStat:
        st = Path(path).stat()
        return FileStat(mtime_ns=st.st_mtime_ns, size=st.st_size)

    def glob(self, root: Path, pattern: str) -> list[Path]:
        return sorted(p for p in Path(root).glob(pattern) if p.is_file())

    def watch(
        self,
        roots: Iterable[Path],
        on_batch: BatchCallback,
        stop_event: threading.Event,
        ready: Optional[threading.Event] = None,
    ) -> None:
        from watchfiles import Change, watch

        kinds = {
            Change.added: ChangeKind.CREATED,
            Change.modified: ChangeKind.MODIFIED,
            Change.deleted: ChangeKind.DELETED,
        }
        roots = [str(r) for r in roots]
        logger.info("Watching %s for changes", ", ".join(roots))

        # The first yield, even an empty one on timeout, means the notifier is armed
        for changes in watch(
            *roots,
            stop_event=stop_event,
            debounce=self.debounce_ms,
            rust_timeout=self.rust_timeout_ms,
            yield_on_timeout=True,
        ):
            if ready is not None:
                ready.set()
            if stop_event.is_set():
                break
            if not changes:
                continue
            events = [FileEvent(kinds[change], Path(path)) for change, path in sorted(changes)]
            on_batch(events)


def _discard(tmp_name: str) -> None:
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass
