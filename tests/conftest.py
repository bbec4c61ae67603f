"""Shared test fixtures for incbuild."""

import json
import logging
import re
import threading
from pathlib import Path, PurePosixPath

import pytest

from incbuild.config import BuildConfig
from incbuild.driver import SessionDriver
from incbuild.engine import ReferenceEngine
from incbuild.exceptions import FatalAnalysisError, FileAccessError
from incbuild.filesystem import FileStat

PROJECT_DIR = Path("/project")


def _glob_regex(pattern: str) -> re.Pattern:
    """Translate a pathlib-style glob into a regex over POSIX relative paths."""
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


class MemoryFileSystem:
    """In-memory FileSystem with failure injection and a write log."""

    def __init__(self) -> None:
        self.files: dict[Path, bytes] = {}
        self.mtimes: dict[Path, int] = {}
        self.writes: list[Path] = []
        self.fail_writes: set[Path] = set()
        self.fail_reads: set[Path] = set()
        self.atomic_error: Exception | None = None
        self.watching = threading.Event()
        self._on_batch = None
        self._clock = 0

    # Test helpers

    def put(self, logical: str, text: str) -> Path:
        """Create or replace a project file without logging it as a build write."""
        path = PROJECT_DIR / logical
        self._store(path, text.encode("utf-8"))
        return path

    def text(self, logical: str) -> str:
        return self.files[PROJECT_DIR / logical].decode("utf-8")

    def delete(self, logical: str) -> None:
        path = PROJECT_DIR / logical
        del self.files[path]
        del self.mtimes[path]

    def deliver(self, events) -> None:
        """Hand a batch of events to the active watcher."""
        self._on_batch(list(events))

    def _store(self, path: Path, data: bytes) -> None:
        self._clock += 1
        self.files[path] = data
        self.mtimes[path] = self._clock

    # FileSystem protocol

    def read_file(self, path: Path) -> bytes:
        if Path(path) in self.fail_reads:
            raise FileAccessError(path, "permission denied")
        try:
            return self.files[Path(path)]
        except KeyError:
            raise FileNotFoundError(str(path))

    def write_file(self, path: Path, data: bytes) -> None:
        path = Path(path)
        if path in self.fail_writes:
            raise FileAccessError(path, "disk full")
        self._store(path, data)
        self.writes.append(path)

    def atomic_write(self, path: Path, data: bytes) -> None:
        if self.atomic_error is not None:
            raise self.atomic_error
        self._store(Path(path), data)
        self.writes.append(Path(path))

    def file_exists(self, path: Path) -> bool:
        return Path(path) in self.files

    def remove(self, path: Path) -> bool:
        path = Path(path)
        if path not in self.files:
            return False
        del self.files[path]
        del self.mtimes[path]
        return True

    def stat(self, path: Path) -> FileStat:
        path = Path(path)
        if path not in self.files:
            raise FileNotFoundError(str(path))
        return FileStat(mtime_ns=self.mtimes[path], size=len(self.files[path]))

    def glob(self, root: Path, pattern: str) -> list[Path]:
        regex = _glob_regex(pattern)
        matches = []
        for path in self.files:
            try:
                relative = PurePosixPath(*path.relative_to(root).parts).as_posix()
            except ValueError:
                continue
            if regex.match(relative):
                matches.append(path)
        return sorted(matches)

    def watch(self, roots, on_batch, stop_event: threading.Event, ready=None) -> None:
        self._on_batch = on_batch
        self.watching.set()
        if ready is not None:
            ready.set()
        stop_event.wait()


class FakeEngine(ReferenceEngine):
    """ReferenceEngine that records what it was asked to analyze.

    Setting ``fail_with`` makes the next analysis raise it.
    """

    def __init__(self, fs) -> None:
        super().__init__(fs)
        self.updates = []
        self.fail_with: Exception | None = None

    def create_or_update_program(self, config, prior, change_set):
        self.updates.append((prior is None, change_set))
        if self.fail_with is not None:
            raise self.fail_with
        return super().create_or_update_program(config, prior, change_set)


def write_descriptor(fs: MemoryFileSystem, **options) -> None:
    fs.put("incbuild.json", json.dumps({"include": ["src/**/*"], **options}))


@pytest.fixture(autouse=True)
def restore_logging():
    """setup_logging replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    package = logging.getLogger("incbuild")
    watchfiles = logging.getLogger("watchfiles")
    saved = (list(root.handlers), root.level, package.level, watchfiles.level)
    yield
    for handler in root.handlers:
        if handler not in saved[0]:
            handler.close()
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])
    package.setLevel(saved[2])
    watchfiles.setLevel(saved[3])


@pytest.fixture
def fs():
    return MemoryFileSystem()


@pytest.fixture
def engine(fs):
    return FakeEngine(fs)


@pytest.fixture
def build_config():
    return BuildConfig()


@pytest.fixture
def project(fs):
    """Two units: b imports a."""
    write_descriptor(fs)
    fs.put("src/a.txt", "export A\n")
    fs.put("src/b.txt", 'import "./a.txt"\nuse A\n')
    return fs


@pytest.fixture
def make_driver(fs, engine, build_config):
    def _make(**kwargs):
        driver = SessionDriver(engine, fs, build_config, PROJECT_DIR, **kwargs)
        driver.start()
        return driver

    return _make


@pytest.fixture
def fatal_error():
    return FatalAnalysisError("engine crashed")
