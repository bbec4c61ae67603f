"""Watch mode: rebuild when project files change."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import BuildConfig
from .driver import SessionDriver
from .filesystem import FileEvent, FileSystem, to_logical
from .logging_config import get_logger
from .models import CycleResult

logger = get_logger(__name__)

CycleCallback = Callable[[CycleResult], None]

# Wait this long for the watcher thread to exit on stop
STOP_TIMEOUT_SECONDS = 5.0

# Initial build waits this long for the watcher to arm
READY_TIMEOUT_SECONDS = 5.0


class CycleScheduler:
    """Serializes build cycles onto one worker thread.

    At most one trigger is pending. Triggers that arrive while one is already
    pending merge into it, so a burst of changes during a cycle produces
    exactly one follow-up cycle.
    """

    def __init__(self, run_cycle: Callable[[frozenset[str]], None]) -> None:
        self._run_cycle = run_cycle
        self._cond = threading.Condition()
        self._pending: Optional[set[str]] = None
        self._running = False
        self._stopping = False
        self._thread: Optional[threading.Thread] = None
        self.cycles_run = 0

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._worker, name="incbuild-scheduler", daemon=True
        )
        self._thread.start()

    def request(self, paths: Iterable[str] = ()) -> bool:
        """Queue a cycle for ``paths``.

        Returns:
            False if the trigger merged into an already pending one or the
            scheduler is stopping
        """
        with self._cond:
            if self._stopping:
                return False
            if self._pending is not None:
                self._pending.update(paths)
                logger.debug("Coalesced trigger into pending cycle")
                return False
            self._pending = set(paths)
            self._cond.notify_all()
            return True

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._running or self._pending is not None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle is running or pending."""
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._running and self._pending is None, timeout
            )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Drop any pending trigger and let the running cycle finish."""
        with self._cond:
            self._stopping = True
            self._pending = None
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Build cycle still running after %.1fs", timeout or 0.0)

    def _worker(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._stopping or self._pending is not None)
                if self._stopping:
                    return
                paths = frozenset(self._pending)
                self._pending = None
                self._running = True

            try:
                self._run_cycle(paths)
            except Exception:
                # Keep serving triggers; the next change gets another cycle
                logger.exception("Build cycle failed")
            finally:
                with self._cond:
                    self._running = False
                    self.cycles_run += 1
                    self._cond.notify_all()


class WatchLoop:
    """Runs an initial build, then rebuilds on every relevant change.

    Usage:
        loop = WatchLoop(driver, fs, config, on_cycle=print_result)
        loop.start()
        try:
            loop.wait()
        finally:
            loop.stop()
    """

    def __init__(
        self,
        driver: SessionDriver,
        fs: FileSystem,
        config: BuildConfig,
        on_cycle: Optional[CycleCallback] = None,
    ) -> None:
        self.driver = driver
        self.fs = fs
        self.config = config
        self.on_cycle = on_cycle

        self.scheduler = CycleScheduler(self._cycle)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._watching = threading.Event()
        self._initial: Optional[CycleResult] = None
        self._initial_error: Optional[Exception] = None
        self._initial_done = threading.Event()

    def start(self) -> Optional[CycleResult]:
        """Start watching, then run the initial build through the scheduler.

        The watcher is armed first so edits made during the initial build
        queue a follow-up cycle. Returns the initial result, or None if the
        loop was stopped before it finished.
        """
        self.driver.report_progress("Starting compilation in watch mode...")
        self.scheduler.start()
        self._thread = threading.Thread(
            target=self._watch, name="incbuild-watcher", daemon=True
        )
        self._thread.start()
        if not self._watching.wait(READY_TIMEOUT_SECONDS):
            logger.warning("File watcher not ready after %.0fs", READY_TIMEOUT_SECONDS)

        self.scheduler.request()
        while not self._initial_done.wait(0.5):
            if self._stop_event.is_set():
                return None
        if self._initial_error is not None:
            raise self._initial_error
        return self._initial

    def wait(self) -> None:
        """Block until the watcher exits. Interruptible with Ctrl+C."""
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(0.5)

    def stop(self) -> None:
        logger.debug("Stopping watch loop...")
        self._stop_event.set()
        self.scheduler.stop(timeout=STOP_TIMEOUT_SECONDS)
        if self._thread is not None:
            self._thread.join(timeout=STOP_TIMEOUT_SECONDS)
            if self._thread.is_alive():
                logger.warning("Watcher thread did not exit within %.0fs", STOP_TIMEOUT_SECONDS)
        self.driver.stop()

    def relevant_path(self, path: Path) -> Optional[str]:
        """Logical path of ``path`` if a change to it should trigger a build."""
        try:
            logical = to_logical(self.driver.project_dir, path)
        except ValueError:
            return None

        if logical == self.config.project_file:
            return logical

        parts = logical.split("/")
        if parts[0] == self.config.state_dir or any(p.startswith(".") for p in parts):
            return None

        project = self.driver.project_config
        if project is not None:
            out_dir = project.root_dir / project.out_dir
            try:
                Path(path).relative_to(out_dir)
                return None
            except ValueError:
                pass

        if self.config.watch_extensions and Path(path).suffix not in self.config.watch_extensions:
            return None
        return logical

    def _watch(self) -> None:
        try:
            self.fs.watch(
                [self.driver.project_dir], self._on_batch, self._stop_event, ready=self._watching
            )
        except Exception:
            logger.exception("File watcher failed")
        finally:
            self._watching.set()

    def _on_batch(self, events: list[FileEvent]) -> None:
        changed = sorted({p for p in (self.relevant_path(e.path) for e in events) if p})
        if not changed:
            logger.debug("Ignoring %d irrelevant file event(s)", len(events))
            return

        logger.info("Detected %d changed file(s)", len(changed))
        if self.scheduler.request(changed):
            self.driver.report_progress(
                "File change detected. Starting incremental compilation..."
            )

    def _cycle(self, paths: frozenset[str]) -> None:
        logger.debug("Rebuilding for: %s", ", ".join(sorted(paths)) or "initial build")
        try:
            result = self.driver.run_once()
            self._finish_cycle(result)
        except Exception as exc:
            if not self._initial_done.is_set():
                self._initial_error = exc
                self._initial_done.set()
            raise
        if not self._initial_done.is_set():
            self._initial = result
            self._initial_done.set()

    def _finish_cycle(self, result: CycleResult) -> None:
        if self.on_cycle is not None:
            try:
                self.on_cycle(result)
            except Exception:
                logger.exception("Cycle observer failed")
        self.driver.report_progress("Watching for file changes.")
