"""Tests for the cycle scheduler and the watch loop."""

import threading
import time
from pathlib import Path

import pytest

from incbuild.config import BuildConfig
from incbuild.driver import CycleStatus, DriverState
from incbuild.filesystem import ChangeKind, FileEvent
from incbuild.fingerprint import hash_bytes
from incbuild.watcher import CycleScheduler, WatchLoop

from conftest import PROJECT_DIR

TIMEOUT = 5.0


class TestCycleScheduler:
    def test_runs_requested_cycle(self):
        calls = []
        scheduler = CycleScheduler(calls.append)
        scheduler.start()
        try:
            assert scheduler.request(["a"]) is True
            assert scheduler.wait_idle(TIMEOUT)
        finally:
            scheduler.stop(TIMEOUT)
        assert calls == [frozenset({"a"})]
        assert scheduler.cycles_run == 1

    def test_triggers_during_cycle_coalesce(self):
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def run(paths):
            calls.append(paths)
            if len(calls) == 1:
                entered.set()
                release.wait(TIMEOUT)

        scheduler = CycleScheduler(run)
        scheduler.start()
        try:
            scheduler.request(["a"])
            assert entered.wait(TIMEOUT)

            assert scheduler.request(["b"]) is True
            assert scheduler.request(["c"]) is False
            assert scheduler.request(["d", "b"]) is False
            assert scheduler.busy

            release.set()
            assert scheduler.wait_idle(TIMEOUT)
        finally:
            scheduler.stop(TIMEOUT)

        assert calls == [frozenset({"a"}), frozenset({"b", "c", "d"})]

    def test_failing_cycle_does_not_stop_worker(self):
        calls = []

        def run(paths):
            calls.append(paths)
            if len(calls) == 1:
                raise RuntimeError("cycle blew up")

        scheduler = CycleScheduler(run)
        scheduler.start()
        try:
            scheduler.request(["a"])
            assert scheduler.wait_idle(TIMEOUT)
            scheduler.request(["b"])
            assert scheduler.wait_idle(TIMEOUT)
        finally:
            scheduler.stop(TIMEOUT)
        assert len(calls) == 2

    def test_stop_lets_running_cycle_finish(self):
        entered = threading.Event()
        release = threading.Event()
        finished = []

        def run(paths):
            entered.set()
            release.wait(TIMEOUT)
            finished.append(paths)

        scheduler = CycleScheduler(run)
        scheduler.start()
        scheduler.request(["a"])
        assert entered.wait(TIMEOUT)
        scheduler.request(["pending"])

        stopper = threading.Thread(target=scheduler.stop, args=(TIMEOUT,))
        stopper.start()
        deadline = time.monotonic() + TIMEOUT
        while not scheduler._stopping and time.monotonic() < deadline:
            time.sleep(0.01)
        release.set()
        stopper.join(TIMEOUT)

        assert finished == [frozenset({"a"})]
        assert scheduler.request(["late"]) is False


@pytest.fixture
def loop_results():
    return []


@pytest.fixture
def watch_loop(project, fs, make_driver, build_config, loop_results):
    loop = WatchLoop(make_driver(), fs, build_config, on_cycle=loop_results.append)
    yield loop
    loop.stop()


class TestWatchLoop:
    def test_initial_build(self, watch_loop, loop_results):
        result = watch_loop.start()
        assert result.status is CycleStatus.COMPLETED
        assert loop_results == [result]

    def test_change_triggers_rebuild(self, watch_loop, fs, loop_results):
        watch_loop.start()
        assert fs.watching.wait(TIMEOUT)

        path = fs.put("src/a.txt", "export A2\n")
        fs.deliver([FileEvent(ChangeKind.MODIFIED, path)])
        assert watch_loop.scheduler.wait_idle(TIMEOUT)

        assert len(loop_results) == 2
        assert loop_results[1].change_set.modified == {"src/a.txt"}

    def test_output_events_ignored(self, watch_loop, fs, loop_results):
        watch_loop.start()
        assert fs.watching.wait(TIMEOUT)

        fs.deliver(
            [
                FileEvent(ChangeKind.MODIFIED, PROJECT_DIR / "out" / "src" / "a.txt.out"),
                FileEvent(ChangeKind.MODIFIED, PROJECT_DIR / ".incbuild" / "buildstate.json"),
            ]
        )

        assert watch_loop.scheduler.wait_idle(TIMEOUT)
        assert watch_loop.scheduler.cycles_run == 1
        assert len(loop_results) == 1

    def test_watcher_armed_before_initial_build(self, watch_loop, fs, engine):
        armed = []
        original = engine.create_or_update_program

        def record(config, prior, change_set):
            armed.append(fs.watching.is_set())
            return original(config, prior, change_set)

        engine.create_or_update_program = record
        watch_loop.start()

        assert armed == [True]

    def test_edit_during_initial_build_is_rebuilt(self, watch_loop, fs, engine, loop_results):
        original = engine.create_or_update_program

        def edit_first(config, prior, change_set):
            if not loop_results:
                path = fs.put("src/a.txt", "export A2\n")
                fs.deliver([FileEvent(ChangeKind.MODIFIED, path)])
            return original(config, prior, change_set)

        engine.create_or_update_program = edit_first
        watch_loop.start()
        assert watch_loop.scheduler.wait_idle(TIMEOUT)

        assert len(loop_results) == 2
        assert loop_results[1].change_set.modified == {"src/a.txt"}
        assert watch_loop.driver.prior.fingerprints["src/a.txt"] == "sha256:" + hash_bytes(
            b"export A2\n"
        )

    def test_initial_build_error_is_raised(self, watch_loop, engine):
        engine.fail_with = RuntimeError("engine bug")
        with pytest.raises(RuntimeError, match="engine bug"):
            watch_loop.start()

    def test_stop(self, watch_loop, fs):
        watch_loop.start()
        assert fs.watching.wait(TIMEOUT)
        watch_loop.stop()
        assert watch_loop.driver.state is DriverState.STOPPED


class TestRelevantPath:
    @pytest.fixture
    def loop(self, project, fs, make_driver):
        return WatchLoop(make_driver(), fs, BuildConfig(watch_extensions=[".txt"]))

    @pytest.mark.parametrize(
        "relative, expected",
        [
            ("src/a.txt", "src/a.txt"),
            ("incbuild.json", "incbuild.json"),
            ("src/notes.md", None),
            ("out/src/a.txt.out", None),
            (".incbuild/buildstate.json", None),
            ("src/.swap.txt", None),
        ],
    )
    def test_filtering(self, loop, relative, expected):
        assert loop.relevant_path(PROJECT_DIR / relative) == expected

    def test_outside_project(self, loop):
        assert loop.relevant_path(Path("/elsewhere/a.txt")) is None
