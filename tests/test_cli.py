"""Tests for the incbuild command line."""

import json

import pytest
from typer.testing import CliRunner

from incbuild import __version__
from incbuild.cli import app
from incbuild.config import BuildConfig
from incbuild.watcher import WatchLoop

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for name in BuildConfig.__dataclass_fields__:
        monkeypatch.delenv(f"INCBUILD_{name.upper()}", raising=False)


@pytest.fixture
def project_dir(tmp_path):
    root = tmp_path / "app"
    (root / "src").mkdir(parents=True)
    (root / "incbuild.json").write_text(json.dumps({"include": ["src/**/*"]}))
    (root / "src" / "a.txt").write_text("export A\n")
    (root / "src" / "b.txt").write_text('import "./a.txt"\nuse A\n')
    return root


def _build(*args):
    return runner.invoke(app, ["build", *args])


class TestBuildOnce:
    def test_success(self, project_dir):
        result = _build("--project", str(project_dir))

        assert result.exit_code == 0, result.output
        assert "Build complete" in result.output
        assert (project_dir / "out" / "src" / "a.txt.out").exists()
        assert (project_dir / ".incbuild" / "buildstate.json").exists()

    def test_mode_defaults_to_once(self, project_dir):
        assert _build("once", "-p", str(project_dir)).exit_code == 0

    def test_second_build_writes_nothing(self, project_dir):
        _build("-p", str(project_dir))
        result = _build("-p", str(project_dir))
        assert result.exit_code == 0
        assert "0 written" in result.output

    def test_errors_exit_one(self, project_dir):
        (project_dir / "src" / "b.txt").write_text('import "./missing.txt"\n')

        result = _build("-p", str(project_dir))

        assert result.exit_code == 1
        assert "src/b.txt (1,8): Cannot find module './missing.txt'" in result.output

    def test_warnings_exit_zero(self, project_dir):
        (project_dir / "src" / "a.txt").write_text('import "./b.txt"\n')

        result = _build("-p", str(project_dir))

        assert result.exit_code == 0
        assert "Unit is part of an import cycle" in result.output

    def test_verbose_lists_artifacts(self, project_dir):
        result = _build("-p", str(project_dir), "-v")
        assert "wrote out/src/a.txt.out" in result.output

    def test_quiet_prints_only_diagnostics(self, project_dir):
        result = _build("-p", str(project_dir), "-q")
        assert result.exit_code == 0
        assert "Build complete" not in result.output


class TestExitCodes:
    def test_unknown_mode(self, project_dir):
        result = _build("sideways", "-p", str(project_dir))
        assert result.exit_code == 2
        assert "Unknown build mode 'sideways'" in result.output

    def test_missing_descriptor(self, tmp_path):
        result = _build("-p", str(tmp_path))
        assert result.exit_code == 3
        assert "Configuration error" in result.output

    def test_invalid_descriptor(self, project_dir):
        (project_dir / "incbuild.json").write_text('{"include": ["src/**/*"], "target": 1}')
        result = _build("-p", str(project_dir))
        assert result.exit_code == 3
        assert "unknown option 'target'" in result.output

    def test_missing_config_file(self, project_dir, tmp_path):
        result = _build("-p", str(project_dir), "--config", str(tmp_path / "nope.toml"))
        assert result.exit_code == 3


class TestWatchMode:
    def test_initial_build_then_stop(self, project_dir, monkeypatch):
        monkeypatch.setattr(WatchLoop, "wait", lambda self: None)

        result = _build("watch", "-p", str(project_dir))

        assert result.exit_code == 0, result.output
        assert "Starting compilation in watch mode..." in result.output
        assert "Watching for file changes." in result.output
        assert (project_dir / "out" / "src" / "b.txt.out").exists()


class TestStateCommands:
    def test_state_after_build(self, project_dir):
        _build("-p", str(project_dir))
        result = runner.invoke(app, ["state", "-p", str(project_dir)])
        assert result.exit_code == 0
        assert "Valid" in result.output
        assert "Units: 2" in result.output

    def test_state_without_build(self, project_dir):
        result = runner.invoke(app, ["state", "-p", str(project_dir)])
        assert "No build state" in result.output

    def test_clean(self, project_dir):
        _build("-p", str(project_dir))

        result = runner.invoke(app, ["clean", "-p", str(project_dir)])

        assert result.exit_code == 0
        assert "Build state removed" in result.output
        assert not (project_dir / ".incbuild" / "buildstate.json").exists()

    def test_clean_failure_exits_nonzero(self, project_dir):
        # A directory where the state file should be cannot be unlinked
        (project_dir / ".incbuild" / "buildstate.json").mkdir(parents=True)

        result = runner.invoke(app, ["clean", "-p", str(project_dir)])

        assert result.exit_code == 1
        assert "Could not remove build state" in result.output
        assert "Traceback" not in result.output

    def test_clean_forces_full_rebuild(self, project_dir):
        _build("-p", str(project_dir))
        runner.invoke(app, ["clean", "-p", str(project_dir)])
        result = _build("-p", str(project_dir))
        assert "0 written" not in result.output


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output
