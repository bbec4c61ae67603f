"""Tests for the shared data models."""

import pytest

from incbuild.models import (
    SCHEMA_VERSION,
    ArtifactRecord,
    BuildSnapshot,
    ChangeSet,
    CycleResult,
    CycleStatus,
    Diagnostic,
    EmitResult,
    Severity,
    affected_closure,
    sort_diagnostics,
)


def _record(path="out/a.out", sources=("a",)):
    return ArtifactRecord(path=path, sources=sources, content_hash="ab" * 32, size=3)


class TestDiagnosticFormat:
    def test_located(self):
        d = Diagnostic(Severity.ERROR, "Cannot find module", unit="src/b.ts", line=3, column=9)
        assert d.format() == "src/b.ts (3,9): Cannot find module"

    def test_unit_without_position(self):
        d = Diagnostic(Severity.WARNING, "Unit is empty", unit="src/b.ts")
        assert d.format() == "src/b.ts: Unit is empty"

    def test_without_location(self):
        assert Diagnostic(Severity.MESSAGE, "Done").format() == "Done"

    def test_is_error(self):
        assert Diagnostic(Severity.ERROR, "x").is_error
        assert not Diagnostic(Severity.SUGGESTION, "x").is_error


class TestSortDiagnostics:
    def test_location_less_first(self):
        located = Diagnostic(Severity.ERROR, "b", unit="a.ts", line=1, column=1)
        global_ = Diagnostic(Severity.WARNING, "a")
        assert sort_diagnostics([located, global_]) == [global_, located]

    def test_by_unit_then_position(self):
        d1 = Diagnostic(Severity.ERROR, "m", unit="b.ts", line=1, column=1)
        d2 = Diagnostic(Severity.ERROR, "m", unit="a.ts", line=5, column=1)
        d3 = Diagnostic(Severity.ERROR, "m", unit="a.ts", line=2, column=7)
        assert sort_diagnostics([d1, d2, d3]) == [d3, d2, d1]

    def test_severity_breaks_ties(self):
        warning = Diagnostic(Severity.WARNING, "m", unit="a.ts", line=1, column=1)
        error = Diagnostic(Severity.ERROR, "m", unit="a.ts", line=1, column=1)
        assert sort_diagnostics([warning, error]) == [error, warning]

    def test_duplicates_removed(self):
        d = Diagnostic(Severity.ERROR, "m", unit="a.ts", line=1, column=1)
        assert sort_diagnostics([d, d]) == [d]


class TestAffectedClosure:
    def test_follows_reverse_edges(self):
        edges = {"b": ["a"], "c": ["b"], "d": []}
        assert affected_closure({"a"}, edges) == {"a", "b", "c"}

    def test_cycle_terminates(self):
        edges = {"a": ["b"], "b": ["a"]}
        assert affected_closure({"a"}, edges) == {"a", "b"}

    def test_no_dependents(self):
        assert affected_closure({"x"}, {"a": ["b"]}) == {"x"}


class TestChangeSet:
    def test_affected_contains_changed(self):
        cs = ChangeSet(modified={"a"}, added={"b"}, removed={"c"})
        assert cs.affected == {"a", "b", "c"}
        assert isinstance(cs.modified, frozenset)

    def test_sets_must_be_disjoint(self):
        with pytest.raises(ValueError):
            ChangeSet(modified={"a"}, added={"a"})

    def test_empty(self):
        assert ChangeSet().is_empty
        assert not ChangeSet(affected={"a"}).is_empty

    def test_summary(self):
        cs = ChangeSet(modified={"a"}, affected={"a", "b"})
        assert cs.summary() == "1 modified, 0 added, 0 removed (2 affected)"


class TestBuildSnapshot:
    def test_round_trip(self):
        snapshot = BuildSnapshot(
            fingerprints={"a": "sha256:1", "b": "sha256:2"},
            references={"b": ("a",)},
            artifacts={"a": (_record(),)},
            incomplete=frozenset({"b"}),
            tool_version="0.1.0",
            options_hash="abc",
        )
        assert BuildSnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_schema_mismatch_rejected(self):
        data = BuildSnapshot().to_dict()
        data["schema_version"] = SCHEMA_VERSION + 1
        with pytest.raises(ValueError):
            BuildSnapshot.from_dict(data)

    def test_artifact_without_unit_is_inconsistent(self):
        snapshot = BuildSnapshot(fingerprints={"a": "x"}, artifacts={"gone": (_record(sources=("gone",)),)})
        assert not snapshot.consistent()

    def test_artifact_sources_must_be_present(self):
        snapshot = BuildSnapshot(fingerprints={"a": "x"}, artifacts={"a": (_record(sources=("zzz",)),)})
        assert not snapshot.consistent()

    def test_incomplete_unit_must_be_present(self):
        assert not BuildSnapshot(incomplete=frozenset({"a"})).consistent()

    def test_compatible_with(self):
        snapshot = BuildSnapshot(tool_version="1", options_hash="h")
        assert snapshot.compatible_with("1", "h")
        assert not snapshot.compatible_with("2", "h")
        assert not snapshot.compatible_with("1", "other")

    def test_artifact_index(self):
        first, second = _record("out/a.out"), _record("out/a.map")
        snapshot = BuildSnapshot(fingerprints={"a": "x"}, artifacts={"a": (first, second)})
        assert snapshot.artifact_index() == {"out/a.out": first, "out/a.map": second}


class TestCycleResult:
    def test_error_diagnostic_means_errors(self):
        result = CycleResult(
            status=CycleStatus.COMPLETED,
            change_set=ChangeSet(),
            diagnostics=[Diagnostic(Severity.ERROR, "boom")],
            emit=EmitResult(),
            snapshot=None,
        )
        assert result.has_errors

    def test_incomplete_means_errors(self):
        result = CycleResult(
            status=CycleStatus.INCOMPLETE,
            change_set=ChangeSet(),
            diagnostics=[],
            emit=EmitResult(),
            snapshot=None,
        )
        assert result.has_errors

    def test_warnings_only_is_clean(self):
        result = CycleResult(
            status=CycleStatus.COMPLETED,
            change_set=ChangeSet(),
            diagnostics=[Diagnostic(Severity.WARNING, "hm")],
            emit=EmitResult(),
            snapshot=None,
        )
        assert not result.has_errors
