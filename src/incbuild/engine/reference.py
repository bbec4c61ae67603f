"""Reference analysis engine.

A deliberately small engine so ``incbuild`` can build real directories
without an external compiler. Units are text files; a line of the form

    import "relative/path"

declares a dependency on another unit, resolved relative to the importing
file. Emitting copies each unit to ``<outDir>/<path>.out`` behind a banner
and, when ``sourceMap`` is on, writes a line-for-line source map next to it.

Project descriptor (``incbuild.json``)::

    {
        "include": ["src/**/*"],
        "exclude": [],
        "rootDir": ".",
        "outDir": "out",
        "sourceMap": true,
        "options": {}
    }
"""

from __future__ import annotations

import fnmatch
import json
import posixpath
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Optional

from ..exceptions import FileAccessError, ProjectConfigError
from ..filesystem import FileSystem, resolve_within, to_logical
from ..fingerprint import hash_bytes
from ..logging_config import get_logger
from ..models import ChangeSet, Diagnostic, InputUnit, Severity
from .base import PlannedArtifact, ProgramState, ProjectConfig

logger = get_logger(__name__)

DEFAULT_INCLUDE = ("src/**/*",)
BANNER = "// generated by incbuild from {source}"

_KNOWN_KEYS = frozenset({"include", "exclude", "rootDir", "outDir", "sourceMap", "options"})

_IMPORT_RE = re.compile(r"""^\s*import\s+(["'])(?P<spec>[^"']+)\1""")

# Diagnostic codes
UNRESOLVED_IMPORT = "IB1001"
IMPORT_OUTSIDE_ROOT = "IB1002"
UNREADABLE_UNIT = "IB1003"
IMPORT_CYCLE = "IB2001"
EMPTY_UNIT = "IB3001"


@dataclass(frozen=True)
class ImportDirective:
    """One ``import`` line. ``target`` is None when the path leaves the root."""

    spec: str
    target: Optional[str]
    line: int
    column: int


class ReferenceEngine:
    """Line-based import analyzer implementing the AnalysisEngine protocol."""

    def __init__(self, fs: FileSystem) -> None:
        self.fs = fs

    # ── Configuration ─────────────────────────────────────────────

    def parse_project_config(self, path: Path) -> ProjectConfig:
        if not self.fs.file_exists(path):
            raise ProjectConfigError(path, "file not found")

        try:
            raw = json.loads(self.fs.read_file(path).decode("utf-8"))
        except FileNotFoundError:
            raise ProjectConfigError(path, "file not found")
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProjectConfigError(path, f"cannot parse JSON: {e}")

        if not isinstance(raw, dict):
            raise ProjectConfigError(path, "top level must be an object")

        unknown = sorted(set(raw) - _KNOWN_KEYS)
        if unknown:
            raise ProjectConfigError(path, f"unknown option '{unknown[0]}'")

        include = _string_list(path, raw, "include", list(DEFAULT_INCLUDE))
        exclude = _string_list(path, raw, "exclude", [])
        root_dir = path.parent / _string(path, raw, "rootDir", ".")
        out_dir = posixpath.normpath(_string(path, raw, "outDir", "out"))
        if out_dir in (".", "..") or out_dir.startswith("../") or out_dir.startswith("/"):
            raise ProjectConfigError(path, "outDir must be a subdirectory of rootDir")

        source_maps = raw.get("sourceMap", True)
        if not isinstance(source_maps, bool):
            raise ProjectConfigError(path, "sourceMap must be true or false")
        options = raw.get("options", {})
        if not isinstance(options, dict):
            raise ProjectConfigError(path, "options must be an object")

        descriptor = to_logical(root_dir, path) if _is_under(root_dir, path) else None
        names: set[str] = set()
        for pattern in include:
            for file_path in self.fs.glob(root_dir, pattern):
                logical = to_logical(root_dir, file_path)
                if logical == descriptor or _is_hidden(logical):
                    continue
                if logical == out_dir or logical.startswith(out_dir + "/"):
                    continue
                if any(fnmatch.fnmatch(logical, pattern) for pattern in exclude):
                    continue
                names.add(logical)

        if not names:
            raise ProjectConfigError(
                path, f"no inputs were found for include {json.dumps(include)}"
            )

        return ProjectConfig(
            path=path,
            root_dir=root_dir,
            root_names=tuple(sorted(names)),
            out_dir=out_dir,
            source_maps=source_maps,
            options=options,
        )

    # ── Analysis ──────────────────────────────────────────────────

    def create_or_update_program(
        self,
        config: ProjectConfig,
        prior: Optional[ProgramState],
        change_set: ChangeSet,
    ) -> ProgramState:
        full = (
            prior is None
            or prior.config.options_hash != config.options_hash
            or prior.config.root_dir != config.root_dir
        )
        if full:
            texts: dict[str, str] = {}
            imports: dict[str, tuple[ImportDirective, ...]] = {}
            reusable: dict[str, InputUnit] = {}
        else:
            texts = dict(prior.data["texts"])
            imports = dict(prior.data["imports"])
            reusable = prior.units

        read_errors: dict[str, str] = {}
        units: dict[str, InputUnit] = {}
        analyzed = 0

        queue = deque(config.root_names)
        seen: set[str] = set()
        while queue:
            path = queue.popleft()
            if path in seen:
                continue
            seen.add(path)

            if path in reusable and path not in change_set.affected:
                unit = reusable[path]
            else:
                text = self._read(config, path, read_errors)
                if text is None:
                    continue
                analyzed += 1
                directives = _parse_imports(path, text)
                texts[path] = text
                imports[path] = directives
                unit = InputUnit(
                    path=path,
                    fingerprint="sha256:" + hash_bytes(text.encode("utf-8")),
                    references=frozenset(d.target for d in directives if d.target is not None),
                )

            units[path] = unit
            for ref in sorted(unit.references):
                if ref not in seen:
                    queue.append(ref)

        logger.debug("Analyzed %d of %d unit(s)", analyzed, len(units))

        return ProgramState(
            config=config,
            units=units,
            generation=0 if full else prior.generation + 1,
            data={
                "texts": {p: texts[p] for p in units},
                "imports": {p: imports[p] for p in units},
                "read_errors": read_errors,
            },
        )

    def _read(self, config: ProjectConfig, path: str, errors: dict[str, str]) -> Optional[str]:
        try:
            data = self.fs.read_file(resolve_within(config.root_dir, path))
        except FileNotFoundError:
            return None
        except FileAccessError as e:
            logger.warning("Cannot read %s: %s", path, e.reason)
            errors[path] = e.reason
            return None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("Cannot decode %s: %s", path, e)
            errors[path] = f"not valid UTF-8 (byte offset {e.start})"
            return None

    # ── Diagnostics ───────────────────────────────────────────────

    def get_diagnostics(self, state: ProgramState) -> list[Diagnostic]:
        texts: dict[str, str] = state.data.get("texts", {})
        imports: dict[str, tuple[ImportDirective, ...]] = state.data.get("imports", {})
        diagnostics: list[Diagnostic] = []

        for path, reason in sorted(state.data.get("read_errors", {}).items()):
            diagnostics.append(
                Diagnostic(
                    Severity.ERROR, f"Cannot read file: {reason}", unit=path, code=UNREADABLE_UNIT
                )
            )

        for path in sorted(state.units):
            for directive in imports.get(path, ()):
                if directive.target is None:
                    diagnostics.append(
                        Diagnostic(
                            Severity.ERROR,
                            f"Import '{directive.spec}' resolves outside the project root",
                            unit=path,
                            line=directive.line,
                            column=directive.column,
                            code=IMPORT_OUTSIDE_ROOT,
                        )
                    )
                elif directive.target not in state.units:
                    diagnostics.append(
                        Diagnostic(
                            Severity.ERROR,
                            f"Cannot find module '{directive.spec}'",
                            unit=path,
                            line=directive.line,
                            column=directive.column,
                            code=UNRESOLVED_IMPORT,
                        )
                    )
            if not texts.get(path, "").strip():
                diagnostics.append(
                    Diagnostic(
                        Severity.SUGGESTION,
                        "Unit is empty",
                        unit=path,
                        line=1,
                        column=1,
                        code=EMPTY_UNIT,
                    )
                )

        for path in sorted(_cyclic_units(state.references())):
            diagnostics.append(
                Diagnostic(
                    Severity.WARNING,
                    "Unit is part of an import cycle",
                    unit=path,
                    line=1,
                    column=1,
                    code=IMPORT_CYCLE,
                )
            )

        return diagnostics

    # ── Emit ──────────────────────────────────────────────────────

    def get_emit_plan(self, state: ProgramState) -> list[PlannedArtifact]:
        config = state.config
        texts: dict[str, str] = state.data.get("texts", {})
        plan: list[PlannedArtifact] = []

        for path in sorted(state.units):
            text = texts[path]
            out_path = posixpath.join(config.out_dir, path + ".out")
            body = BANNER.format(source=path) + "\n" + text
            if text and not text.endswith("\n"):
                body += "\n"
            if config.source_maps:
                map_path = out_path + ".map"
                body += f"//# sourceMappingURL={posixpath.basename(map_path)}\n"
                plan.append(
                    PlannedArtifact(
                        path=map_path,
                        sources=(path,),
                        content=_source_map(out_path, path, text),
                    )
                )
            plan.append(PlannedArtifact(path=out_path, sources=(path,), content=body.encode("utf-8")))

        return sorted(plan, key=lambda a: a.path)


def _parse_imports(path: str, text: str) -> tuple[ImportDirective, ...]:
    directives = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        match = _IMPORT_RE.match(line)
        if match is None:
            continue
        spec = match.group("spec")
        directives.append(
            ImportDirective(
                spec=spec,
                target=_resolve_import(path, spec),
                line=lineno,
                # 1-based column of the opening quote
                column=match.start("spec"),
            )
        )
    return tuple(directives)


def _resolve_import(importer: str, spec: str) -> Optional[str]:
    if spec.startswith("/"):
        return None
    target = posixpath.normpath(posixpath.join(posixpath.dirname(importer), spec))
    if target == ".." or target.startswith("../"):
        return None
    return target


def _source_map(out_path: str, source: str, text: str) -> bytes:
    """Line-for-line map; the banner line has no mapping."""
    line_count = len(text.splitlines())
    segments = (["AAAA"] + ["AACA"] * (line_count - 1)) if line_count else []
    payload = {
        "version": 3,
        "file": posixpath.basename(out_path),
        "sourceRoot": "",
        "sources": [posixpath.relpath(source, posixpath.dirname(out_path) or ".")],
        "names": [],
        "mappings": ";" + ";".join(segments),
    }
    return (json.dumps(payload, sort_keys=True) + "\n").encode("utf-8")


def _cyclic_units(edges: dict[str, frozenset[str]]) -> set[str]:
    """Units in a strongly connected component with a cycle (Kosaraju)."""
    order: list[str] = []
    visited: set[str] = set()
    for start in sorted(edges):
        if start in visited:
            continue
        visited.add(start)
        stack = [(start, iter(sorted(edges[start])))]
        while stack:
            node, children = stack[-1]
            for child in children:
                if child in edges and child not in visited:
                    visited.add(child)
                    stack.append((child, iter(sorted(edges[child]))))
                    break
            else:
                stack.pop()
                order.append(node)

    reverse: dict[str, set[str]] = {}
    for unit, refs in edges.items():
        for ref in refs:
            if ref in edges:
                reverse.setdefault(ref, set()).add(unit)

    cyclic: set[str] = set()
    assigned: set[str] = set()
    for node in reversed(order):
        if node in assigned:
            continue
        assigned.add(node)
        component = []
        pending = [node]
        while pending:
            current = pending.pop()
            component.append(current)
            for parent in reverse.get(current, ()):
                if parent not in assigned:
                    assigned.add(parent)
                    pending.append(parent)
        if len(component) > 1 or node in edges[node]:
            cyclic.update(component)
    return cyclic


def _string(path: Path, raw: dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key, default)
    if not isinstance(value, str) or not value:
        raise ProjectConfigError(path, f"{key} must be a non-empty string")
    return value


def _string_list(path: Path, raw: dict[str, Any], key: str, default: list[str]) -> list[str]:
    value = raw.get(key, default)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ProjectConfigError(path, f"{key} must be a list of strings")
    return value


def _is_hidden(logical: str) -> bool:
    return any(part.startswith(".") for part in PurePosixPath(logical).parts)


def _is_under(root: Path, path: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False
