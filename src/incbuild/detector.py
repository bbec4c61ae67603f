"""Change detection between the current inputs and the last build snapshot.

Classification:
  - ``added``   : reachable now, absent from the snapshot
  - ``modified``: fingerprint differs, or the unit was left incomplete
  - ``removed`` : in the snapshot, no longer reachable

The affected set is the changed units plus everything that transitively
references one of them. Prior-snapshot edges seed the closure; ``close``
extends it with the live edges the analysis engine reports.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping, Optional

from .fingerprint import Fingerprinter
from .logging_config import get_logger
from .models import BuildSnapshot, ChangeSet, InputUnit, affected_closure

logger = get_logger(__name__)


class ChangeDetector:
    """Fingerprints reachable units and classifies them against a snapshot."""

    def __init__(self, fingerprinter: Fingerprinter) -> None:
        self.fingerprinter = fingerprinter

    def collect_inputs(
        self, root_names: Iterable[str], prior: Optional[BuildSnapshot]
    ) -> dict[str, InputUnit]:
        """Fingerprint every unit reachable from the roots.

        Roots come from the project descriptor. Beyond them, units are
        followed through the dependency edges recorded in ``prior`` as long
        as the referenced file still exists.
        """
        known_edges = prior.references if prior is not None else {}
        inputs: dict[str, InputUnit] = {}

        queue = deque(sorted(set(root_names)))
        seen: set[str] = set()
        while queue:
            path = queue.popleft()
            if path in seen:
                continue
            seen.add(path)

            fingerprint = self.fingerprinter.fingerprint(path)
            if fingerprint is None:
                continue

            refs = frozenset(known_edges.get(path, ()))
            inputs[path] = InputUnit(path=path, fingerprint=fingerprint, references=refs)
            for ref in sorted(refs):
                if ref not in seen:
                    queue.append(ref)

        return inputs

    def fingerprint_units(self, paths: Iterable[str]) -> dict[str, InputUnit]:
        """Fingerprint units discovered outside ``collect_inputs``."""
        units = {}
        for path in sorted(set(paths)):
            fingerprint = self.fingerprinter.fingerprint(path)
            if fingerprint is not None:
                units[path] = InputUnit(path=path, fingerprint=fingerprint)
        return units

    def detect(
        self, current: Mapping[str, InputUnit], prior: Optional[BuildSnapshot]
    ) -> ChangeSet:
        """Classify ``current`` against ``prior``.

        Args:
            current: Reachable units by logical path
            prior: Last persisted snapshot, or None to force a full rebuild

        Returns:
            ChangeSet whose affected set is closed over prior and current edges
        """
        if prior is None:
            added = frozenset(current)
            logger.debug("No prior snapshot: %d unit(s) added", len(added))
            return ChangeSet(added=added, affected=added)

        previous = prior.fingerprints
        added = frozenset(p for p in current if p not in previous)
        removed = frozenset(p for p in previous if p not in current)
        modified = frozenset(
            p
            for p, unit in current.items()
            if p in previous and (unit.fingerprint != previous[p] or p in prior.incomplete)
        )

        edges: dict[str, set[str]] = {}
        for unit, refs in prior.references.items():
            edges.setdefault(unit, set()).update(refs)
        for unit in current.values():
            edges.setdefault(unit.path, set()).update(unit.references)

        changed = modified | added | removed
        change_set = ChangeSet(
            modified=modified,
            added=added,
            removed=removed,
            affected=affected_closure(changed, edges),
        )
        logger.debug("Detected changes: %s", change_set.summary())
        return change_set

    def close(
        self, change_set: ChangeSet, live_edges: Mapping[str, Iterable[str]]
    ) -> ChangeSet:
        """Extend the affected set with edges revealed by analysis."""
        affected = affected_closure(change_set.affected, live_edges)
        if affected == change_set.affected:
            return change_set
        logger.debug(
            "Live edges added %d affected unit(s)", len(affected - change_set.affected)
        )
        return ChangeSet(
            modified=change_set.modified,
            added=change_set.added,
            removed=change_set.removed,
            affected=affected,
        )
