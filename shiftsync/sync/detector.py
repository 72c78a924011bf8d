"""ConflictDetector — three-way comparison of candidates against a base.

A *candidate* is any edited copy of the database: the local working
copy, or a snapshot another person saved. Every row present in the
base or in any candidate is classified independently per table:

- no candidate differs from the base: untouched
- every differing candidate agrees: automatic change
- differing candidates disagree: :class:`MergeConflict`

Only field content is compared. Provenance (``modified_at``,
``modified_by``) never makes two rows differ, and a tombstone compares
equal to a missing row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from shiftsync.models.row import Row, RowSet, Scalar
from shiftsync.sync.conflict import MergeConflict, Modifier
from shiftsync.sync.tables import TableRegistry

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """An edited copy of the database taking part in a merge."""

    actor: str
    rows: RowSet
    label: str = ""


@dataclass
class AutoChange:
    """A non-conflicting change to carry into the merged result.

    ``row`` is the resulting row; ``None`` means the row is dropped.
    """

    table: str
    identity: str
    row: Optional[Row]
    source: str = ""


@dataclass
class TableMergeStats:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    conflicts: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.deleted + self.conflicts


@dataclass
class DetectionResult:
    """Everything the resolver and applier need from one comparison."""

    conflicts: list[MergeConflict] = field(default_factory=list)
    auto_changes: list[AutoChange] = field(default_factory=list)
    stats: dict[str, TableMergeStats] = field(default_factory=dict)
    candidates: list[Candidate] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def has_changes(self) -> bool:
        return bool(self.conflicts or self.auto_changes)

    def conflict(self, conflict_key: str) -> MergeConflict:
        for c in self.conflicts:
            if c.conflict_key == conflict_key:
                return c
        raise KeyError(conflict_key)


@dataclass
class CoarseReport:
    """Per-table counts from the provenance-only precheck.

    ``changed`` counts rows any candidate touched; ``overlapping``
    counts rows touched by two or more candidates.
    """

    changed: dict[str, int] = field(default_factory=dict)
    overlapping: dict[str, int] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.changed)

    @property
    def has_overlaps(self) -> bool:
        return bool(self.overlapping)

    def total_changed(self) -> int:
        return sum(self.changed.values())


def _state(row: Row | None) -> dict[str, Scalar] | None:
    if row is None or row.is_deleted:
        return None
    return row.fields


def _signature(row: Row | None) -> tuple | None:
    if row is None:
        return None
    return (row.modified_at, row.modified_by, row.deleted_at)


def _all_tables(base: RowSet, candidates: list[Candidate]) -> list[str]:
    names = set(base.tables())
    for c in candidates:
        names.update(c.rows.tables())
    return sorted(names)


class ConflictDetector:
    """Compare candidates against their common base, table by table."""

    def __init__(self, registry: TableRegistry | None = None) -> None:
        self.registry = registry or TableRegistry()

    def detect(self, base: RowSet, candidates: list[Candidate]) -> DetectionResult:
        """Run the full content comparison.

        Parameters
        ----------
        base:
            The common ancestor.
        candidates:
            Edited copies, in display order. The working copy usually
            comes first.

        Returns
        -------
        DetectionResult
        """
        result = DetectionResult(candidates=list(candidates))

        for table in _all_tables(base, candidates):
            base_idx = base.index(table)
            cand_idx = [c.rows.index(table) for c in candidates]
            identities = set(base_idx)
            for idx in cand_idx:
                identities.update(idx)

            stats = TableMergeStats()
            for identity in sorted(identities):
                self._classify(
                    table, identity, base_idx.get(identity),
                    candidates, [idx.get(identity) for idx in cand_idx],
                    result, stats,
                )
            if stats.total:
                result.stats[table] = stats

        logger.info(
            "Detected %d conflict(s) and %d automatic change(s) across %d candidate(s)",
            len(result.conflicts), len(result.auto_changes), len(candidates),
        )
        return result

    def precheck(self, base: RowSet, candidates: list[Candidate]) -> CoarseReport:
        """Cheap provenance-only comparison.

        Never resolves anything. A report without changes means the
        full :meth:`detect` can be skipped.
        """
        report = CoarseReport()
        for table in _all_tables(base, candidates):
            base_idx = base.index(table)
            cand_idx = [c.rows.index(table) for c in candidates]
            identities = set(base_idx)
            for idx in cand_idx:
                identities.update(idx)

            changed = overlapping = 0
            for identity in identities:
                base_sig = _signature(base_idx.get(identity))
                touched = sum(
                    1 for idx in cand_idx if _signature(idx.get(identity)) != base_sig
                )
                if touched:
                    changed += 1
                if touched > 1:
                    overlapping += 1
            if changed:
                report.changed[table] = changed
            if overlapping:
                report.overlapping[table] = overlapping

        logger.debug(
            "Precheck: %d changed row(s), overlaps in %s",
            report.total_changed(), sorted(report.overlapping) or "no tables",
        )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _classify(
        self,
        table: str,
        identity: str,
        base_row: Row | None,
        candidates: list[Candidate],
        rows: list[Row | None],
        result: DetectionResult,
        stats: TableMergeStats,
    ) -> None:
        base_state = _state(base_row)
        differing = [
            (cand, row)
            for cand, row in zip(candidates, rows)
            if _state(row) != base_state
        ]
        if not differing:
            return

        first_state = _state(differing[0][1])
        if all(_state(row) == first_state for _, row in differing):
            row = self._pick_auto_row(differing)
            result.auto_changes.append(
                AutoChange(table, identity, row, source=differing[0][0].actor)
            )
            if base_state is None:
                stats.inserted += 1
            elif first_state is None:
                stats.deleted += 1
            else:
                stats.updated += 1
            return

        modifiers = [
            Modifier(
                actor=cand.actor,
                row=row if _state(row) is not None else None,
                modified_at=row.modified_at if row is not None else None,
            )
            for cand, row in differing
        ]
        sample = base_row or next((r for _, r in differing if r is not None), None)
        description = (
            self.registry.describe(sample) if sample is not None
            else f"{table} row {identity}"
        )
        result.conflicts.append(
            MergeConflict(
                table=table,
                sync_id=identity,
                base_row=base_row,
                modifiers=modifiers,
                row_description=description,
                allow_multiple=self.registry.is_additive(table),
            )
        )
        stats.conflicts += 1

    @staticmethod
    def _pick_auto_row(differing: list[tuple[Candidate, Row | None]]) -> Row | None:
        # A tombstone is preferred over a missing row so the deletion
        # reaches other copies.
        for _, row in differing:
            if row is not None:
                return row
        return None
