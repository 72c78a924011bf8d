"""Tests for MergeApplier — turning resolutions into a merged row set."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shiftsync.models.row import Row, RowSet
from shiftsync.sync.applier import MergeApplier
from shiftsync.sync.conflict import AcceptDelete, KeepAll, KeepBase, KeepModifier
from shiftsync.sync.detector import Candidate, ConflictDetector
from shiftsync.sync.errors import IncompleteResolutionError
from shiftsync.sync.provenance import mark_deleted, touch
from shiftsync.sync.resolver import MergeResolver
from shiftsync.sync.tables import TableRegistry

T0 = datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)
T2 = T0 + timedelta(hours=2)


def _applier() -> MergeApplier:
    return MergeApplier(clock=lambda: T2)


def _detect(base: RowSet, *candidates: tuple[str, RowSet]):
    detector = ConflictDetector(TableRegistry.default())
    return detector.detect(base, [Candidate(actor, rows) for actor, rows in candidates])


def _assignment_base() -> RowSet:
    return RowSet([touch(
        Row(table="assignment", identity="A1", fields={"person": "Jane", "date": "2025-07-15"}),
        "admin@x.com", T0,
    )])


def _with_date(base: RowSet, actor: str, date: str) -> RowSet:
    rows = base.copy()
    row = rows.get("assignment", "A1")
    row.fields["date"] = date
    touch(row, actor, T1)
    return rows


def _two_way_conflict():
    base = _assignment_base()
    jane = _with_date(base, "jane@x.com", "2025-07-16")
    bob = _with_date(base, "bob@x.com", "2025-07-17")
    detection = _detect(base, ("jane@x.com", jane), ("bob@x.com", bob))
    return base, detection


# ---------------------------------------------------------------------------
# Resolutions
# ---------------------------------------------------------------------------


class TestResolutions:
    def test_assignment_scenario_keep_second_modifier(self):
        base, detection = _two_way_conflict()
        conflict = detection.conflicts[0]
        assert conflict.conflict_key == "assignment:A1"
        assert [(m.actor, m.row.fields["date"]) for m in conflict.modifiers] == [
            ("jane@x.com", "2025-07-16"),
            ("bob@x.com", "2025-07-17"),
        ]

        resolver = MergeResolver(detection.conflicts)
        resolver.resolve("assignment:A1", KeepModifier(index=1))
        outcome = _applier().apply(base, detection, resolver, "jane@x.com")

        assert outcome.rows.get("assignment", "A1").fields["date"] == "2025-07-17"

    def test_keep_base_restores_base_row(self):
        base, detection = _two_way_conflict()
        resolver = MergeResolver(detection.conflicts)
        resolver.keep_all_base()
        outcome = _applier().apply(base, detection, resolver, "jane@x.com")
        assert outcome.rows.get("assignment", "A1") == base.get("assignment", "A1")

    def test_keep_base_without_base_row_removes(self):
        base = RowSet()
        c1 = RowSet([Row(table="person", identity="P1", fields={"first_name": "Ann"})])
        c2 = RowSet([Row(table="person", identity="P1", fields={"first_name": "Anne"})])
        detection = _detect(base, ("a", c1), ("b", c2))
        resolver = MergeResolver(detection.conflicts)
        resolver.keep_all_base()
        outcome = _applier().apply(base, detection, resolver, "a")
        assert ("person", "P1") not in outcome.rows

    def test_keep_deleting_modifier_yields_tombstone(self):
        base = _assignment_base()
        jane = _with_date(base, "jane@x.com", "2025-07-16")
        bob = base.copy()
        mark_deleted(bob.get("assignment", "A1"), "bob@x.com", T1)
        detection = _detect(base, ("jane@x.com", jane), ("bob@x.com", bob))

        resolver = MergeResolver(detection.conflicts)
        resolver.resolve("assignment:A1", KeepModifier(index=1))
        row = _applier().apply(base, detection, resolver, "jane@x.com").rows.get("assignment", "A1")

        assert row.is_deleted
        assert row.modified_by == "bob@x.com"
        assert row.deleted_at == T1
        assert row.fields["date"] == "2025-07-15"

    def test_accept_delete_tombstones(self):
        base, detection = _two_way_conflict()
        resolver = MergeResolver(detection.conflicts)
        resolver.resolve("assignment:A1", AcceptDelete())
        row = _applier().apply(base, detection, resolver, "carol@x.com").rows.get("assignment", "A1")
        assert row.is_deleted
        assert row.deleted_at == T2
        assert row.modified_by == "carol@x.com"

    def test_keep_all_on_additive_table(self):
        base = RowSet()
        c1 = RowSet([Row(table="timeoff", identity="T1", fields={"person": "X", "start_ts": "2025-07-15"})])
        c2 = RowSet([Row(table="timeoff", identity="T1", fields={"person": "Y", "start_ts": "2025-07-20"})])
        detection = _detect(base, ("jane@x.com", c1), ("bob@x.com", c2))
        conflict = detection.conflicts[0]
        assert conflict.allow_multiple

        resolver = MergeResolver(detection.conflicts)
        resolver.resolve(conflict.conflict_key, KeepAll())
        outcome = _applier().apply(base, detection, resolver, "jane@x.com")

        rows = outcome.rows.live_rows("timeoff")
        assert len(rows) == 2
        assert len({r.identity for r in rows}) == 2
        assert sorted(r.fields["person"] for r in rows) == ["X", "Y"]
        assert outcome.rows.get("timeoff", "T1").fields["person"] == "X"
        assert len(outcome.minted) == 1

        table, identity = outcome.minted[0]
        minted = outcome.rows.get(table, identity)
        assert minted.modified_by == "bob@x.com"
        assert minted.modified_at == T2

    def test_keep_all_skips_deleting_modifier(self):
        base = RowSet([Row(table="timeoff", identity="T1", fields={"person": "X"})])
        c1 = base.copy()
        c1.get("timeoff", "T1").fields["person"] = "Z"
        c2 = base.copy()
        mark_deleted(c2.get("timeoff", "T1"), "bob@x.com", T1)
        detection = _detect(base, ("jane@x.com", c1), ("bob@x.com", c2))

        resolver = MergeResolver(detection.conflicts)
        resolver.resolve("timeoff:T1", KeepAll())
        outcome = _applier().apply(base, detection, resolver, "jane@x.com")
        assert [r.fields["person"] for r in outcome.rows.live_rows("timeoff")] == ["Z"]
        assert outcome.minted == []


# ---------------------------------------------------------------------------
# Automatic changes and guards
# ---------------------------------------------------------------------------


class TestApply:
    def test_auto_changes_applied(self):
        base = _assignment_base()
        jane = _with_date(base, "jane@x.com", "2025-07-16")
        jane.put(Row(table="person", identity="P1", fields={"first_name": "Jane"}))
        detection = _detect(base, ("jane@x.com", jane), ("bob@x.com", base.copy()))

        outcome = _applier().apply(base, detection, MergeResolver([]), "bob@x.com")
        assert outcome.rows.get("assignment", "A1").fields["date"] == "2025-07-16"
        assert ("person", "P1") in outcome.rows
        assert outcome.stats["person"].inserted == 1

    def test_auto_change_to_absent_removes_row(self):
        base = _assignment_base()
        c = base.copy()
        c.remove("assignment", "A1")
        detection = _detect(base, ("jane@x.com", c))
        outcome = _applier().apply(base, detection, MergeResolver([]), "jane@x.com")
        assert len(outcome.rows) == 0

    def test_empty_merge_is_noop(self):
        base = _assignment_base()
        detection = _detect(base, ("jane@x.com", base.copy()))
        outcome = _applier().apply(base, detection, MergeResolver([]), "jane@x.com")
        assert outcome.rows == base

    def test_base_is_not_mutated(self):
        base, detection = _two_way_conflict()
        before = base.copy()
        resolver = MergeResolver(detection.conflicts)
        resolver.resolve("assignment:A1", AcceptDelete())
        _applier().apply(base, detection, resolver, "jane@x.com")
        assert base == before

    def test_incomplete_resolution_rejected(self):
        base, detection = _two_way_conflict()
        with pytest.raises(IncompleteResolutionError):
            _applier().apply(base, detection, MergeResolver(detection.conflicts), "jane@x.com")
