"""Tests for row provenance, the RowSet container, and the table registry."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from shiftsync.models.row import Row, RowSet
from shiftsync.sync.provenance import (
    create_row,
    mark_deleted,
    new_identity,
    prune_tombstones,
    touch,
)
from shiftsync.sync.tables import TableConfig, TableRegistry

T0 = datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)


def _row(identity: str = "P1", table: str = "person", **fields) -> Row:
    return Row(table=table, identity=identity, fields=fields or {"first_name": "Jane"})


# ---------------------------------------------------------------------------
# Provenance
# ---------------------------------------------------------------------------


class TestProvenance:
    def test_touch_stamps_actor_and_time(self):
        row = touch(_row(), "jane@x.com", T0)
        assert row.modified_at == T0
        assert row.modified_by == "jane@x.com"
        assert row.deleted_at is None

    def test_mark_deleted_keeps_row_as_tombstone(self):
        row = mark_deleted(_row(), "bob@x.com", T0)
        assert row.is_deleted
        assert row.deleted_at == T0
        assert row.modified_by == "bob@x.com"
        assert row.fields == {"first_name": "Jane"}

    def test_create_row_mints_unique_identities(self):
        a = create_row("person", {"first_name": "A"}, "jane@x.com", T0)
        b = create_row("person", {"first_name": "A"}, "jane@x.com", T0)
        assert a.identity != b.identity
        assert a.modified_at == T0
        assert a.key == f"person:{a.identity}"

    def test_create_row_with_explicit_identity(self):
        row = create_row("timeoff", {}, "jane@x.com", T0, identity="T1")
        assert row.identity == "T1"

    def test_new_identity_is_hex(self):
        ident = new_identity()
        assert len(ident) == 32
        int(ident, 16)

    def test_prune_tombstones_removes_only_old_deletions(self):
        rows = RowSet([
            mark_deleted(_row("old"), "a", T0 - timedelta(days=40)),
            mark_deleted(_row("new"), "a", T0),
            _row("live"),
        ])
        removed = prune_tombstones(rows, T0 - timedelta(days=30))
        assert removed == 1
        assert ("person", "old") not in rows
        assert ("person", "new") in rows
        assert ("person", "live") in rows


# ---------------------------------------------------------------------------
# RowSet
# ---------------------------------------------------------------------------


class TestRowSet:
    def test_put_get_remove(self):
        rows = RowSet()
        rows.put(_row("P1"))
        assert rows.get("person", "P1") is not None
        assert len(rows) == 1
        assert rows.remove("person", "P1") is not None
        assert rows.tables() == []
        assert rows.remove("person", "P1") is None

    def test_live_rows_excludes_tombstones(self):
        rows = RowSet([_row("P1"), mark_deleted(_row("P2"), "a", T0)])
        assert [r.identity for r in rows.live_rows("person")] == ["P1"]
        assert len(rows.rows("person")) == 2

    def test_copy_is_deep(self):
        rows = RowSet([_row("P1")])
        clone = rows.copy()
        clone.get("person", "P1").fields["first_name"] = "Changed"
        assert rows.get("person", "P1").fields["first_name"] == "Jane"
        assert rows != clone

    def test_equality_compares_rows(self):
        assert RowSet([_row("P1")]) == RowSet([_row("P1")])
        assert RowSet([_row("P1")]) != RowSet([_row("P2")])

    def test_same_content_ignores_provenance(self):
        a = touch(_row(), "jane@x.com", T0)
        b = touch(_row(), "bob@x.com", T0 + timedelta(hours=1))
        assert a.same_content(b)
        assert not a.same_content(None)


# ---------------------------------------------------------------------------
# TableRegistry
# ---------------------------------------------------------------------------


class TestTableRegistry:
    def test_default_marks_additive_tables(self):
        registry = TableRegistry.default()
        assert registry.additive_tables() == ["assignment", "department_event", "timeoff"]
        assert not registry.is_additive("person")

    def test_unknown_table_is_not_additive(self):
        assert not TableRegistry().is_additive("anything")

    def test_describe_uses_display_keys(self):
        registry = TableRegistry.default()
        row = Row(table="timeoff", identity="T1", fields={"start_ts": "2025-07-15", "end_ts": "2025-07-18"})
        assert registry.describe(row) == "Time off: 2025-07-15 to 2025-07-18"

    def test_describe_falls_back_to_identity(self):
        registry = TableRegistry([TableConfig(name="person", display_keys=["first_name"])])
        row = Row(table="person", identity="P9", fields={"first_name": None})
        assert registry.describe(row) == "person row P9"

    def test_from_file(self, tmp_path):
        path = tmp_path / "tables.json"
        path.write_text(json.dumps({
            "tables": [{"name": "shift", "additive": True, "display_keys": ["day"]}],
        }), encoding="utf-8")
        registry = TableRegistry.from_file(path)
        assert registry.is_additive("shift")
        assert registry.to_dict()["tables"][0]["display_keys"] == ["day"]

    def test_for_project_reads_tables_file(self, tmp_path):
        assert TableRegistry.for_project(tmp_path).is_additive("timeoff")

        (tmp_path / ".shiftsync").mkdir()
        (tmp_path / ".shiftsync" / "tables.json").write_text(json.dumps({
            "tables": [{"name": "shift", "additive": True}],
        }), encoding="utf-8")
        registry = TableRegistry.for_project(tmp_path)
        assert registry.additive_tables() == ["shift"]

    def test_register_replaces_existing(self):
        registry = TableRegistry([TableConfig(name="shift")])
        registry.register(TableConfig(name="shift", additive=True))
        assert registry.is_additive("shift")
        assert len(registry.list_tables()) == 1

    def test_table_config_requires_name(self):
        with pytest.raises(ValueError):
            TableConfig()
