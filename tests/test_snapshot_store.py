"""Tests for SnapshotStore — snapshot files in the shared location."""

from __future__ import annotations

import re
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from shiftsync.models.row import Row, RowSet
from shiftsync.sync.errors import IoError, ParseError
from shiftsync.sync.provenance import mark_deleted, touch
from shiftsync.sync.store import SnapshotStore

T0 = datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)


class _Clock:
    """Advances one second per call."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _sample_rows() -> RowSet:
    return RowSet([
        touch(Row(table="person", identity="P1", fields={
            "first_name": "Jane", "active": True, "fte": 0.75, "notes": None, "rank": 3,
        }), "jane@x.com", T0),
        mark_deleted(Row(table="person", identity="P2", fields={"first_name": "Old"}), "bob@x.com", T0),
        touch(Row(table="assignment", identity="A1", fields={"person": "Jane", "date": "2025-07-15"}), "jane@x.com", T0),
    ])


@pytest.fixture
def store(tmp_path):
    shared = tmp_path / "shared"
    shared.mkdir()
    return SnapshotStore(shared, clock=_Clock())


# ---------------------------------------------------------------------------
# Write / read
# ---------------------------------------------------------------------------


class TestWriteRead:
    def test_round_trip_preserves_rows_and_metadata(self, store):
        rows = _sample_rows()
        info = store.write(rows, "jane@x.com", T0, parents=["schedule-older.db"])

        snapshot = store.read(info.filename)
        assert snapshot.row_set() == rows
        assert snapshot.info == info
        assert snapshot.saved_by == "jane@x.com"
        assert snapshot.session_started_at == T0
        assert snapshot.info.parents == ["schedule-older.db"]

    def test_scalar_types_survive(self, store):
        info = store.write(_sample_rows(), "jane@x.com", T0)
        fields = store.read(info.filename).row_set().get("person", "P1").fields
        assert fields["active"] is True
        assert fields["fte"] == 0.75
        assert fields["notes"] is None
        assert fields["rank"] == 3

    def test_tombstones_are_stored(self, store):
        info = store.write(_sample_rows(), "jane@x.com", T0)
        assert store.read(info.filename).row_count(include_deleted=False) == 2
        assert store.read(info.filename).row_count() == 3

    def test_filename_convention(self, store):
        info = store.write(RowSet(), "Jane.Doe@X.com", None)
        assert re.fullmatch(
            r"schedule-\d{8}T\d{12}Z-jane-doe-x-com-[0-9a-f]{8}\.db", info.filename,
        )

    def test_same_instant_writes_do_not_collide(self, tmp_path):
        fixed = lambda: T0  # noqa: E731
        store = SnapshotStore(tmp_path, clock=fixed)
        a = store.write(RowSet(), "jane@x.com", None)
        b = store.write(RowSet(), "jane@x.com", None)
        assert a.filename != b.filename
        assert len(store.list_versions()) == 2

    def test_write_to_missing_location_raises(self, tmp_path):
        store = SnapshotStore(tmp_path / "missing")
        with pytest.raises(IoError):
            store.write(RowSet(), "jane@x.com", None)

    def test_no_temp_files_left_behind(self, store):
        store.write(_sample_rows(), "jane@x.com", T0)
        assert not list(store.location.glob("*.tmp"))

    def test_read_missing_file_raises_io_error(self, store):
        with pytest.raises(IoError):
            store.read("schedule-nope.db")

    def test_read_garbage_raises_parse_error(self, store):
        (store.location / "schedule-garbage.db").write_bytes(b"not a database at all" * 50)
        with pytest.raises(ParseError):
            store.read("schedule-garbage.db")

    def test_read_database_without_meta_raises_parse_error(self, store):
        conn = sqlite3.connect(str(store.location / "schedule-foreign.db"))
        conn.execute("CREATE TABLE other (x INTEGER)")
        conn.commit()
        conn.close()
        with pytest.raises(ParseError):
            store.read_info("schedule-foreign.db")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListVersions:
    def test_newest_first(self, store):
        first = store.write(RowSet(), "jane@x.com", T0)
        second = store.write(RowSet(), "bob@x.com", T0)
        versions = store.list_versions()
        assert [v.filename for v in versions] == [second.filename, first.filename]

    def test_metadata_only(self, store):
        info = store.write(_sample_rows(), "jane@x.com", T0)
        listed = store.read_info(info.filename)
        assert listed.size_bytes == (store.location / info.filename).stat().st_size
        assert listed.saved_at == info.saved_at

    def test_skips_unreadable_files(self, store):
        good = store.write(RowSet(), "jane@x.com", T0)
        (store.location / "schedule-broken.db").write_bytes(b"\x00garbage")
        assert [v.filename for v in store.list_versions()] == [good.filename]

    def test_ignores_other_files(self, store):
        store.write(RowSet(), "jane@x.com", T0)
        (store.location / "heartbeat-jane.json").write_text("{}", encoding="utf-8")
        (store.location / "notes.db").write_bytes(b"")
        assert len(store.list_versions()) == 1

    def test_naive_clock_is_read_as_utc(self, store):
        aware = store.write(RowSet(), "jane@x.com", T0)
        naive_store = SnapshotStore(store.location, clock=lambda: datetime(2025, 1, 1, 12, 0))
        naive = naive_store.write(RowSet(), "bob@x.com", datetime(2025, 1, 1, 11, 0))

        versions = store.list_versions()
        assert [v.filename for v in versions] == [aware.filename, naive.filename]
        assert versions[1].saved_at == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert versions[1].session_started_at.tzinfo is not None

    def test_naive_metadata_from_other_writers(self, store):
        store.write(RowSet(), "jane@x.com", T0)
        conn = sqlite3.connect(str(store.location / "schedule-foreign.db"))
        conn.executescript(
            "CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);"
            "CREATE TABLE rows (table_name TEXT, sync_id TEXT, fields_json TEXT,"
            " modified_at TEXT, modified_by TEXT, deleted_at TEXT);"
        )
        conn.executemany("INSERT INTO meta VALUES (?, ?)", [
            ("saved_at", "2025-07-01T08:00:00"), ("saved_by", "other"), ("parents", "[]"),
        ])
        conn.execute(
            "INSERT INTO rows VALUES ('person', 'P1', '{}', '2025-07-01T08:00:00', 'other', NULL)"
        )
        conn.commit()
        conn.close()

        assert len(store.list_versions()) == 2
        row = store.read("schedule-foreign.db").row_set().get("person", "P1")
        assert row.modified_at.tzinfo is not None

    def test_empty_location(self, store):
        assert store.list_versions() == []

    def test_missing_location_raises(self, tmp_path):
        with pytest.raises(IoError):
            SnapshotStore(tmp_path / "gone").list_versions()


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


class TestCleanup:
    def test_keeps_newest(self, store):
        infos = [store.write(RowSet(), "jane@x.com", T0) for _ in range(4)]
        removed = store.cleanup(keep=2)
        assert sorted(removed) == sorted(i.filename for i in infos[:2])
        assert len(store.list_versions()) == 2

    def test_protected_files_survive(self, store):
        infos = [store.write(RowSet(), "jane@x.com", T0) for _ in range(3)]
        removed = store.cleanup(keep=1, protect=[infos[0].filename])
        assert removed == [infos[1].filename]
        remaining = {v.filename for v in store.list_versions()}
        assert remaining == {infos[0].filename, infos[2].filename}
