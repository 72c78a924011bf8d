"""SnapshotStore — whole-database snapshots in a shared folder.

Each save produces a new SQLite file; nothing is ever overwritten.
Filenames sort by save time and carry an actor slug plus random
suffix, so two people saving in the same instant never collide::

    schedule-20250715T093012123456Z-jane-x-com-1f0c9a2e.db

Every file holds a ``meta`` key/value table that can be read without
loading the rows, and a ``rows`` table with one record per row.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from shiftsync.config import DEFAULT_FILENAME_PREFIX, SNAPSHOT_FORMAT_VERSION
from shiftsync.models.row import Row, RowSet, utc_now
from shiftsync.models.snapshot import FileVersionInfo, Snapshot
from shiftsync.sync.errors import IoError, ParseError

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS rows (
    table_name  TEXT NOT NULL,
    sync_id     TEXT NOT NULL,
    fields_json TEXT NOT NULL DEFAULT '{}',
    modified_at TEXT,
    modified_by TEXT NOT NULL DEFAULT '',
    deleted_at  TEXT,
    PRIMARY KEY (table_name, sync_id)
);
CREATE INDEX IF NOT EXISTS idx_rows_deleted ON rows(deleted_at);
"""


class SnapshotStore:
    """Read, write, and enumerate snapshots in a shared location.

    Parameters
    ----------
    location:
        Shared folder holding the snapshot files.
    prefix:
        Filename prefix identifying snapshot files.
    clock:
        Timestamp source for ``saved_at``. Defaults to UTC now.
    """

    def __init__(
        self,
        location: str | Path,
        prefix: str = DEFAULT_FILENAME_PREFIX,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.location = Path(location)
        self.prefix = prefix
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(
        self,
        rows: RowSet,
        actor: str,
        session_started_at: datetime | None,
        parents: Iterable[str] = (),
    ) -> FileVersionInfo:
        """Serialize *rows* into a new snapshot file.

        Returns the metadata of the written file.

        Raises
        ------
        IoError
            If the location is missing, unwritable, or full.
        """
        if not self.location.is_dir():
            raise IoError(f"Shared location '{self.location}' is not reachable.")

        if session_started_at is not None:
            session_started_at = _as_utc(session_started_at)
        saved_at = _as_utc(self._clock())
        filename = self._make_filename(actor, saved_at)
        final_path = self.location / filename
        tmp_path = self.location / f".{filename}.tmp"
        parent_list = list(parents)

        meta = {
            "format_version": SNAPSHOT_FORMAT_VERSION,
            "saved_at": saved_at.isoformat(),
            "saved_by": actor,
            "session_started_at": (
                session_started_at.isoformat() if session_started_at else ""
            ),
            "parents": json.dumps(parent_list),
        }

        try:
            conn = sqlite3.connect(str(tmp_path))
            try:
                conn.executescript(_SCHEMA)
                conn.executemany(
                    "INSERT INTO meta (key, value) VALUES (?, ?)", meta.items(),
                )
                conn.executemany(
                    "INSERT INTO rows (table_name, sync_id, fields_json, "
                    "modified_at, modified_by, deleted_at) VALUES (?,?,?,?,?,?)",
                    [_row_to_record(r) for r in rows],
                )
                conn.commit()
            finally:
                conn.close()
            tmp_path.replace(final_path)
            size = final_path.stat().st_size
        except (sqlite3.Error, OSError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise IoError(f"Could not write snapshot '{filename}': {exc}") from exc

        logger.info(
            "Wrote snapshot %s (%d rows, %d bytes) for %s",
            filename, len(rows), size, actor,
        )
        return FileVersionInfo(
            filename=filename,
            saved_at=saved_at,
            saved_by=actor,
            session_started_at=session_started_at,
            size_bytes=size,
            parents=parent_list,
        )

    def list_versions(self) -> list[FileVersionInfo]:
        """Return metadata of every readable snapshot, newest first.

        Files that cannot be parsed are skipped.

        Raises
        ------
        IoError
            If the location itself cannot be listed.
        """
        if not self.location.is_dir():
            raise IoError(f"Shared location '{self.location}' is not reachable.")

        try:
            paths = sorted(self.location.glob(f"{self.prefix}*.db"))
        except OSError as exc:
            raise IoError(f"Could not list '{self.location}': {exc}") from exc

        versions: list[FileVersionInfo] = []
        for path in paths:
            try:
                versions.append(self.read_info(path.name))
            except (ParseError, IoError):
                logger.debug("Skipping unreadable snapshot %s", path.name, exc_info=True)

        versions.sort(key=lambda v: (v.saved_at, v.filename), reverse=True)
        return versions

    def read_info(self, filename: str) -> FileVersionInfo:
        """Read only the metadata block of one snapshot."""
        path = self._existing_path(filename)
        try:
            conn = _connect_readonly(path)
            try:
                meta = _read_meta(conn)
            finally:
                conn.close()
            size = path.stat().st_size
        except sqlite3.Error as exc:
            raise ParseError(filename, str(exc)) from exc
        except OSError as exc:
            raise IoError(f"Could not read '{filename}': {exc}") from exc
        return _info_from_meta(filename, meta, size)

    def read(self, filename: str) -> Snapshot:
        """Load a snapshot fully."""
        path = self._existing_path(filename)
        try:
            conn = _connect_readonly(path)
            try:
                meta = _read_meta(conn)
                records = conn.execute(
                    "SELECT table_name, sync_id, fields_json, modified_at, "
                    "modified_by, deleted_at FROM rows ORDER BY table_name, rowid"
                ).fetchall()
            finally:
                conn.close()
            size = path.stat().st_size
        except sqlite3.Error as exc:
            raise ParseError(filename, str(exc)) from exc
        except OSError as exc:
            raise IoError(f"Could not read '{filename}': {exc}") from exc

        info = _info_from_meta(filename, meta, size)
        try:
            rows = tuple(_row_from_record(r) for r in records)
        except (json.JSONDecodeError, ValidationError, ValueError) as exc:
            raise ParseError(filename, f"bad row data: {exc}") from exc

        logger.debug("Read snapshot %s (%d rows)", filename, len(rows))
        return Snapshot(info=info, rows=rows)

    def cleanup(self, keep: int, protect: Iterable[str] = ()) -> list[str]:
        """Delete all but the newest *keep* snapshots.

        Filenames in *protect* are never removed. Returns the removed
        filenames.
        """
        protected = set(protect)
        removed: list[str] = []
        for info in self.list_versions()[keep:]:
            if info.filename in protected:
                continue
            try:
                (self.location / info.filename).unlink()
                removed.append(info.filename)
            except OSError:
                logger.warning("Could not remove old snapshot %s", info.filename)
        if removed:
            logger.info("Removed %d old snapshot(s)", len(removed))
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _existing_path(self, filename: str) -> Path:
        path = self.location / filename
        if not path.is_file():
            raise IoError(f"Snapshot '{filename}' not found in '{self.location}'.")
        return path

    def _make_filename(self, actor: str, saved_at: datetime) -> str:
        stamp = saved_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        return f"{self.prefix}{stamp}-{_slug(actor)}-{secrets.token_hex(4)}.db"


def _slug(actor: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", actor.lower()).strip("-")
    return slug[:40] or "anonymous"


def _connect_readonly(path: Path) -> sqlite3.Connection:
    return sqlite3.connect(path.resolve().as_uri() + "?mode=ro", uri=True)


def _read_meta(conn: sqlite3.Connection) -> dict[str, str]:
    return dict(conn.execute("SELECT key, value FROM meta").fetchall())


def _info_from_meta(filename: str, meta: dict[str, str], size: int) -> FileVersionInfo:
    saved_at = meta.get("saved_at")
    if not saved_at:
        raise ParseError(filename, "missing saved_at")
    try:
        return FileVersionInfo(
            filename=filename,
            saved_at=_parse_ts(saved_at),
            saved_by=meta.get("saved_by", ""),
            session_started_at=_parse_ts(meta.get("session_started_at")),
            size_bytes=size,
            parents=json.loads(meta.get("parents") or "[]"),
        )
    except (ValueError, ValidationError) as exc:
        raise ParseError(filename, f"bad metadata: {exc}") from exc


def _parse_ts(value: str | None) -> datetime | None:
    return _as_utc(datetime.fromisoformat(value)) if value else None


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _row_to_record(row: Row) -> tuple[Any, ...]:
    return (
        row.table,
        row.identity,
        json.dumps(row.fields),
        row.modified_at.isoformat() if row.modified_at else None,
        row.modified_by,
        row.deleted_at.isoformat() if row.deleted_at else None,
    )


def _row_from_record(record: tuple[Any, ...]) -> Row:
    table, identity, fields_json, modified_at, modified_by, deleted_at = record
    return Row(
        table=table,
        identity=identity,
        fields=json.loads(fields_json),
        modified_at=_parse_ts(modified_at),
        modified_by=modified_by or "",
        deleted_at=_parse_ts(deleted_at),
    )
