"""Row — a single provenance-tracked record in one table of the schedule database.

Every mutable table row carries enough metadata to take part in a
three-way comparison on its own:

  identity     stable, table-scoped key (never the storage row number)
  modified_at  when the row was last written
  modified_by  who last wrote it (usually an email address)
  deleted_at   tombstone marker; ``None`` means the row is live
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Union

from pydantic import BaseModel, Field

Scalar = Union[bool, int, float, str, None]
"""Column values are JSON scalars."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Row(BaseModel):
    """One record of one table."""

    table: str
    identity: str
    fields: dict[str, Scalar] = Field(default_factory=dict)
    modified_at: Optional[datetime] = None
    modified_by: str = ""
    deleted_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        """Deterministic ``table:identity`` key."""
        return f"{self.table}:{self.identity}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def content(self) -> dict[str, Scalar]:
        """Field values only, without provenance."""
        return dict(self.fields)

    def same_content(self, other: Row | None) -> bool:
        """True if *other* holds the same field values (provenance ignored)."""
        if other is None:
            return False
        return self.fields == other.fields


class RowSet:
    """Mutable table -> identity -> Row container.

    Used for the working copy and for every in-memory view of a
    snapshot. Tombstoned rows are kept; use :meth:`live_rows` for
    the rows an editor should see.
    """

    def __init__(self, rows: Iterable[Row] = ()) -> None:
        self._tables: dict[str, dict[str, Row]] = {}
        for row in rows:
            self.put(row)

    def put(self, row: Row) -> None:
        """Insert or replace a row by (table, identity)."""
        self._tables.setdefault(row.table, {})[row.identity] = row

    def get(self, table: str, identity: str) -> Row | None:
        return self._tables.get(table, {}).get(identity)

    def remove(self, table: str, identity: str) -> Row | None:
        """Physically drop a row. Returns the removed row, if any."""
        rows = self._tables.get(table)
        if rows is None:
            return None
        removed = rows.pop(identity, None)
        if not rows:
            del self._tables[table]
        return removed

    def tables(self) -> list[str]:
        return sorted(self._tables)

    def index(self, table: str) -> dict[str, Row]:
        """Identity-indexed view of one table (a shallow copy)."""
        return dict(self._tables.get(table, {}))

    def rows(self, table: str | None = None) -> list[Row]:
        """All rows, tombstones included, optionally for one table."""
        if table is not None:
            return list(self._tables.get(table, {}).values())
        return [row for name in self.tables() for row in self._tables[name].values()]

    def live_rows(self, table: str) -> list[Row]:
        return [r for r in self._tables.get(table, {}).values() if not r.is_deleted]

    def copy(self) -> RowSet:
        """Deep copy; rows in the copy can be mutated independently."""
        return RowSet(row.model_copy(deep=True) for row in self.rows())

    def __len__(self) -> int:
        return sum(len(rows) for rows in self._tables.values())

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        return self.get(key[0], key[1]) is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RowSet):
            return NotImplemented
        return self._tables == other._tables

    def __repr__(self) -> str:
        counts = ", ".join(f"{t}={len(self._tables[t])}" for t in self.tables())
        return f"RowSet({counts})"
