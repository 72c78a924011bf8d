"""Snapshot and FileVersionInfo — immutable point-in-time database states."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shiftsync.models.row import Row, RowSet


class FileVersionInfo(BaseModel):
    """Metadata of one snapshot file in the shared location."""

    filename: str
    saved_at: datetime
    saved_by: str = ""
    session_started_at: Optional[datetime] = None
    size_bytes: int = 0
    parents: list[str] = Field(default_factory=list)
    """Snapshots this one was derived from: its base plus any merged heads."""


class Snapshot(BaseModel):
    """A whole-database state as written by the snapshot store.

    Snapshots are never mutated after creation. :meth:`row_set`
    hands out a deep copy for callers that need to edit.
    """

    model_config = ConfigDict(frozen=True)

    info: FileVersionInfo
    rows: tuple[Row, ...] = ()

    @property
    def filename(self) -> str:
        return self.info.filename

    @property
    def saved_at(self) -> datetime:
        return self.info.saved_at

    @property
    def saved_by(self) -> str:
        return self.info.saved_by

    @property
    def session_started_at(self) -> datetime | None:
        return self.info.session_started_at

    @property
    def size_bytes(self) -> int:
        return self.info.size_bytes

    def row_set(self) -> RowSet:
        return RowSet(row.model_copy(deep=True) for row in self.rows)

    def row_count(self, include_deleted: bool = True) -> int:
        if include_deleted:
            return len(self.rows)
        return sum(1 for r in self.rows if not r.is_deleted)
