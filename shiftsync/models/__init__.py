"""Data models shared by the storage and merge layers."""

from shiftsync.models.row import Row, RowSet, Scalar
from shiftsync.models.snapshot import FileVersionInfo, Snapshot

__all__ = [
    "FileVersionInfo",
    "Row",
    "RowSet",
    "Scalar",
    "Snapshot",
]
