"""Exception hierarchy for snapshot storage and merge operations."""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for sync operations."""


class IoError(SyncError):
    """The shared location is unreachable or unwritable, or a file is unreadable."""


class ParseError(SyncError):
    """A snapshot file exists but its metadata or content cannot be read."""

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"Cannot parse snapshot '{filename}': {reason}")
        self.filename = filename
        self.reason = reason


class IncompleteResolutionError(SyncError):
    """A merge was applied before every conflict had a resolution."""

    def __init__(self, pending: list[str]) -> None:
        super().__init__(
            f"{len(pending)} conflict(s) still need a resolution: "
            + ", ".join(pending[:5])
            + (" ..." if len(pending) > 5 else "")
        )
        self.pending = pending


class StaleBaseError(SyncError):
    """The shared location moved on between conflict detection and the write."""

    def __init__(self, new_snapshots: list[str]) -> None:
        super().__init__(
            "Newer snapshot(s) appeared since conflicts were checked: "
            + ", ".join(new_snapshots)
        )
        self.new_snapshots = new_snapshots


class InvalidResolutionError(SyncError):
    """A resolution is not applicable to its conflict."""


class MergePendingError(SyncError):
    """A save was attempted while a merge is waiting for resolution."""


class LockHeldError(SyncError):
    """Exclusive access is held by someone else."""

    def __init__(self, holder: str) -> None:
        super().__init__(f"Exclusive access is held by '{holder}'.")
        self.holder = holder
