"""shiftsync — offline-first sync and three-way merge for a shared schedule database."""

__version__ = "0.4.0"

from shiftsync.config_manager import ConfigManager, SyncSettings, configure_logging
from shiftsync.models import FileVersionInfo, Row, RowSet, Snapshot
from shiftsync.sync.conflict import AcceptDelete, KeepAll, KeepBase, KeepModifier, MergeConflict
from shiftsync.sync.errors import SyncError
from shiftsync.sync.provenance import create_row, mark_deleted, touch
from shiftsync.sync.scheduler import PollScheduler
from shiftsync.sync.session import SyncSession
from shiftsync.sync.store import SnapshotStore
from shiftsync.sync.tables import TableConfig, TableRegistry

__all__ = [
    "__version__",
    # Models
    "FileVersionInfo",
    "Row",
    "RowSet",
    "Snapshot",
    # Provenance
    "create_row",
    "mark_deleted",
    "touch",
    # Merge
    "AcceptDelete",
    "KeepAll",
    "KeepBase",
    "KeepModifier",
    "MergeConflict",
    "TableConfig",
    "TableRegistry",
    # Session
    "PollScheduler",
    "SnapshotStore",
    "SyncError",
    "SyncSession",
    # Configuration
    "ConfigManager",
    "SyncSettings",
    "configure_logging",
]
