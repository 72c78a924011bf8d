"""Offline-first sync — snapshots, conflict detection, and three-way merge."""

from shiftsync.sync.applier import MergeApplier, MergeOutcome
from shiftsync.sync.conflict import (
    AcceptDelete,
    KeepAll,
    KeepBase,
    KeepModifier,
    MergeConflict,
    Modifier,
    Resolution,
    parse_resolution,
)
from shiftsync.sync.detector import (
    AutoChange,
    Candidate,
    CoarseReport,
    ConflictDetector,
    DetectionResult,
    TableMergeStats,
)
from shiftsync.sync.errors import (
    IncompleteResolutionError,
    InvalidResolutionError,
    IoError,
    LockHeldError,
    MergePendingError,
    ParseError,
    StaleBaseError,
    SyncError,
)
from shiftsync.sync.locking import ExclusiveAccessLock, LockInfo
from shiftsync.sync.presence import ActiveUser, PresenceTracker
from shiftsync.sync.resolver import MergeResolver
from shiftsync.sync.scheduler import PollOutcome, PollScheduler, PollState
from shiftsync.sync.session import (
    CheckStatus,
    PendingMerge,
    SaveResult,
    SyncSession,
    SyncStatus,
    UpdateCheck,
)
from shiftsync.sync.store import SnapshotStore
from shiftsync.sync.tables import TableConfig, TableRegistry
from shiftsync.sync.webhooks import WebhookDispatcher

__all__ = [
    "AcceptDelete",
    "ActiveUser",
    "AutoChange",
    "Candidate",
    "CheckStatus",
    "CoarseReport",
    "ConflictDetector",
    "DetectionResult",
    "ExclusiveAccessLock",
    "IncompleteResolutionError",
    "InvalidResolutionError",
    "IoError",
    "KeepAll",
    "KeepBase",
    "KeepModifier",
    "LockHeldError",
    "LockInfo",
    "MergeApplier",
    "MergeConflict",
    "MergeOutcome",
    "MergePendingError",
    "MergeResolver",
    "Modifier",
    "ParseError",
    "PendingMerge",
    "PollOutcome",
    "PollScheduler",
    "PollState",
    "PresenceTracker",
    "Resolution",
    "SaveResult",
    "SnapshotStore",
    "StaleBaseError",
    "SyncError",
    "SyncSession",
    "SyncStatus",
    "TableConfig",
    "TableMergeStats",
    "TableRegistry",
    "UpdateCheck",
    "WebhookDispatcher",
    "parse_resolution",
]
