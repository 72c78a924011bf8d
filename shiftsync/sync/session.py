"""SyncSession — main entry point for editing a shared schedule offline.

One session belongs to one actor. It owns the working copy, remembers
which snapshot the working copy was based on, and runs every save and
background check through the same detect / resolve / rebase path::

    session = SyncSession(SnapshotStore(shared_dir), "jane@x.com")
    session.open()
    ...edit session.working...
    result = session.save()
    if result.needs_resolution:
        result.pending.resolver.keep_all_from("jane@x.com")
        session.apply_pending()
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable

from shiftsync.config_manager import SyncSettings
from shiftsync.models.row import RowSet, utc_now
from shiftsync.models.snapshot import FileVersionInfo, Snapshot
from shiftsync.sync.applier import MergeApplier
from shiftsync.sync.detector import (
    Candidate,
    CoarseReport,
    ConflictDetector,
    DetectionResult,
    TableMergeStats,
)
from shiftsync.sync.conflict import MergeConflict
from shiftsync.sync.errors import (
    IoError,
    MergePendingError,
    ParseError,
    StaleBaseError,
    SyncError,
)
from shiftsync.sync.locking import ExclusiveAccessLock, LockInfo
from shiftsync.sync.presence import ActiveUser, PresenceTracker
from shiftsync.sync.provenance import prune_tombstones
from shiftsync.sync.resolver import MergeResolver
from shiftsync.sync.store import SnapshotStore
from shiftsync.sync.tables import TableRegistry
from shiftsync.sync.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class SyncStatus:
    """Observable session state for status bars and dialogs."""

    is_saving: bool = False
    is_checking: bool = False
    base_filename: str | None = None
    last_saved_at: datetime | None = None
    last_checked_at: datetime | None = None
    last_error: str | None = None
    pending_conflicts: int = 0
    dismissed_snapshots: int = 0


@dataclass
class PendingMerge:
    """A merge waiting for a human to resolve its conflicts."""

    detection: DetectionResult
    resolver: MergeResolver
    base_rows: RowSet
    merged: list[FileVersionInfo]
    seen_heads: set[str]
    origin: str = "save"
    report: CoarseReport | None = None
    local_rows: RowSet = field(default_factory=RowSet)
    """Working copy as it was when the conflicts were detected."""

    @property
    def conflicts(self) -> list[MergeConflict]:
        return self.detection.conflicts

    @property
    def filenames(self) -> list[str]:
        return [v.filename for v in self.merged]


@dataclass
class SaveResult:
    """What a save (or explicit merge) did."""

    saved: FileVersionInfo | None = None
    pending: PendingMerge | None = None
    merged: list[str] = field(default_factory=list)
    stats: dict[str, TableMergeStats] = field(default_factory=dict)

    @property
    def needs_resolution(self) -> bool:
        return self.pending is not None


class CheckStatus(str, enum.Enum):
    BUSY = "busy"
    PENDING = "pending"
    UP_TO_DATE = "up_to_date"
    AUTO_MERGED = "auto_merged"
    CONFLICTS = "conflicts"


@dataclass
class UpdateCheck:
    status: CheckStatus
    heads: list[FileVersionInfo] = field(default_factory=list)
    pending: PendingMerge | None = None


class SyncSession:
    """Offline-first editing session over a :class:`SnapshotStore`.

    Parameters
    ----------
    store:
        Snapshot store for the shared location.
    actor:
        Identity stamped on every snapshot this session writes.
    registry:
        Per-table merge configuration. Defaults to the scheduling schema.
    clock:
        Timestamp source; inject a fixed clock in tests.
    dispatcher:
        Event dispatcher for save/conflict/merge/restore notifications.
    settings:
        Retention and timing settings.
    """

    def __init__(
        self,
        store: SnapshotStore,
        actor: str,
        registry: TableRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        dispatcher: WebhookDispatcher | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        self.store = store
        self.actor = actor
        self.registry = registry or TableRegistry.default()
        self.settings = settings or SyncSettings()
        self.dispatcher = dispatcher or WebhookDispatcher.from_settings(self.settings)
        self._clock = clock or utc_now

        self.detector = ConflictDetector(self.registry)
        self.applier = MergeApplier(self._clock)
        self.presence = PresenceTracker(store.location, actor, self._clock)
        self.access = ExclusiveAccessLock(
            store.location, actor, self.settings.lock_stale_seconds, self._clock,
        )

        self.working = RowSet()
        self.base: Snapshot | None = None
        self.pending: PendingMerge | None = None
        self.session_started_at: datetime | None = None

        self._base_rows = RowSet()
        self._next_parents: list[str] = []
        self._known: set[str] = set()
        self._horizon: datetime | None = None
        self._dismissed: set[str] = set()

        # Non-reentrant: saves block on it, background checks skip.
        self._io_lock = threading.Lock()
        self._status = SyncStatus()
        self._listeners: list[Callable[[SyncStatus], None]] = []

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return replace(self._status)

    @property
    def is_busy(self) -> bool:
        return self._io_lock.locked()

    def on_status_change(
        self, callback: Callable[[SyncStatus], None],
    ) -> Callable[[], None]:
        """Subscribe to status changes. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_status(self, **changes) -> None:
        self._status = replace(self._status, **changes)
        snapshot = replace(self._status)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.warning("Status listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Open / inspect
    # ------------------------------------------------------------------

    def open(self, filename: str | None = None) -> Snapshot | None:
        """Load the newest (or the named) snapshot as base and working copy.

        An empty shared location opens an empty database.
        """
        with self._io_lock:
            versions = self.store.list_versions()
            self.session_started_at = self._clock()
            self.pending = None
            self._known = set()
            self._dismissed = set()

            if filename is None and not versions:
                self.working = RowSet()
                self._adopt(None, RowSet(), [])
                self._horizon = None
                logger.info("Opened empty shared location %s", self.store.location)
            else:
                snapshot = self.store.read(filename or versions[0].filename)
                self.working = snapshot.row_set()
                self._adopt(snapshot, snapshot.row_set(), [snapshot.filename])
                self._horizon = snapshot.saved_at
                logger.info(
                    "Opened %s (%d rows) as %s",
                    snapshot.filename, snapshot.row_count(), self.actor,
                )

            self._set_status(
                base_filename=self.base.filename if self.base else None,
                pending_conflicts=0,
                dismissed_snapshots=0,
                last_error=None,
            )
        self.presence.write_heartbeat()
        return self.base

    def list_versions(self) -> list[FileVersionInfo]:
        return self.store.list_versions()

    def has_unsaved_changes(self) -> bool:
        return self.working != self._base_rows

    def newer_heads(
        self, versions: list[FileVersionInfo] | None = None,
    ) -> list[FileVersionInfo]:
        """Snapshots saved since the base that nothing newer derives from.

        Snapshots already merged into this session's lineage, directly
        or through another snapshot's parents, are excluded.
        """
        if versions is None:
            versions = self.store.list_versions()

        by_name = {v.filename: v for v in versions}
        lineage = set(self._known)
        stack = list(lineage)
        while stack:
            info = by_name.get(stack.pop())
            if info is None:
                continue
            for parent in info.parents:
                if parent not in lineage:
                    lineage.add(parent)
                    stack.append(parent)

        candidates = [
            v for v in versions
            if v.filename not in lineage
            and (self._horizon is None or v.saved_at > self._horizon)
        ]
        derived = {p for v in candidates for p in v.parents}
        return [v for v in candidates if v.filename not in derived]

    # ------------------------------------------------------------------
    # Save path
    # ------------------------------------------------------------------

    def save(self) -> SaveResult:
        """Persist the working copy, merging any newer snapshots first.

        Returns a :class:`SaveResult`. When conflicts need a decision,
        nothing is written and ``result.pending`` holds the merge.

        Raises
        ------
        MergePendingError
            If an earlier merge still awaits resolution.
        StaleBaseError
            If new snapshots appeared between detection and the write.
        IoError
            If the shared location cannot be read or written.
        """
        with self._io_lock:
            if self.pending is not None:
                raise MergePendingError(
                    f"{len(self.pending.conflicts)} conflict(s) must be resolved "
                    "or cancelled before saving."
                )
            self._set_status(is_saving=True)
            try:
                result = self._save_locked()
                self._set_status(last_error=None)
                return result
            except SyncError as exc:
                self._set_status(last_error=str(exc))
                raise
            finally:
                self._set_status(is_saving=False)

    def _save_locked(self) -> SaveResult:
        versions = self.store.list_versions()
        heads = self.newer_heads(versions)

        if not heads:
            info = self._rebase(self.working, list(self._next_parents), versions)
            return SaveResult(saved=info)

        snapshots = self._read_heads(heads)
        detection, report = self._detect(snapshots)

        if detection.has_conflicts:
            pending = self._hold(
                detection, report, snapshots, {h.filename for h in heads}, origin="save",
            )
            return SaveResult(pending=pending, merged=pending.filenames)

        outcome = self.applier.apply(
            self._base_rows, detection, MergeResolver([]), self.actor,
        )
        self._carry_local_edits(outcome.rows, detection.candidates[0].rows)
        versions = self._ensure_not_stale({h.filename for h in heads})

        merged = [s.filename for s in snapshots]
        info = self._rebase(outcome.rows, self._next_parents + merged, versions)
        self.dispatcher.on_merge(
            self.actor, info.filename,
            f"merged {len(merged)} snapshot(s) automatically",
        )
        return SaveResult(saved=info, merged=merged, stats=outcome.stats)

    # ------------------------------------------------------------------
    # Poll path
    # ------------------------------------------------------------------

    def check_for_updates(
        self, on_phase: Callable[[str], None] | None = None,
    ) -> UpdateCheck:
        """Look for newer snapshots and fold them into the working copy.

        Never blocks: returns ``BUSY`` if a save or another check holds
        the session. Conflict-free changes are merged into the working
        copy and the base moves to the newest head without writing.
        Conflicts are held as :attr:`pending`.

        *on_phase* is called with ``"checking"`` before conflict
        detection and ``"merging"`` before an automatic merge.
        """
        if not self._io_lock.acquire(blocking=False):
            return UpdateCheck(CheckStatus.BUSY)
        try:
            if self.pending is not None:
                return UpdateCheck(CheckStatus.PENDING, pending=self.pending)
            self._set_status(is_checking=True)
            try:
                return self._check_locked(on_phase)
            finally:
                self._set_status(is_checking=False, last_checked_at=self._clock())
        finally:
            self._io_lock.release()

    def _check_locked(self, on_phase: Callable[[str], None] | None) -> UpdateCheck:
        versions = self.store.list_versions()
        heads = self.newer_heads(versions)
        if not heads or all(h.filename in self._dismissed for h in heads):
            return UpdateCheck(CheckStatus.UP_TO_DATE)

        if on_phase:
            on_phase("checking")
        snapshots = self._read_heads(heads)
        if not snapshots:
            return UpdateCheck(CheckStatus.UP_TO_DATE)
        detection, report = self._detect(snapshots)

        if detection.has_conflicts:
            pending = self._hold(
                detection, report, snapshots, {h.filename for h in heads}, origin="poll",
            )
            return UpdateCheck(CheckStatus.CONFLICTS, heads=heads, pending=pending)

        if on_phase:
            on_phase("merging")
        self._fast_forward(detection, snapshots, versions)
        return UpdateCheck(CheckStatus.AUTO_MERGED, heads=heads)

    def _fast_forward(
        self,
        detection: DetectionResult,
        snapshots: list[Snapshot],
        versions: list[FileVersionInfo],
    ) -> None:
        outcome = self.applier.apply(
            self._base_rows, detection, MergeResolver([]), self.actor,
        )
        if len(snapshots) == 1:
            new_base_rows = snapshots[0].row_set()
        else:
            heads_only = self.detector.detect(
                self._base_rows, [self._candidate(s) for s in snapshots],
            )
            new_base_rows = self.applier.apply(
                self._base_rows, heads_only, MergeResolver([]), self.actor,
            ).rows

        newest = max(snapshots, key=lambda s: (s.saved_at, s.filename))
        self._carry_local_edits(outcome.rows, detection.candidates[0].rows)
        self.working = outcome.rows
        self._adopt(newest, new_base_rows, [s.filename for s in snapshots])
        self._dismissed.clear()
        self._compact(versions)
        self._set_status(base_filename=newest.filename, dismissed_snapshots=0)

        logger.info(
            "Merged %d newer snapshot(s) into the working copy; base is now %s",
            len(snapshots), newest.filename,
        )
        self.dispatcher.on_merge(
            self.actor, newest.filename,
            f"{len(detection.auto_changes)} change(s) merged from {len(snapshots)} snapshot(s)",
        )

    # ------------------------------------------------------------------
    # Pending merge
    # ------------------------------------------------------------------

    def apply_pending(self) -> FileVersionInfo:
        """Apply the resolved pending merge and persist the result.

        Raises
        ------
        IncompleteResolutionError
            If a conflict has no resolution. The merge stays pending.
        StaleBaseError
            If new snapshots appeared since detection. The merge is
            discarded and must be detected again.
        IoError
            If the write fails. The merge stays pending so it can be
            applied again.
        """
        with self._io_lock:
            pending = self.pending
            if pending is None:
                raise SyncError("No merge is pending.")
            pending.resolver.require_complete()

            try:
                versions = self._ensure_not_stale(pending.seen_heads)
            except StaleBaseError:
                self.pending = None
                self._set_status(pending_conflicts=0)
                raise

            outcome = self.applier.apply(
                pending.base_rows, pending.detection, pending.resolver, self.actor,
            )
            self._carry_local_edits(outcome.rows, pending.local_rows)
            self._set_status(is_saving=True)
            try:
                info = self._rebase(
                    outcome.rows, self._next_parents + pending.filenames, versions,
                )
            except IoError:
                # Still pending; a retry rewrites the same resolutions.
                pending.local_rows = self.working.copy()
                raise
            finally:
                self._set_status(is_saving=False)
            self.pending = None
            self._set_status(pending_conflicts=0)

        self._dismissed.clear()
        self._set_status(dismissed_snapshots=0)
        self.dispatcher.on_merge(
            self.actor, info.filename,
            f"resolved {len(pending.conflicts)} conflict(s)",
        )
        return info

    def cancel_pending(self) -> None:
        """Discard the pending merge; the working copy is left as it was.

        Background checks will not raise the same snapshots again until
        a newer one appears. The next save still merges them.
        """
        with self._io_lock:
            if self.pending is None:
                return
            if self.pending.origin == "poll":
                self._dismissed.update(self.pending.filenames)
            logger.info(
                "Cancelled merge of %s with %d unresolved conflict(s)",
                ", ".join(self.pending.filenames), len(self.pending.resolver.pending()),
            )
            self.pending = None
            self._set_status(pending_conflicts=0, dismissed_snapshots=len(self._dismissed))

    def merge_with(self, filename: str) -> SaveResult:
        """Merge one specific snapshot into the working copy and save.

        The snapshot is compared against the current base like any
        newer head. Conflicts are held as :attr:`pending`.
        """
        with self._io_lock:
            if self.pending is not None:
                raise MergePendingError("Resolve or cancel the pending merge first.")
            versions = self.store.list_versions()
            snapshot = self.store.read(filename)
            seen = {h.filename for h in self.newer_heads(versions)} | {filename}
            detection, report = self._detect([snapshot])

            if detection.has_conflicts:
                pending = self._hold(detection, report, [snapshot], seen, origin="merge")
                return SaveResult(pending=pending, merged=[filename])

            outcome = self.applier.apply(
                self._base_rows, detection, MergeResolver([]), self.actor,
            )
            self._carry_local_edits(outcome.rows, detection.candidates[0].rows)
            versions = self._ensure_not_stale(seen)
            info = self._rebase(outcome.rows, self._next_parents + [filename], versions)

        self.dispatcher.on_merge(self.actor, info.filename, f"merged {filename}")
        return SaveResult(saved=info, merged=[filename], stats=outcome.stats)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, filename: str) -> Snapshot:
        """Replace the working copy with a historical snapshot.

        Destructive: local changes and any pending merge are dropped.
        Every snapshot currently visible is treated as superseded, so
        the next save writes the restored state as the newest version.
        """
        with self._io_lock:
            snapshot = self.store.read(filename)
            versions = self.store.list_versions()

            self.pending = None
            self._dismissed = set()
            self.working = snapshot.row_set()
            self._known = {v.filename for v in versions}
            self._adopt(snapshot, snapshot.row_set(), [snapshot.filename])
            self._horizon = max((v.saved_at for v in versions), default=snapshot.saved_at)
            self._set_status(
                base_filename=snapshot.filename,
                pending_conflicts=0,
                dismissed_snapshots=0,
            )

        logger.info("Restored %s (%d rows)", filename, snapshot.row_count())
        self.dispatcher.on_restore(self.actor, filename)
        return snapshot

    # ------------------------------------------------------------------
    # Exclusive access and presence
    # ------------------------------------------------------------------

    def request_exclusive_access(self) -> LockInfo:
        """Claim the advisory lock. Raises LockHeldError if someone else holds it."""
        return self.access.acquire()

    def release_exclusive_access(self) -> bool:
        return self.access.release()

    def heartbeat(self) -> None:
        """Refresh presence and, if held, the exclusive-access lock."""
        self.presence.write_heartbeat()
        self.access.refresh()

    def active_users(self) -> list[ActiveUser]:
        return self.presence.active_users(self.settings.heartbeat_stale_seconds)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _adopt(self, snapshot: Snapshot | None, base_rows: RowSet, parents: list[str]) -> None:
        self.base = snapshot
        self._base_rows = base_rows
        self._next_parents = parents
        self._known.update(parents)
        if snapshot is not None:
            self._known.add(snapshot.filename)

    def _candidate(self, snapshot: Snapshot) -> Candidate:
        return Candidate(snapshot.saved_by, snapshot.row_set(), snapshot.filename)

    def _read_heads(self, heads: list[FileVersionInfo]) -> list[Snapshot]:
        snapshots = []
        for head in heads:
            try:
                snapshots.append(self.store.read(head.filename))
            except ParseError:
                logger.warning("Excluding unreadable snapshot %s from merge", head.filename)
        return snapshots

    def _detect(self, snapshots: list[Snapshot]) -> tuple[DetectionResult, CoarseReport]:
        candidates = [Candidate(self.actor, self.working.copy(), "working copy")]
        candidates.extend(self._candidate(s) for s in snapshots)

        report = self.detector.precheck(self._base_rows, candidates)
        if not report.has_changes:
            return DetectionResult(candidates=candidates), report
        return self.detector.detect(self._base_rows, candidates), report

    def _carry_local_edits(self, merged: RowSet, detected: RowSet) -> int:
        """Re-apply working-copy edits made after *detected* was copied.

        The latest local edit wins over the merge result for that row.
        Returns the number of rows carried over.
        """
        keys = {(r.table, r.identity) for r in detected} | {
            (r.table, r.identity) for r in self.working
        }
        carried = 0
        for table, identity in sorted(keys):
            current = self.working.get(table, identity)
            if current == detected.get(table, identity):
                continue
            if current is None:
                merged.remove(table, identity)
            else:
                merged.put(current.model_copy(deep=True))
            carried += 1
        if carried:
            logger.info("Kept %d local edit(s) made while merging", carried)
        return carried

    def _hold(
        self,
        detection: DetectionResult,
        report: CoarseReport,
        snapshots: list[Snapshot],
        seen: set[str],
        origin: str,
    ) -> PendingMerge:
        self.pending = PendingMerge(
            detection=detection,
            resolver=MergeResolver(detection.conflicts),
            base_rows=self._base_rows.copy(),
            merged=[s.info for s in snapshots],
            seen_heads=seen,
            origin=origin,
            report=report,
            local_rows=detection.candidates[0].rows,
        )
        self._set_status(pending_conflicts=len(detection.conflicts))
        logger.info(
            "%d conflict(s) with %s need a decision",
            len(detection.conflicts), ", ".join(self.pending.filenames),
        )
        self.dispatcher.on_conflict(
            self.actor, ", ".join(self.pending.filenames),
            f"{len(detection.conflicts)} conflict(s) in "
            + ", ".join(sorted({c.table for c in detection.conflicts})),
        )
        return self.pending

    def _ensure_not_stale(self, seen: set[str]) -> list[FileVersionInfo]:
        """Re-list right before writing; raise if unseen heads appeared.

        Returns the fresh listing.
        """
        versions = self.store.list_versions()
        fresh = [h.filename for h in self.newer_heads(versions) if h.filename not in seen]
        if fresh:
            logger.warning("Base moved during merge: %s", ", ".join(fresh))
            raise StaleBaseError(fresh)
        return versions

    def _rebase(
        self,
        merged: RowSet,
        parents: list[str],
        versions: list[FileVersionInfo],
    ) -> FileVersionInfo:
        """Make *merged* the working copy, write it, and advance the base.

        If the write fails the working copy keeps the merged rows but
        the base stays where it was.
        """
        self.working = merged
        try:
            info = self.store.write(merged, self.actor, self.session_started_at, parents)
        except IoError as exc:
            self._set_status(last_error=str(exc))
            raise

        snapshot = Snapshot(info=info, rows=tuple(r.model_copy(deep=True) for r in merged))
        self._adopt(snapshot, snapshot.row_set(), [info.filename])
        self._known.update(parents)
        self._compact(versions + [info])
        self._cleanup_old_versions()

        self._set_status(base_filename=info.filename, last_saved_at=info.saved_at)
        self.dispatcher.on_save(self.actor, info.filename, f"{len(merged)} rows")
        return info

    def _compact(self, versions: list[FileVersionInfo]) -> int:
        """Prune tombstones no reachable session can still need."""
        cutoff = self._clock() - timedelta(days=self.settings.tombstone_retention_days)
        starts = [v.session_started_at for v in versions if v.session_started_at]
        if self.session_started_at is not None:
            starts.append(self.session_started_at)
        if starts:
            cutoff = min(cutoff, min(starts))
        removed = prune_tombstones(self.working, cutoff)
        prune_tombstones(self._base_rows, cutoff)
        return removed

    def _cleanup_old_versions(self) -> None:
        keep = self.settings.keep_versions
        if keep <= 0:
            return
        protect = set(self._next_parents)
        if self.base is not None:
            protect.add(self.base.filename)
        self.store.cleanup(keep, protect)
