"""MergeApplier — turns a detection result plus resolutions into one row set."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from shiftsync.models.row import Row, RowSet, utc_now
from shiftsync.sync.conflict import (
    AcceptDelete,
    KeepAll,
    KeepBase,
    KeepModifier,
    MergeConflict,
)
from shiftsync.sync.detector import DetectionResult, TableMergeStats
from shiftsync.sync.errors import IncompleteResolutionError, InvalidResolutionError
from shiftsync.sync.provenance import mark_deleted, new_identity, touch
from shiftsync.sync.resolver import AnyResolution, MergeResolver

logger = logging.getLogger(__name__)


@dataclass
class MergeOutcome:
    """The merged row set and what happened to it."""

    rows: RowSet
    stats: dict[str, TableMergeStats] = field(default_factory=dict)
    minted: list[tuple[str, str]] = field(default_factory=list)
    """(table, identity) pairs created by ``KeepAll``."""


class MergeApplier:
    """Apply automatic changes and resolved conflicts on top of a base."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now

    def apply(
        self,
        base: RowSet,
        detection: DetectionResult,
        resolver: MergeResolver,
        actor: str,
    ) -> MergeOutcome:
        """Build the merged row set.

        *base* is not modified. Raises :class:`IncompleteResolutionError`
        before doing anything if a conflict has no resolution.
        """
        pending = [
            c.conflict_key for c in detection.conflicts
            if resolver.resolution_for(c.conflict_key) is None
        ]
        if pending:
            raise IncompleteResolutionError(pending)

        now = self._clock()
        merged = base.copy()
        outcome = MergeOutcome(rows=merged, stats=copy.deepcopy(detection.stats))

        for change in detection.auto_changes:
            if change.row is None:
                merged.remove(change.table, change.identity)
            else:
                merged.put(change.row.model_copy(deep=True))

        for conflict in detection.conflicts:
            resolution = resolver.resolution_for(conflict.conflict_key)
            self._apply_one(merged, conflict, resolution, actor, now, outcome)

        logger.info(
            "Applied merge for %s: %d automatic change(s), %d resolved conflict(s), %d new row(s)",
            actor, len(detection.auto_changes), len(detection.conflicts), len(outcome.minted),
        )
        return outcome

    def _apply_one(
        self,
        merged: RowSet,
        conflict: MergeConflict,
        resolution: AnyResolution | None,
        actor: str,
        now: datetime,
        outcome: MergeOutcome,
    ) -> None:
        table, identity = conflict.table, conflict.sync_id

        if isinstance(resolution, KeepBase):
            if conflict.base_row is None:
                merged.remove(table, identity)
            else:
                merged.put(conflict.base_row.model_copy(deep=True))

        elif isinstance(resolution, KeepModifier):
            modifier = conflict.modifiers[resolution.index]
            if modifier.row is not None:
                merged.put(modifier.row.model_copy(deep=True))
            else:
                row = _tombstone_source(conflict)
                merged.put(mark_deleted(row, modifier.actor, modifier.modified_at or now))

        elif isinstance(resolution, AcceptDelete):
            merged.put(mark_deleted(_tombstone_source(conflict), actor, now))

        elif isinstance(resolution, KeepAll):
            versions = [m for m in conflict.modifiers if m.row is not None]
            for position, modifier in enumerate(versions):
                row = modifier.row.model_copy(deep=True)
                if position > 0:
                    # Minted copies keep their author.
                    row.identity = new_identity()
                    touch(row, modifier.actor, now)
                    outcome.minted.append((table, row.identity))
                merged.put(row)

        else:
            raise InvalidResolutionError(
                f"{conflict.conflict_key}: unsupported resolution {resolution!r}"
            )


def _tombstone_source(conflict: MergeConflict) -> Row:
    """Copy of the row whose content a tombstone should carry."""
    if conflict.base_row is not None:
        return conflict.base_row.model_copy(deep=True)
    for m in conflict.modifiers:
        if m.row is not None:
            return m.row.model_copy(deep=True)
    return Row(table=conflict.table, identity=conflict.sync_id)
