"""Row provenance bookkeeping: touch, tombstone, create, and compaction.

The editing layer calls these on every mutation so that each row
records who changed it and when. Deletions become tombstones so they
take part in merge comparison like any other edit.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from shiftsync.models.row import Row, RowSet

logger = logging.getLogger(__name__)


def new_identity() -> str:
    """Mint a fresh row identity. Identities are never reused."""
    return uuid.uuid4().hex


def touch(row: Row, actor: str, now: datetime) -> Row:
    """Stamp *row* as modified by *actor* at *now*. Returns the row."""
    row.modified_at = now
    row.modified_by = actor
    return row


def mark_deleted(row: Row, actor: str, now: datetime) -> Row:
    """Tombstone *row* instead of removing it. Returns the row."""
    row.deleted_at = now
    return touch(row, actor, now)


def create_row(
    table: str,
    fields: dict[str, Any],
    actor: str,
    now: datetime,
    identity: str | None = None,
) -> Row:
    """Build a new live row with a freshly minted identity."""
    row = Row(table=table, identity=identity or new_identity(), fields=fields)
    return touch(row, actor, now)


def prune_tombstones(rows: RowSet, cutoff: datetime) -> int:
    """Physically drop tombstones deleted before *cutoff*.

    Returns the number of rows removed.
    """
    doomed = [
        (row.table, row.identity)
        for row in rows
        if row.deleted_at is not None and row.deleted_at < cutoff
    ]
    for table, identity in doomed:
        rows.remove(table, identity)
    if doomed:
        logger.info("Pruned %d tombstone(s) older than %s", len(doomed), cutoff.isoformat())
    return len(doomed)
