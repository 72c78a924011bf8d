"""Presence heartbeats — who else has the shared schedule open."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from shiftsync.config import (
    DEFAULT_HEARTBEAT_CLEANUP_SECONDS,
    DEFAULT_HEARTBEAT_STALE_SECONDS,
    HEARTBEAT_PREFIX,
)
from shiftsync.models.row import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ActiveUser:
    user: str
    last_seen: datetime
    stale: bool = False


class PresenceTracker:
    """Write and read ``heartbeat-<user>.json`` files in the shared location."""

    def __init__(
        self,
        location: str | Path,
        actor: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.location = Path(location)
        self.actor = actor
        self._clock = clock or utc_now

    @property
    def path(self) -> Path:
        return self.location / _heartbeat_name(self.actor)

    def write_heartbeat(self) -> bool:
        """Stamp our heartbeat. Returns False if the location is not writable."""
        data = {"user": self.actor, "timestamp": self._clock().isoformat()}
        try:
            self.path.write_text(json.dumps(data), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write heartbeat: %s", exc)
            return False
        return True

    def active_users(
        self,
        stale_after: float = DEFAULT_HEARTBEAT_STALE_SECONDS,
        include_self: bool = False,
    ) -> list[ActiveUser]:
        """Everyone with a heartbeat file, most recently seen first."""
        now = self._clock()
        users: list[ActiveUser] = []
        for user, last_seen, _ in self._heartbeats():
            if user == self.actor and not include_self:
                continue
            users.append(ActiveUser(
                user=user,
                last_seen=last_seen,
                stale=now - last_seen > timedelta(seconds=stale_after),
            ))
        users.sort(key=lambda u: u.last_seen, reverse=True)
        return users

    def other_users(self, stale_after: float = DEFAULT_HEARTBEAT_STALE_SECONDS) -> list[str]:
        return [u.user for u in self.active_users(stale_after) if not u.stale]

    def cleanup_stale(self, max_age: float = DEFAULT_HEARTBEAT_CLEANUP_SECONDS) -> int:
        """Delete heartbeats older than *max_age* seconds. Returns the count."""
        cutoff = self._clock() - timedelta(seconds=max_age)
        removed = 0
        for _, last_seen, path in self._heartbeats():
            if last_seen < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.debug("Removed %d old heartbeat file(s)", removed)
        return removed

    def _heartbeats(self) -> list[tuple[str, datetime, Path]]:
        found = []
        for path in sorted(self.location.glob(f"{HEARTBEAT_PREFIX}*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                found.append((data["user"], datetime.fromisoformat(data["timestamp"]), path))
            except (json.JSONDecodeError, OSError, KeyError, ValueError):
                logger.debug("Skipping unreadable heartbeat %s", path.name, exc_info=True)
        return found


def _heartbeat_name(actor: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", actor.lower()).strip("-") or "anonymous"
    return f"{HEARTBEAT_PREFIX}{slug}.json"
