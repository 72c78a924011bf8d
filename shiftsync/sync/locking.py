"""Advisory exclusive-access lock for the shared location.

The lock is a convenience for people who want to edit alone. It is a
single ``lock.json`` file and is never consulted by the save path:
merging stays correct whether or not anyone holds it.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from shiftsync.config import DEFAULT_LOCK_STALE_SECONDS, LOCK_FILENAME
from shiftsync.models.row import utc_now
from shiftsync.sync.errors import IoError, LockHeldError

logger = logging.getLogger(__name__)


@dataclass
class LockInfo:
    """Contents of ``lock.json``."""

    user: str
    machine_id: str
    timestamp: datetime

    def is_stale(self, now: datetime, timeout: float) -> bool:
        return now - self.timestamp > timedelta(seconds=timeout)

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "machineId": self.machine_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> LockInfo:
        return cls(
            user=data["user"],
            machine_id=data.get("machineId", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class ExclusiveAccessLock:
    """Claim, refresh, and release ``lock.json`` in a shared location.

    Parameters
    ----------
    location:
        Shared folder.
    user:
        Actor claiming access.
    timeout:
        Seconds after which an unrefreshed lock counts as abandoned.
    clock:
        Timestamp source.
    """

    def __init__(
        self,
        location: str | Path,
        user: str,
        timeout: float = DEFAULT_LOCK_STALE_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.location = Path(location)
        self.user = user
        self.timeout = timeout
        self.machine_id = secrets.token_hex(6)
        self._clock = clock or utc_now

    @property
    def path(self) -> Path:
        return self.location / LOCK_FILENAME

    def acquire(self) -> LockInfo:
        """Claim exclusive access.

        A stale lock left by a crashed session is taken over.

        Raises
        ------
        LockHeldError
            If another live session holds the lock.
        """
        current = self.holder()
        if current is not None and not self._is_ours(current):
            raise LockHeldError(current.user)

        lock = self._write()
        # Another session may have written between our read and write.
        verify = self._read()
        if verify is not None and not self._is_ours(verify):
            raise LockHeldError(verify.user)

        logger.info("Exclusive access acquired by %s", self.user)
        return lock

    def refresh(self) -> bool:
        """Re-stamp our lock. Returns False if we no longer hold it."""
        current = self._read()
        if current is None or not self._is_ours(current):
            return False
        self._write()
        return True

    def release(self) -> bool:
        """Remove the lock if it is ours. Returns True if removed."""
        current = self._read()
        if current is None or not self._is_ours(current):
            return False
        try:
            self.path.unlink()
        except OSError as exc:
            logger.warning("Could not release lock: %s", exc)
            return False
        logger.info("Exclusive access released by %s", self.user)
        return True

    def holder(self) -> LockInfo | None:
        """The live lock, or None if absent or stale."""
        lock = self._read()
        if lock is None:
            return None
        if lock.is_stale(self._clock(), self.timeout):
            logger.info("Ignoring stale lock held by %s", lock.user)
            return None
        return lock

    def is_locked_by_other(self) -> str | None:
        lock = self.holder()
        if lock is None or self._is_ours(lock):
            return None
        return lock.user

    def _is_ours(self, lock: LockInfo) -> bool:
        return lock.user == self.user and lock.machine_id == self.machine_id

    def _read(self) -> LockInfo | None:
        if not self.path.is_file():
            return None
        try:
            return LockInfo.from_dict(json.loads(self.path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, OSError, KeyError, ValueError):
            logger.debug("Unreadable lock file %s", self.path, exc_info=True)
            return None

    def _write(self) -> LockInfo:
        lock = LockInfo(user=self.user, machine_id=self.machine_id, timestamp=self._clock())
        try:
            self.path.write_text(json.dumps(lock.to_dict(), indent=2), encoding="utf-8")
        except OSError as exc:
            raise IoError(f"Could not write lock file: {exc}") from exc
        return lock
