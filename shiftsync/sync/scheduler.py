"""PollScheduler — periodic background checks using threading.Timer."""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable

from shiftsync.sync.errors import SyncError
from shiftsync.sync.session import CheckStatus, SyncSession

logger = logging.getLogger(__name__)


class PollState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    CONFLICT_CHECK = "conflict_check"
    AUTO_MERGE = "auto_merge"
    AWAITING_RESOLUTION = "awaiting_resolution"


class PollOutcome(str, enum.Enum):
    SKIPPED_BUSY = "skipped_busy"
    SKIPPED_SAVING = "skipped_saving"
    SUSPENDED = "suspended"
    NO_NEW_SNAPSHOT = "no_new_snapshot"
    AUTO_MERGED = "auto_merged"
    CONFLICTS_FOUND = "conflicts_found"
    FAILED = "failed"


_PHASES = {
    "checking": PollState.CONFLICT_CHECK,
    "merging": PollState.AUTO_MERGE,
}


class PollScheduler:
    """Check the shared location for newer snapshots every few seconds.

    A tick that overlaps a running tick is dropped, and a tick that
    lands during a save is skipped rather than deferred. Once a check
    finds conflicts, ticks are suspended until the pending merge is
    applied or :meth:`cancel` is called.

    Parameters
    ----------
    session:
        Session whose working copy is kept up to date.
    interval_seconds:
        Seconds between ticks. Defaults to the session's settings.
    on_outcome:
        Optional callback receiving every tick's :class:`PollOutcome`.
    """

    def __init__(
        self,
        session: SyncSession,
        interval_seconds: float | None = None,
        on_outcome: Callable[[PollOutcome], None] | None = None,
    ) -> None:
        self.session = session
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else session.settings.poll_interval_seconds
        )
        self._on_outcome = on_outcome
        self._timer: threading.Timer | None = None
        self._running = False
        self._tick_lock = threading.Lock()
        self._state = PollState.IDLE

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> PollState:
        if self._state is not PollState.AWAITING_RESOLUTION:
            return self._state
        # The pending merge may have been applied or cancelled elsewhere.
        return PollState.AWAITING_RESOLUTION if self.session.pending else PollState.IDLE

    def start(self) -> None:
        """Start ticking in the background."""
        if self._running:
            return
        self._running = True
        self._schedule_next()
        logger.info("Polling %s every %.1f seconds", self.session.store.location, self.interval_seconds)

    def stop(self) -> None:
        """Stop ticking. A tick already running finishes."""
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.info("Stopped polling")

    def cancel(self) -> None:
        """Discard the pending conflict set and go back to idle.

        The working copy is not touched.
        """
        self.session.cancel_pending()
        self._state = PollState.IDLE

    def tick(self) -> PollOutcome:
        """Run one check now."""
        if not self._tick_lock.acquire(blocking=False):
            return self._report(PollOutcome.SKIPPED_BUSY)
        try:
            if self.session.pending is not None:
                self._state = PollState.AWAITING_RESOLUTION
                return self._report(PollOutcome.SUSPENDED)

            self._state = PollState.POLLING
            try:
                self.session.heartbeat()
                check = self.session.check_for_updates(on_phase=self._enter_phase)
            except SyncError as exc:
                logger.warning("Background check failed: %s", exc)
                self._state = PollState.IDLE
                return self._report(PollOutcome.FAILED)

            if check.status is CheckStatus.CONFLICTS:
                self._state = PollState.AWAITING_RESOLUTION
                return self._report(PollOutcome.CONFLICTS_FOUND)
            if check.status is CheckStatus.PENDING:
                self._state = PollState.AWAITING_RESOLUTION
                return self._report(PollOutcome.SUSPENDED)

            self._state = PollState.IDLE
            outcome = {
                CheckStatus.BUSY: PollOutcome.SKIPPED_SAVING,
                CheckStatus.UP_TO_DATE: PollOutcome.NO_NEW_SNAPSHOT,
                CheckStatus.AUTO_MERGED: PollOutcome.AUTO_MERGED,
            }[check.status]
            return self._report(outcome)
        finally:
            self._tick_lock.release()

    def _enter_phase(self, phase: str) -> None:
        self._state = _PHASES.get(phase, self._state)

    def _report(self, outcome: PollOutcome) -> PollOutcome:
        logger.debug("Poll tick: %s", outcome.value)
        if self._on_outcome:
            self._on_outcome(outcome)
        return outcome

    def _schedule_next(self) -> None:
        if not self._running:
            return
        self._timer = threading.Timer(self.interval_seconds, self._run)
        self._timer.daemon = True
        self._timer.start()

    def _run(self) -> None:
        """Execute a tick and reschedule."""
        if not self._running:
            return
        try:
            self.tick()
        except Exception:
            logger.warning("Scheduled poll failed", exc_info=True)
        finally:
            self._schedule_next()
