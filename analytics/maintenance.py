"""
Maintenance - Periodic cleanup sweep over every stored student.

The sweep never overlaps itself: a run that starts while another is in
progress returns immediately.
"""

import logging
import threading
from typing import Optional

from .mastery_ledger import DEFAULT_CLEANUP_DAYS, MasteryLedger
from .mistake_tracker import MistakeTracker

logger = logging.getLogger(__name__)


class CleanupSweep:
    def __init__(self, ledger: MasteryLedger, tracker: MistakeTracker,
                 cutoff_days: int = DEFAULT_CLEANUP_DAYS):
        self.ledger = ledger
        self.tracker = tracker
        self.cutoff_days = cutoff_days
        self._running = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._interval: Optional[float] = None
        self._stopped = threading.Event()

    def run_once(self) -> Optional[dict]:
        """
        Clean every student once.

        Returns counts of removed records, or None if another run was in progress.
        """
        if not self._running.acquire(blocking=False):
            logger.info("Cleanup sweep already running, skipping")
            return None

        try:
            students = sorted(set(self.ledger.student_ids()) | set(self.tracker.student_ids()))
            mastery_removed = mistakes_removed = 0
            for student_id in students:
                mastery_removed += self.ledger.cleanup(student_id, self.cutoff_days)
                mistakes_removed += self.tracker.cleanup(student_id, self.cutoff_days)
        finally:
            self._running.release()

        logger.info("Cleanup sweep finished: %d students, %d mastery records, %d mistake concepts removed",
                    len(students), mastery_removed, mistakes_removed)
        return {
            "students": len(students),
            "mastery_records_removed": mastery_removed,
            "mistake_concepts_removed": mistakes_removed,
        }

    # ==================== Scheduling ====================

    def start(self, interval_seconds: float):
        """Run the sweep every interval on a daemon timer thread."""
        self._interval = interval_seconds
        self._stopped.clear()
        self._schedule()

    def stop(self):
        self._stopped.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self):
        if self._stopped.is_set():
            return
        self._timer = threading.Timer(self._interval, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self):
        try:
            self.run_once()
        except Exception:
            logger.exception("Cleanup sweep failed")
        finally:
            self._schedule()
