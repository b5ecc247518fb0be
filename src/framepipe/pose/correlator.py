"""
Pose Correlator
===============

Single-cell holder of the freshest known pose.

The frame encoding path reads the current pose while the pose-receiving
path writes it, possibly from different threads. The cell holds an
immutable PoseSample and is swapped as a whole under a lock, so a reader
never sees a half-written transform.

Design Rules:
    - Not a queue: intermediate samples are dropped in favor of the newest
    - A sample older than or equal to the current one is a no-op
"""

import logging
import threading
from typing import Optional

from framepipe.models.pose import PoseSample


logger = logging.getLogger(__name__)


class PoseCorrelator:
    """
    Last-writer-wins-if-newer cell for the current pose.

    Example:
        correlator = PoseCorrelator()
        correlator.observe(PoseSample(timestamp=100.0, id=5))
        correlator.observe(PoseSample(timestamp=90.0, id=3))  # ignored
        assert correlator.current().id == 5
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Optional[PoseSample] = None
        self._accepted: int = 0
        self._rejected: int = 0

    def observe(self, sample: PoseSample) -> bool:
        """
        Offer a new pose sample.

        Args:
            sample: Candidate pose

        Returns:
            True if the sample became the current pose, False if it was stale.
        """
        with self._lock:
            current = self._current
            if current is not None and not sample.is_newer_than(current):
                self._rejected += 1
                logger.debug(
                    f"Discarded stale pose {sample!r}, current is {current!r}"
                )
                return False

            self._current = sample
            self._accepted += 1
            return True

    def current(self) -> Optional[PoseSample]:
        """Freshest known pose, or None before the first sample."""
        with self._lock:
            return self._current

    def reset(self) -> None:
        """Forget the current pose (e.g. when the tracking source restarts)."""
        with self._lock:
            self._current = None

    def metrics(self) -> dict:
        """Counters of accepted and rejected samples."""
        with self._lock:
            current = self._current
            return {
                "accepted": self._accepted,
                "rejected": self._rejected,
                "current_id": current.id if current else None,
                "current_timestamp": current.timestamp if current else None,
            }
