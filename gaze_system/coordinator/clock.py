"""
Central Clock
Frame-gating time source and sample wall-clock stamps for the gaze pipeline
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)


class CentralClock:
    """
    Shared time reference for one tracking process.

    Two scales are kept apart:
      - monotonic_ms(): milliseconds on perf_counter, relative to the clock's
        origin. Sample cadence, capture countdowns and gaze velocities are
        all measured on this scale, so wall-clock jumps never reach them.
      - now(): UTC datetimes stamped onto GazeSamples and capture results.
        Consecutive calls are strictly increasing, even when the system
        clock stalls or steps back.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._origin = time.perf_counter()
        self._last_stamp: Optional[datetime] = None

        logger.info("Central clock initialized")

    def monotonic_ms(self) -> float:
        return (time.perf_counter() - self._origin) * 1000.0

    def now(self) -> datetime:
        """Strictly increasing UTC timestamp"""
        with self._lock:
            stamp = datetime.now(timezone.utc)
            if self._last_stamp is not None and stamp <= self._last_stamp:
                stamp = self._last_stamp + timedelta(microseconds=1)
            self._last_stamp = stamp
            return stamp

    def isoformat(self) -> str:
        return self.now().isoformat()

    def reset(self):
        """Re-zero the monotonic origin and forget the last wall-clock stamp"""
        with self._lock:
            self._origin = time.perf_counter()
            self._last_stamp = None
        logger.info("Central clock reset")

    def __repr__(self):
        return f"<CentralClock(t={self.monotonic_ms():.0f} ms)>"
