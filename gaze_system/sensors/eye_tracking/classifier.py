"""
Blink and Eye Movement Classification
Hysteresis blink detector and per-sample Blink / Fixation / Saccade labels
"""

import logging
import math
from collections import deque
from typing import Optional

from .config import EyeTrackingConfig
from .geometry import Point2D

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Movement categories (these strings appear in exported samples)
# ---------------------------------------------------------------------------
BLINK     = 'Blink'
FIXATION  = 'Fixation'
SACCADE   = 'Saccade'

CATEGORIES = (BLINK, FIXATION, SACCADE)

# Blink detector states
STATE_OPEN   = 'open'
STATE_CLOSED = 'closed'


def classify_movement(
        velocity: float,
        openness: float,
        blink_threshold: float = 0.18,
        fixation_threshold: float = 0.015
) -> str:
    """
    Classify one eye for one sampling tick.

    Args:
        velocity: Iris centre velocity in normalised units per second
        openness: Eye openness ratio in [0, 1]
        blink_threshold: Openness below which the eye counts as closed
        fixation_threshold: Velocity below which the eye counts as fixating

    Returns:
        BLINK, FIXATION or SACCADE
    """
    if openness < blink_threshold:
        return BLINK
    if velocity < fixation_threshold:
        return FIXATION
    return SACCADE


def gaze_velocity(
        previous: Optional[Point2D],
        current: Optional[Point2D],
        delta_ms: float
) -> float:
    """
    Iris centre velocity between two sampling ticks.

    Args:
        previous: Centre at the previous tick (normalised)
        current: Centre at this tick (normalised)
        delta_ms: Elapsed milliseconds between the ticks

    Returns:
        Distance per second, or 0 if either centre is missing
    """
    if previous is None or current is None:
        return 0.0
    delta_ms = max(1.0, delta_ms)
    return math.hypot(current.x - previous.x, current.y - previous.y) / delta_ms * 1000.0


class BlinkDetector:
    """
    Session-wide open/closed state machine.

    Driven by the average openness of both eyes. Closing below
    blink_threshold counts one blink; the eye must open past the higher
    blink_open_threshold before another blink can be counted.
    """

    def __init__(self, config: Optional[EyeTrackingConfig] = None):
        self.config = config or EyeTrackingConfig()
        self.state = STATE_OPEN
        self.blink_count = 0
        self._blink_times = deque()

    def update(self, average_openness: float, now_ms: float) -> bool:
        """
        Feed one frame's average openness.

        Args:
            average_openness: Mean of left and right openness
            now_ms: Monotonic time of the frame in milliseconds

        Returns:
            True if this frame started a new blink
        """
        started = False
        if self.state == STATE_OPEN and average_openness < self.config.blink_threshold:
            self.state = STATE_CLOSED
            self.blink_count += 1
            self._blink_times.append(now_ms)
            started = True
            logger.debug(f"Blink #{self.blink_count} (openness={average_openness:.3f})")
        elif self.state == STATE_CLOSED and average_openness > self.config.blink_open_threshold:
            self.state = STATE_OPEN

        self._expire(now_ms)
        return started

    def blinks_in_window(self, now_ms: float) -> int:
        """Blinks within the last blink_window_ms (blinks per minute by default)"""
        self._expire(now_ms)
        return len(self._blink_times)

    def reset(self):
        self.state = STATE_OPEN
        self.blink_count = 0
        self._blink_times.clear()

    def _expire(self, now_ms: float):
        while self._blink_times and now_ms - self._blink_times[0] > self.config.blink_window_ms:
            self._blink_times.popleft()

    def __repr__(self):
        return f"<BlinkDetector(state={self.state}, blinks={self.blink_count})>"
