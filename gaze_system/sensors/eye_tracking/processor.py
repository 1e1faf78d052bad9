"""
Eye Tracking Processor
Per-frame geometry, blink tracking and calibration feed, with a gated
~10 Hz sample producer that emits one GazeSample per tick.
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Optional

from gaze_system.coordinator.clock import CentralClock

from .calibrator import EyeTrackingCalibrator
from .classifier import BlinkDetector, classify_movement, gaze_velocity
from .config import EyeTrackingConfig
from .geometry import EyeGeometry, Point2D, extract_eyes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GazeSample:
    """One sampling tick. Gaze points are calibrated and in image pixels."""
    recording_time_ms: float
    timestamp: str
    category_left: str
    category_right: str
    pupil_diameter_left_mm: float
    pupil_diameter_right_mm: float
    gaze_left: Point2D
    gaze_right: Point2D
    tracking_ratio: float


@dataclass
class TrackingState:
    """Counters and previous-tick values for one tracking session"""
    start_ms: Optional[float] = None
    total_frames: int = 0
    valid_frames: int = 0
    last_tick_ms: Optional[float] = None
    prev_left_center: Optional[Point2D] = None
    prev_right_center: Optional[Point2D] = None
    sample_count: int = 0
    blinks_in_window: int = 0

    @property
    def tracking_ratio(self) -> float:
        if self.total_frames <= 0:
            return 0.0
        return round(self.valid_frames / self.total_frames * 100.0, 2)


def pupil_diameter_mm(eye: EyeGeometry, frame_width: int, eye_width_mm: float = 30.0) -> float:
    """
    Pupil (iris) diameter estimate in millimetres.

    The eye's own corner-to-corner width in pixels is taken as eye_width_mm,
    giving a per-frame px -> mm scale.

    Returns:
        Diameter rounded to 2 dp, or 0 if the iris or eye width is unavailable
    """
    eye_width_px = eye.horizontal_distance * frame_width
    if eye.iris is None or eye_width_px <= 0:
        return 0.0
    scale = eye_width_mm / eye_width_px
    return round(eye.iris.radius_px * 2 * scale, 2)


def to_pixels(point: Optional[Point2D], width: int, height: int) -> Point2D:
    """Denormalise to whole image pixels; a missing point maps to (0, 0)"""
    if point is None:
        return Point2D(0, 0)
    return Point2D(int(math.floor(point.x * width + 0.5)), int(math.floor(point.y * height + 0.5)))


class EyeTrackingProcessor:
    """
    Frame-driven gaze processor.

    process_frame() is called once per camera frame and is the only writer
    of tracking state. Geometry, blink detection and calibration run on
    every frame; a GazeSample is produced only when more than
    sample_interval_ms has elapsed since the last one. Other threads read
    the most recent sample through get_latest_sample().
    """

    def __init__(
            self,
            calibrator: Optional[EyeTrackingCalibrator] = None,
            config: Optional[EyeTrackingConfig] = None,
            clock: Optional[CentralClock] = None,
    ):
        """
        Args:
            calibrator: Source of the calibration models. A fresh
                        (identity) calibrator is created if omitted.
            config:     EyeTrackingConfig. Defaults to EyeTrackingConfig().
            clock:      CentralClock used for sample timestamps.
        """
        self.config = config or EyeTrackingConfig()
        self.calibrator = calibrator or EyeTrackingCalibrator(self.config)
        self.clock = clock or CentralClock()

        self.blink_detector = BlinkDetector(self.config)
        self.state = TrackingState()

        self._latest_sample: Optional[GazeSample] = None
        self._sample_lock = threading.Lock()

        logger.info(
            f"EyeTrackingProcessor initialised (tick every {self.config.sample_interval_ms:.0f} ms)"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, now_ms: Optional[float] = None):
        """Reset counters and begin a new tracking session at now_ms"""
        self.state = TrackingState(start_ms=now_ms)
        self.blink_detector.reset()
        with self._sample_lock:
            self._latest_sample = None
        logger.info("✓ EyeTrackingProcessor started")

    def process_frame(
            self,
            landmarks,
            now_ms: float,
            frame_width: Optional[int] = None,
            frame_height: Optional[int] = None,
    ) -> Optional[GazeSample]:
        """
        Process one frame of landmarks.

        Args:
            landmarks:    Normalised FaceMesh landmarks, or None if no face was found
            now_ms:       Monotonic frame time in milliseconds
            frame_width:  Frame width in pixels (defaults to config.frame_width)
            frame_height: Frame height in pixels (defaults to config.frame_height)

        Returns:
            A GazeSample when this frame crossed the sampling cadence, else None.
        """
        width = frame_width or self.config.frame_width
        height = frame_height or self.config.frame_height
        state = self.state

        if state.start_ms is None:
            state.start_ms = now_ms
        state.total_frames += 1

        if landmarks is None or len(landmarks) == 0:
            return None

        left, right = extract_eyes(landmarks, width, height, self.config)
        if left.iris is not None and right.iris is not None:
            state.valid_frames += 1

        self.blink_detector.update((left.openness + right.openness) / 2, now_ms)
        state.blinks_in_window = self.blink_detector.blinks_in_window(now_ms)

        if self.calibrator.is_running:
            self.calibrator.add_frame(left.iris_center, right.iris_center)

        if state.last_tick_ms is not None and now_ms - state.last_tick_ms <= self.config.sample_interval_ms:
            return None

        sample = self._tick(left, right, now_ms, width, height)
        with self._sample_lock:
            self._latest_sample = sample
        return sample

    def get_latest_sample(self) -> Optional[GazeSample]:
        """Thread-safe read of the most recent GazeSample"""
        with self._sample_lock:
            return self._latest_sample

    @property
    def tracking_ratio(self) -> float:
        return self.state.tracking_ratio

    def get_status(self) -> dict:
        return {
            'sensor_type':       'eye_tracking',
            'is_calibrated':     self.calibrator.is_calibrated,
            'samples_produced':  self.state.sample_count,
            'total_frames':      self.state.total_frames,
            'valid_frames':      self.state.valid_frames,
            'tracking_ratio':    self.state.tracking_ratio,
            'blink_count':       self.blink_detector.blink_count,
            'blinks_per_minute': self.state.blinks_in_window,
            'blink_state':       self.blink_detector.state,
            'latest_sample':     self.get_latest_sample(),
        }

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _tick(self, left: EyeGeometry, right: EyeGeometry, now_ms: float, width: int, height: int) -> GazeSample:
        state = self.state
        delta_ms = max(1.0, now_ms - state.last_tick_ms) if state.last_tick_ms is not None else 1.0

        left_velocity = gaze_velocity(state.prev_left_center, left.iris_center, delta_ms)
        right_velocity = gaze_velocity(state.prev_right_center, right.iris_center, delta_ms)

        state.prev_left_center = left.iris_center
        state.prev_right_center = right.iris_center
        state.last_tick_ms = now_ms

        cfg = self.config
        category_left = classify_movement(
            left_velocity, left.openness, cfg.blink_threshold, cfg.fixation_velocity_threshold
        )
        category_right = classify_movement(
            right_velocity, right.openness, cfg.blink_threshold, cfg.fixation_velocity_threshold
        )

        gaze_left = to_pixels(self.calibrator.apply('left', left.iris_center), width, height)
        gaze_right = to_pixels(self.calibrator.apply('right', right.iris_center), width, height)

        state.sample_count += 1
        return GazeSample(
            recording_time_ms=now_ms - state.start_ms,
            timestamp=self.clock.isoformat(),
            category_left=category_left,
            category_right=category_right,
            pupil_diameter_left_mm=pupil_diameter_mm(left, width, cfg.average_eye_width_mm),
            pupil_diameter_right_mm=pupil_diameter_mm(right, width, cfg.average_eye_width_mm),
            gaze_left=gaze_left,
            gaze_right=gaze_right,
            tracking_ratio=state.tracking_ratio,
        )

    def __repr__(self):
        return (
            f"<EyeTrackingProcessor(samples={self.state.sample_count}, "
            f"tracking={self.state.tracking_ratio:.1f}%)>"
        )
