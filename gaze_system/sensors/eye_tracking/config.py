"""
Eye Tracking Configuration
Landmark topology, classifier thresholds, calibration and capture timing
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass
class EyeTrackingConfig:
    """Eye tracking configuration - thresholds match the trained feature set"""

    # MediaPipe FaceMesh landmark indices (refine_landmarks=True topology)
    left_iris_indices: Tuple[int, ...] = (468, 469, 470, 471)
    right_iris_indices: Tuple[int, ...] = (473, 474, 475, 476)

    left_eye_top_indices: Tuple[int, ...] = (159, 160)
    left_eye_bottom_indices: Tuple[int, ...] = (145, 144)
    left_eye_inner: int = 133
    left_eye_outer: int = 33

    right_eye_top_indices: Tuple[int, ...] = (386, 387)
    right_eye_bottom_indices: Tuple[int, ...] = (374, 380)
    right_eye_inner: int = 362
    right_eye_outer: int = 263

    # Blink / movement classification
    blink_threshold: float = 0.18              # openness below this = closed
    blink_open_threshold: float = 0.24         # openness above this = open again
    fixation_velocity_threshold: float = 0.015  # normalised units / second
    blink_window_ms: int = 60_000              # rolling window for blink rate

    # Sampling
    sample_interval_ms: float = 100.0

    # Pupil size estimate
    average_eye_width_mm: float = 30.0

    # Default frame size (640x480 camera preview)
    frame_width: int = 640
    frame_height: int = 480

    # Calibration
    frames_per_calibration_point: int = 45
    degenerate_variance: float = 1e-6

    # Capture session (assessment)
    capture_duration_ms: int = 30_000
    stimulus_duration_ms: int = 10_000
    stimulus_count: int = 3

    # Participant metadata validation
    min_age: float = 2.0
    max_age: float = 18.0

    @property
    def capture_duration_seconds(self) -> float:
        return self.capture_duration_ms / 1000.0

