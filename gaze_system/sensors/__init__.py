"""
Gaze System Sensors

Available Sensors:
- Eye Tracking: MediaPipe FaceMesh landmarks (~30 Hz), sampled at 10 Hz

Supports:
- Calibration with a one-shot completion signal
- Timed capture sessions with post-capture feature aggregation
"""

from .eye_tracking import EyeTrackingProcessor, EyeTrackingCalibrator, EyeTrackingConfig

__all__ = [
    'EyeTrackingProcessor',
    'EyeTrackingCalibrator',
    'EyeTrackingConfig',
]

__version__ = '1.0.0'
