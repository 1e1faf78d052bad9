"""
Gaze System
Real-time gaze signal processing, calibration and feature extraction for
eye-movement screening

Modules:
- coordinator: Central clock shared by frame processing and sample timestamps
- sensors.eye_tracking: Geometry, classification, calibration, sampling,
  feature aggregation and serialization
- pipeline: GazePipeline, the per-session owner of all of the above
- db: SQLAlchemy persistence of calibration models and capture results
"""

__version__ = '1.0.0'
