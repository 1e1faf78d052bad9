# Gaze System - DB package
# SQLAlchemy models and connection helper for persisted calibration and
# capture results.
#
# Modules:
#   connection  - get_db_connection(url) -> (engine, session)
#   models      - CalibrationEyeTracking, CaptureFeatures
#   db_access   - GazeDB: calibration and capture result storage

from .connection import get_db_connection
from .models import Base, CalibrationEyeTracking, CaptureFeatures
from .db_access import GazeDB

__all__ = [
    'get_db_connection',
    'Base',
    'CalibrationEyeTracking',
    'CaptureFeatures',
    'GazeDB',
]
