"""
Eye Tracking Sensor Module
Landmark-based gaze tracking, blink detection and calibration

Architecture:
- geometry:               Iris centre/radius and eyelid distances per eye
- classifier:             BlinkDetector (hysteresis) and Blink/Fixation/Saccade labels
- EyeTrackingCalibrator:  5-point affine calibration, saves models to DB
- EyeTrackingProcessor:   Per-frame processing, gated GazeSample producer
- features:               Post-capture aggregation into the fixed feature record
- serializer:             Record and raw-sample CSV output
- EyeTrackingConfig:      Configuration parameters

Usage:
    calibrator = EyeTrackingCalibrator(config)
    processor = EyeTrackingProcessor(calibrator, config)
    processor.start(now_ms)
    calibrator.start()
    sample = processor.process_frame(landmarks, now_ms, width, height)
    ...
    features = aggregate_features(samples, age, gender)
    csv_text = serialize_record(features)
"""

from .config import EyeTrackingConfig
from .geometry import Point2D, IrisGeometry, EyeGeometry, extract_eyes
from .classifier import BlinkDetector, classify_movement, BLINK, FIXATION, SACCADE
from .calibrator import (
    CALIBRATION_POINTS,
    CalibrationModel,
    CalibrationPoint,
    CalibrationSignal,
    EyeTrackingCalibrator,
    apply_calibration,
    fit_calibration_model,
)
from .processor import EyeTrackingProcessor, GazeSample
from .features import FEATURE_COLUMNS, RECORD_COLUMNS, aggregate_features, feature_values
from .serializer import serialize_record, write_record_csv, write_samples_csv

__all__ = [
    'EyeTrackingConfig',
    'Point2D',
    'IrisGeometry',
    'EyeGeometry',
    'extract_eyes',
    'BlinkDetector',
    'classify_movement',
    'BLINK',
    'FIXATION',
    'SACCADE',
    'CALIBRATION_POINTS',
    'CalibrationModel',
    'CalibrationPoint',
    'CalibrationSignal',
    'EyeTrackingCalibrator',
    'apply_calibration',
    'fit_calibration_model',
    'EyeTrackingProcessor',
    'GazeSample',
    'FEATURE_COLUMNS',
    'RECORD_COLUMNS',
    'aggregate_features',
    'feature_values',
    'serialize_record',
    'write_record_csv',
    'write_samples_csv',
]

__version__ = '1.0.0'
