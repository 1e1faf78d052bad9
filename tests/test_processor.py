"""
EyeTrackingProcessor tests: tick gating, tracking ratio, per-sample
measurements and the calibration feed
"""

import pytest

from gaze_system.sensors.eye_tracking.calibrator import CalibrationModel, EyeTrackingCalibrator
from gaze_system.sensors.eye_tracking.classifier import BLINK, FIXATION, SACCADE
from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.geometry import EyeGeometry, IrisGeometry, Point2D
from gaze_system.sensors.eye_tracking.processor import (
    EyeTrackingProcessor,
    TrackingState,
    pupil_diameter_mm,
    to_pixels,
)

from frame_builder import make_landmarks


@pytest.fixture
def processor():
    p = EyeTrackingProcessor(config=EyeTrackingConfig())
    p.start(now_ms=0)
    return p


# ---------------------------------------------------------------------------
# Sampling cadence
# ---------------------------------------------------------------------------

def test_sample_emitted_only_after_interval(processor):
    landmarks = make_landmarks()
    emitted = [t for t in (0, 33, 66, 100, 133, 166, 233, 234)
               if processor.process_frame(landmarks, t) is not None]

    # 100 - 0 is not strictly greater than the 100 ms interval
    assert emitted == [0, 133, 234]
    assert processor.state.sample_count == 3
    assert processor.state.total_frames == 8


def test_recording_time_relative_to_start():
    p = EyeTrackingProcessor(config=EyeTrackingConfig())
    p.start(now_ms=5000)
    p.process_frame(make_landmarks(), 5000)
    sample = p.process_frame(make_landmarks(), 5150)
    assert sample.recording_time_ms == pytest.approx(150)


def test_latest_sample_snapshot(processor):
    assert processor.get_latest_sample() is None
    first = processor.process_frame(make_landmarks(), 0)
    processor.process_frame(make_landmarks(), 50)
    assert processor.get_latest_sample() is first
    assert processor.get_status()['latest_sample'] is first


# ---------------------------------------------------------------------------
# Tracking ratio
# ---------------------------------------------------------------------------

def test_missing_landmarks_count_toward_total_only(processor):
    assert processor.process_frame(None, 0) is None
    assert processor.process_frame([], 10) is None
    processor.process_frame(make_landmarks(), 20)
    assert processor.state.total_frames == 3
    assert processor.state.valid_frames == 1
    assert processor.tracking_ratio == pytest.approx(33.33)


def test_frame_with_one_iris_missing_is_not_valid(processor):
    cfg = processor.config
    processor.process_frame(make_landmarks(drop=cfg.right_iris_indices[:1]), 0)
    processor.process_frame(make_landmarks(), 200)
    assert processor.tracking_ratio == pytest.approx(50.0)


def test_tracking_ratio_bounds_and_monotonic_in_valid_frames():
    total = 8
    ratios = []
    for valid in range(total + 1):
        state = TrackingState(total_frames=total, valid_frames=valid)
        assert 0.0 <= state.tracking_ratio <= 100.0
        ratios.append(state.tracking_ratio)
    assert ratios == sorted(ratios)
    assert ratios[0] == 0.0
    assert ratios[-1] == 100.0
    assert TrackingState().tracking_ratio == 0.0


def test_sample_carries_tracking_ratio(processor):
    processor.process_frame(None, 0)
    sample = processor.process_frame(make_landmarks(), 10)
    assert sample.tracking_ratio == pytest.approx(50.0)


# ---------------------------------------------------------------------------
# Per-sample measurements
# ---------------------------------------------------------------------------

def test_pupil_diameter_from_eye_width(processor):
    sample = processor.process_frame(make_landmarks(), 0)
    # iris radius 5.6 px, eye width 0.1 * 640 = 64 px mapped to 30 mm
    assert sample.pupil_diameter_left_mm == pytest.approx(5.25)
    assert sample.pupil_diameter_right_mm == pytest.approx(5.25)


def test_pupil_diameter_unavailable():
    no_iris = EyeGeometry(iris=None, horizontal_distance=0.1, vertical_distance=0.05)
    no_width = EyeGeometry(
        iris=IrisGeometry(Point2D(0.5, 0.5), 5.0, Point2D(320, 240)),
        horizontal_distance=0.0,
        vertical_distance=0.0,
    )
    assert pupil_diameter_mm(no_iris, 640) == 0.0
    assert pupil_diameter_mm(no_width, 640) == 0.0


def test_gaze_in_pixels_through_identity_calibration(processor):
    sample = processor.process_frame(make_landmarks(left=(0.5, 0.5), right=(0.25, 0.75)), 0)
    assert sample.gaze_left == Point2D(320, 240)
    assert sample.gaze_right == Point2D(160, 360)


def test_gaze_uses_calibration_models():
    calibrator = EyeTrackingCalibrator()
    calibrator.restore({
        'left': CalibrationModel(scale_x=2.0, offset_x=-0.5, scale_y=1.0, offset_y=0.1),
        'right': CalibrationModel.identity(),
    })
    p = EyeTrackingProcessor(calibrator=calibrator, config=EyeTrackingConfig())
    p.start(now_ms=0)
    sample = p.process_frame(make_landmarks(left=(0.5, 0.5)), 0)
    assert sample.gaze_left == Point2D(320, 288)


def test_missing_iris_maps_to_origin(processor):
    cfg = processor.config
    sample = processor.process_frame(make_landmarks(drop=cfg.left_iris_indices), 0)
    assert sample.gaze_left == Point2D(0, 0)
    assert sample.pupil_diameter_left_mm == 0.0


def test_to_pixels_rounds_half_up():
    assert to_pixels(Point2D(0.5, 0.5), 640, 480) == Point2D(320, 240)
    assert to_pixels(Point2D(0.00048828125, 0.0), 1024, 768) == Point2D(1, 0)
    assert to_pixels(None, 640, 480) == Point2D(0, 0)


def test_categories_follow_velocity_and_openness(processor):
    first = processor.process_frame(make_landmarks(), 0)
    assert (first.category_left, first.category_right) == (FIXATION, FIXATION)

    # left iris moves 0.01 in 200 ms -> 0.05 units/s; right stays put
    moved = processor.process_frame(make_landmarks(left=(0.41, 0.5)), 200)
    assert moved.category_left == SACCADE
    assert moved.category_right == FIXATION

    closed = processor.process_frame(make_landmarks(left=(0.41, 0.5), openness=0.1), 400)
    assert (closed.category_left, closed.category_right) == (BLINK, BLINK)


def test_blinks_tracked_on_every_frame(processor):
    processor.process_frame(make_landmarks(openness=0.05), 0)
    processor.process_frame(make_landmarks(openness=0.9), 20)
    processor.process_frame(make_landmarks(openness=0.05), 40)
    assert processor.blink_detector.blink_count == 2
    assert processor.get_status()['blinks_per_minute'] == 2


def test_blink_scenario_at_sampling_cadence(processor):
    for i in range(10):
        openness = 0.05 if i % 2 == 0 else 0.9
        processor.process_frame(make_landmarks(openness=openness), i * 101)
    assert processor.blink_detector.blink_count == 5
    assert processor.state.sample_count == 10


# ---------------------------------------------------------------------------
# Calibration feed
# ---------------------------------------------------------------------------

def test_every_frame_feeds_running_calibration():
    config = EyeTrackingConfig(frames_per_calibration_point=4)
    calibrator = EyeTrackingCalibrator(config)
    p = EyeTrackingProcessor(calibrator=calibrator, config=config)
    p.start(now_ms=0)
    calibrator.start()

    for t in (0, 10, 20):
        p.process_frame(make_landmarks(), t)
    assert calibrator.get_progress()['frames_collected'] == 3

    p.process_frame(make_landmarks(), 30)
    assert calibrator.get_progress()['current_index'] == 1
    recording = calibrator.recordings[0]
    assert recording.left.x == pytest.approx(0.4)
    assert recording.right.x == pytest.approx(0.6)
