"""
Blink detector and movement classification tests
"""

import pytest

from gaze_system.sensors.eye_tracking.classifier import (
    BLINK,
    FIXATION,
    SACCADE,
    STATE_CLOSED,
    STATE_OPEN,
    BlinkDetector,
    classify_movement,
    gaze_velocity,
)
from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.geometry import Point2D


# ---------------------------------------------------------------------------
# classify_movement
# ---------------------------------------------------------------------------

def test_closed_eye_is_blink_regardless_of_velocity():
    assert classify_movement(0.0, 0.1) == BLINK
    assert classify_movement(5.0, 0.179) == BLINK


def test_slow_open_eye_is_fixation():
    assert classify_movement(0.0, 0.5) == FIXATION
    assert classify_movement(0.0149, 0.18) == FIXATION


def test_fast_open_eye_is_saccade():
    assert classify_movement(0.015, 0.5) == SACCADE
    assert classify_movement(1.0, 0.9) == SACCADE


def test_custom_thresholds():
    assert classify_movement(0.05, 0.3, blink_threshold=0.35) == BLINK
    assert classify_movement(0.05, 0.5, fixation_threshold=0.1) == FIXATION


# ---------------------------------------------------------------------------
# gaze_velocity
# ---------------------------------------------------------------------------

def test_velocity_per_second():
    v = gaze_velocity(Point2D(0.5, 0.5), Point2D(0.53, 0.54), 100)
    assert v == pytest.approx(0.05 / 100 * 1000)


def test_velocity_missing_center_is_zero():
    assert gaze_velocity(None, Point2D(0.5, 0.5), 100) == 0.0
    assert gaze_velocity(Point2D(0.5, 0.5), None, 100) == 0.0


def test_velocity_delta_floor_of_one_ms():
    v = gaze_velocity(Point2D(0.0, 0.0), Point2D(0.001, 0.0), 0)
    assert v == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# BlinkDetector
# ---------------------------------------------------------------------------

def test_alternating_openness_counts_each_closure_once():
    detector = BlinkDetector(EyeTrackingConfig())
    for i in range(10):
        openness = 0.05 if i % 2 == 0 else 0.9
        detector.update(openness, i * 100)

    assert detector.blink_count == 5
    assert detector.state == STATE_OPEN


def test_sustained_closure_is_one_blink():
    detector = BlinkDetector()
    started = [detector.update(0.05, t) for t in range(0, 1000, 100)]

    assert detector.blink_count == 1
    assert started.count(True) == 1
    assert started[0] is True
    assert detector.state == STATE_CLOSED


def test_hysteresis_band_does_not_reopen():
    detector = BlinkDetector()
    detector.update(0.1, 0)       # close
    detector.update(0.2, 100)     # above blink, below reopen: still closed
    detector.update(0.1, 200)     # no new blink
    assert detector.blink_count == 1
    assert detector.state == STATE_CLOSED

    detector.update(0.3, 300)     # reopen
    detector.update(0.1, 400)     # second blink
    assert detector.blink_count == 2


def test_openness_between_thresholds_never_blinks():
    detector = BlinkDetector()
    for t in range(0, 2000, 100):
        detector.update(0.2, t)
    assert detector.blink_count == 0
    assert detector.state == STATE_OPEN


def test_blinks_in_window_expire():
    detector = BlinkDetector(EyeTrackingConfig(blink_window_ms=1000))
    detector.update(0.05, 0)
    detector.update(0.9, 100)
    detector.update(0.05, 500)
    detector.update(0.9, 600)

    assert detector.blinks_in_window(600) == 2
    assert detector.blinks_in_window(1200) == 1
    assert detector.blinks_in_window(2000) == 0
    # the session total is unaffected by the window
    assert detector.blink_count == 2


def test_reset():
    detector = BlinkDetector()
    detector.update(0.05, 0)
    detector.reset()
    assert detector.blink_count == 0
    assert detector.state == STATE_OPEN
    assert detector.blinks_in_window(0) == 0
