"""
Geometry extraction tests: iris centre/radius, eyelid distances, openness
"""

from types import SimpleNamespace

import pytest

from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.geometry import (
    Point2D,
    average_landmark,
    compute_openness,
    distance,
    extract_eyes,
    extract_iris,
    get_landmark,
)

from frame_builder import make_landmarks, IRIS_RADIUS, EYE_WIDTH

CONFIG = EyeTrackingConfig()


def test_iris_center_is_mean_of_ring_points():
    landmarks = make_landmarks(left=(0.3, 0.45), right=(0.7, 0.55))
    left, right = extract_eyes(landmarks, 640, 480, CONFIG)

    assert left.iris.center.x == pytest.approx(0.3)
    assert left.iris.center.y == pytest.approx(0.45)
    assert right.iris.center.x == pytest.approx(0.7)
    assert right.iris.center.y == pytest.approx(0.55)
    assert right.iris.pixel_center.x == pytest.approx(0.7 * 640)
    assert right.iris.pixel_center.y == pytest.approx(0.55 * 480)


def test_iris_radius_scaled_to_pixel_space():
    landmarks = make_landmarks()
    iris = extract_iris(landmarks, CONFIG.left_iris_indices, 640, 480)

    # two ring points offset along x (r * 640 px), two along y (r * 480 px)
    assert iris.radius_px == pytest.approx(IRIS_RADIUS * (640 + 480) / 2)


def test_missing_iris_point_gives_no_geometry_for_that_eye():
    landmarks = make_landmarks(drop=(CONFIG.left_iris_indices[2],))
    left, right = extract_eyes(landmarks, 640, 480, CONFIG)

    assert left.iris is None
    assert left.iris_center is None
    assert right.iris is not None
    # eyelid distances do not depend on the iris
    assert left.horizontal_distance == pytest.approx(EYE_WIDTH)


def test_eyelid_distances_and_openness():
    landmarks = make_landmarks(openness=0.3)
    left, right = extract_eyes(landmarks, 640, 480, CONFIG)

    assert left.horizontal_distance == pytest.approx(EYE_WIDTH)
    assert left.vertical_distance == pytest.approx(0.3 * EYE_WIDTH)
    assert left.openness == pytest.approx(0.3)
    assert right.openness == pytest.approx(0.3)


def test_missing_corner_gives_zero_openness():
    landmarks = make_landmarks(drop=(CONFIG.right_eye_inner,))
    _, right = extract_eyes(landmarks, 640, 480, CONFIG)

    assert right.horizontal_distance == 0.0
    assert right.openness == 0.0


def test_openness_is_clamped():
    assert compute_openness(0.2, 0.1) == 1.0
    assert compute_openness(0.05, 0.1) == pytest.approx(0.5)
    assert compute_openness(0.05, 0.0) == 0.0


def test_accepts_attribute_and_list_landmarks():
    as_objects = {7: SimpleNamespace(x=0.25, y=0.75, z=0.0)}
    as_list = [None] * 7 + [(0.25, 0.75, 0.0)]

    assert get_landmark(as_objects, 7) == Point2D(0.25, 0.75)
    assert get_landmark(as_list, 7) == Point2D(0.25, 0.75)
    assert get_landmark(as_list, 99) is None
    assert get_landmark(as_objects, 3) is None
    assert get_landmark(None, 0) is None


def test_average_landmark_uses_present_points_only():
    landmarks = {1: (0.2, 0.2), 2: (0.4, 0.6)}
    assert average_landmark(landmarks, [1, 2, 3]) == Point2D(pytest.approx(0.3), pytest.approx(0.4))
    assert average_landmark(landmarks, [5, 6]) is None


def test_distance_with_missing_point_is_zero():
    assert distance(Point2D(0, 0), None) == 0.0
    assert distance(Point2D(0, 0), Point2D(3, 4)) == pytest.approx(5.0)
