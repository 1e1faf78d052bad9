"""
Eye Geometry Extraction
Iris centre/radius and eyelid distances from FaceMesh landmarks
"""

import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence

import numpy as np

from .config import EyeTrackingConfig

logger = logging.getLogger(__name__)


class Point2D(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class IrisGeometry:
    """Iris centre (normalised), radius (pixels) and centre in pixel space"""
    center: Point2D
    radius_px: float
    pixel_center: Point2D


@dataclass(frozen=True)
class EyeGeometry:
    """Per-eye, per-frame geometry. Lives for one frame only."""
    iris: Optional[IrisGeometry]
    horizontal_distance: float
    vertical_distance: float

    @property
    def iris_center(self) -> Optional[Point2D]:
        return self.iris.center if self.iris else None

    @property
    def openness(self) -> float:
        return compute_openness(self.vertical_distance, self.horizontal_distance)


def compute_openness(vertical: float, horizontal: float) -> float:
    """
    Eye openness ratio

    Args:
        vertical: Eyelid top-to-bottom distance (normalised)
        horizontal: Inner-to-outer corner distance (normalised)

    Returns:
        vertical / horizontal clamped to [0, 1], or 0 if horizontal is 0
    """
    if horizontal <= 0:
        return 0.0
    return float(np.clip(vertical / horizontal, 0.0, 1.0))


def get_landmark(landmarks, index: int) -> Optional[Point2D]:
    """
    Fetch one landmark as a 2D point

    Accepts MediaPipe NormalizedLandmark objects (x/y attributes) or plain
    (x, y[, z]) sequences, held in either a list or an {index: point} dict.

    Returns:
        Point2D or None if the index is missing
    """
    if landmarks is None:
        return None
    try:
        point = landmarks[index]
    except (IndexError, KeyError):
        return None
    if point is None:
        return None
    if hasattr(point, 'x') and hasattr(point, 'y'):
        return Point2D(float(point.x), float(point.y))
    return Point2D(float(point[0]), float(point[1]))


def average_landmark(landmarks, indices: Sequence[int]) -> Optional[Point2D]:
    """Mean of whichever of the given landmarks are present"""
    points = [p for p in (get_landmark(landmarks, i) for i in indices) if p is not None]
    if not points:
        return None
    mean = np.mean(np.asarray(points, dtype=float), axis=0)
    return Point2D(float(mean[0]), float(mean[1]))


def distance(a: Optional[Point2D], b: Optional[Point2D]) -> float:
    """Euclidean distance, 0 if either point is missing"""
    if a is None or b is None:
        return 0.0
    return float(np.hypot(a.x - b.x, a.y - b.y))


def extract_iris(
        landmarks,
        iris_indices: Sequence[int],
        width: int,
        height: int
) -> Optional[IrisGeometry]:
    """
    Iris geometry from its ring landmarks

    Args:
        landmarks: Frame landmarks
        iris_indices: The iris ring indices for one eye
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        IrisGeometry, or None unless every iris point is present
    """
    points = [get_landmark(landmarks, i) for i in iris_indices]
    if any(p is None for p in points):
        return None

    pts = np.asarray(points, dtype=float)
    center = pts.mean(axis=0)
    deltas = (pts - center) * np.array([width, height], dtype=float)
    radius = float(np.mean(np.hypot(deltas[:, 0], deltas[:, 1])))

    return IrisGeometry(
        center=Point2D(float(center[0]), float(center[1])),
        radius_px=radius,
        pixel_center=Point2D(float(center[0] * width), float(center[1] * height)),
    )


def extract_eye(
        landmarks,
        iris_indices: Sequence[int],
        top_indices: Sequence[int],
        bottom_indices: Sequence[int],
        inner_idx: int,
        outer_idx: int,
        width: int,
        height: int
) -> EyeGeometry:
    """Iris plus eyelid distances for one eye"""
    iris = extract_iris(landmarks, iris_indices, width, height)
    horizontal = distance(get_landmark(landmarks, inner_idx), get_landmark(landmarks, outer_idx))
    vertical = distance(average_landmark(landmarks, top_indices),
                        average_landmark(landmarks, bottom_indices))
    return EyeGeometry(iris=iris, horizontal_distance=horizontal, vertical_distance=vertical)


def extract_eyes(landmarks, width: int, height: int, config: EyeTrackingConfig):
    """
    Geometry for both eyes of one frame

    Returns:
        (left EyeGeometry, right EyeGeometry)
    """
    left = extract_eye(
        landmarks,
        config.left_iris_indices,
        config.left_eye_top_indices,
        config.left_eye_bottom_indices,
        config.left_eye_inner,
        config.left_eye_outer,
        width, height,
    )
    right = extract_eye(
        landmarks,
        config.right_iris_indices,
        config.right_eye_top_indices,
        config.right_eye_bottom_indices,
        config.right_eye_inner,
        config.right_eye_outer,
        width, height,
    )
    if left.iris is None or right.iris is None:
        logger.debug(
            f"Incomplete iris landmarks (left={left.iris is not None}, "
            f"right={right.iris is not None})"
        )
    return left, right
