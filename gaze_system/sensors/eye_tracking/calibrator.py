"""
Eye Tracking Calibrator
5-point per-axis affine calibration of raw iris position to screen position.
Frames are fed by the pipeline; the fitted models are saved to the DB so
they survive across capture sessions.
"""

import logging
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.linear_model import LinearRegression
from sqlalchemy.exc import SQLAlchemyError

from .config import EyeTrackingConfig
from .geometry import Point2D

logger = logging.getLogger(__name__)

# Calibration run states
STATUS_IDLE     = 'idle'
STATUS_RUNNING  = 'running'
STATUS_COMPLETE = 'complete'

EYES = ('left', 'right')


@dataclass(frozen=True)
class CalibrationPoint:
    target_x: float
    target_y: float
    label: str


# Centre first, then the four corners (normalised 0-1 screen coords)
CALIBRATION_POINTS: Tuple[CalibrationPoint, ...] = (
    CalibrationPoint(0.5, 0.5, 'center'),
    CalibrationPoint(0.2, 0.2, 'top-left'),
    CalibrationPoint(0.8, 0.2, 'top-right'),
    CalibrationPoint(0.2, 0.8, 'bottom-left'),
    CalibrationPoint(0.8, 0.8, 'bottom-right'),
)


@dataclass(frozen=True)
class CalibrationModel:
    """Independent affine mapping per axis: corrected = scale * raw + offset"""
    scale_x: float = 1.0
    offset_x: float = 0.0
    scale_y: float = 1.0
    offset_y: float = 0.0

    @classmethod
    def identity(cls) -> 'CalibrationModel':
        return cls()

    @property
    def is_identity(self) -> bool:
        return (self.scale_x, self.offset_x, self.scale_y, self.offset_y) == (1.0, 0.0, 1.0, 0.0)

    def apply(self, point: Optional[Point2D]) -> Optional[Point2D]:
        return apply_calibration(self, point)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'CalibrationModel':
        return cls(
            scale_x=float(data['scale_x']),
            offset_x=float(data['offset_x']),
            scale_y=float(data['scale_y']),
            offset_y=float(data['offset_y']),
        )


@dataclass(frozen=True)
class CalibrationRecording:
    """Mean measured iris position for one target, per eye"""
    target: CalibrationPoint
    left: Optional[Point2D]
    right: Optional[Point2D]


def fit_axis_mapping(
        measured: Sequence[float],
        target: Sequence[float],
        degenerate_variance: float = 1e-6
) -> Tuple[float, float]:
    """
    1-D least squares fit of target = scale * measured + offset.

    Args:
        measured: Measured values on one axis
        target: Target values on the same axis
        degenerate_variance: Below this sum of squared deviations the
                             measured points are treated as identical

    Returns:
        (scale, offset). Degenerate input gives a pure translation
        (scale 1, offset = mean(target) - mean(measured)).
    """
    m = np.asarray(measured, dtype=float)
    t = np.asarray(target, dtype=float)

    if m.size == 0:
        return 1.0, 0.0

    spread = float(np.sum((m - m.mean()) ** 2))
    if spread < degenerate_variance:
        logger.warning(
            f"Degenerate calibration axis (variance={spread:.2e}) — "
            f"falling back to translation only"
        )
        return 1.0, float(t.mean() - m.mean())

    reg = LinearRegression()
    reg.fit(m.reshape(-1, 1), t)
    return float(reg.coef_[0]), float(reg.intercept_)


def fit_calibration_model(
        pairs: Sequence[Tuple[Point2D, Point2D]],
        degenerate_variance: float = 1e-6
) -> CalibrationModel:
    """
    Fit both axes of one eye.

    Args:
        pairs: (measured, target) point pairs
        degenerate_variance: Passed through to fit_axis_mapping

    Returns:
        Fitted CalibrationModel, or identity if there are no pairs
    """
    if not pairs:
        return CalibrationModel.identity()

    measured = np.asarray([p[0] for p in pairs], dtype=float)
    target = np.asarray([p[1] for p in pairs], dtype=float)

    scale_x, offset_x = fit_axis_mapping(measured[:, 0], target[:, 0], degenerate_variance)
    scale_y, offset_y = fit_axis_mapping(measured[:, 1], target[:, 1], degenerate_variance)
    return CalibrationModel(scale_x=scale_x, offset_x=offset_x, scale_y=scale_y, offset_y=offset_y)


def apply_calibration(model: Optional[CalibrationModel], point: Optional[Point2D]) -> Optional[Point2D]:
    """Map a raw normalised iris centre through the model, clamped to [0, 1]"""
    if point is None:
        return None
    if model is None:
        return point
    return Point2D(
        float(np.clip(model.scale_x * point.x + model.offset_x, 0.0, 1.0)),
        float(np.clip(model.scale_y * point.y + model.offset_y, 0.0, 1.0)),
    )


class CalibrationSignal:
    """
    One-shot completion value carrying both eyes' fitted models.

    Set by the calibrator when a run completes, cleared on reset.
    Readers may poll is_set(), block on wait(), or register a listener.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._result: Optional[Dict[str, CalibrationModel]] = None
        self._listeners: List[Callable[[Dict[str, CalibrationModel]], None]] = []

    @property
    def result(self) -> Optional[Dict[str, CalibrationModel]]:
        with self._lock:
            return dict(self._result) if self._result else None

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[Dict[str, CalibrationModel]]:
        if self._event.wait(timeout):
            return self.result
        return None

    def add_listener(self, callback: Callable[[Dict[str, CalibrationModel]], None]):
        self._listeners.append(callback)

    def fire(self, models: Dict[str, CalibrationModel]):
        with self._lock:
            self._result = dict(models)
        self._event.set()
        for callback in list(self._listeners):
            try:
                callback(dict(models))
            except Exception as e:
                logger.error(f"Calibration listener failed: {e}", exc_info=True)

    def clear(self):
        with self._lock:
            self._result = None
        self._event.clear()

    def __repr__(self):
        return f"<CalibrationSignal(set={self.is_set()})>"


class EyeTrackingCalibrator:
    """
    5-point calibration state machine: idle -> running -> complete.

    While running, each accepted frame adds both eyes' raw iris centres to
    the current point's buffer. A full buffer is averaged into one
    recording and the next target is shown. After the last target both
    eyes are fitted and the completion signal fires.
    """

    def __init__(
            self,
            config: Optional[EyeTrackingConfig] = None,
            points: Sequence[CalibrationPoint] = CALIBRATION_POINTS
    ):
        self.config = config or EyeTrackingConfig()
        self.points = tuple(points)

        self.status = STATUS_IDLE
        self.point_index = 0
        self.recordings: List[CalibrationRecording] = []
        self._samples_for_point: List[Tuple[Point2D, Point2D]] = []
        # True only while the active models came from this calibrator's own run
        self.fitted_from_run = False

        self.models: Dict[str, CalibrationModel] = {eye: CalibrationModel.identity() for eye in EYES}
        self.signal = CalibrationSignal()

        self._progress_lock = threading.Lock()
        self._progress = self._snapshot()

        logger.info(f"EyeTrackingCalibrator initialised ({len(self.points)} points)")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_calibrated(self) -> bool:
        return self.signal.is_set()

    @property
    def is_running(self) -> bool:
        return self.status == STATUS_RUNNING

    @property
    def current_target(self) -> Optional[CalibrationPoint]:
        if self.status != STATUS_RUNNING or self.point_index >= len(self.points):
            return None
        return self.points[self.point_index]

    def start(self):
        """Begin a new run. The current models stay active until the new fit completes."""
        self.status = STATUS_RUNNING
        self.point_index = 0
        self.recordings = []
        self._samples_for_point = []
        self._publish()
        logger.info(f"Calibration started — look at '{self.points[0].label}'")

    def add_frame(self, left: Optional[Point2D], right: Optional[Point2D]) -> str:
        """
        Feed one frame's raw iris centres.

        Frames missing either eye are ignored. Returns the calibrator status
        after the frame.
        """
        if self.status != STATUS_RUNNING:
            return self.status
        if left is None or right is None:
            return self.status

        self._samples_for_point.append((left, right))
        if len(self._samples_for_point) >= self.config.frames_per_calibration_point:
            self._record_point()
        self._publish()
        return self.status

    def cancel(self):
        """Abort an in-progress run, keeping whatever models were active before it"""
        if self.status != STATUS_RUNNING:
            return
        self.recordings = []
        self._samples_for_point = []
        self.point_index = 0
        self.status = STATUS_COMPLETE if self.signal.is_set() else STATUS_IDLE
        self._publish()
        logger.info("Calibration cancelled — previous models kept")

    def reset(self):
        """Return to idle with identity models"""
        self.status = STATUS_IDLE
        self.point_index = 0
        self.recordings = []
        self._samples_for_point = []
        self.fitted_from_run = False
        self.models = {eye: CalibrationModel.identity() for eye in EYES}
        self.signal.clear()
        self._publish()
        logger.info("Calibration reset to identity")

    def restore(self, models: Dict[str, CalibrationModel]):
        """
        Install previously fitted models (e.g. loaded from the database).
        Recordings from an earlier run are dropped; they do not belong to these models.
        """
        self.models = {eye: models.get(eye, CalibrationModel.identity()) for eye in EYES}
        self.status = STATUS_COMPLETE
        self.point_index = len(self.points)
        self.recordings = []
        self.fitted_from_run = False
        self._samples_for_point = []
        self._publish()
        self.signal.fire(self.models)
        logger.info("✓ Calibration restored from saved models")

    def apply(self, eye: str, point: Optional[Point2D]) -> Optional[Point2D]:
        return apply_calibration(self.models[eye], point)

    def get_progress(self) -> dict:
        """Read-only progress snapshot, safe to call from a UI thread"""
        with self._progress_lock:
            return dict(self._progress)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_to_database(
            self,
            db_session,
            session_id,
            models: Optional[Dict[str, CalibrationModel]] = None,
            recordings: Optional[Sequence[CalibrationRecording]] = None,
    ) -> bool:
        """
        Save both eyes' models and the recorded point pairs.
        Replaces any existing rows for the session.

        Args:
            db_session: SQLAlchemy session
            session_id: Tracking session identifier
            models: Models to store instead of the active ones
            recordings: The point pairs those models were fitted to.
                        Defaults to the current run's recordings.
        """
        if models is None:
            if not self.is_calibrated:
                logger.error("Cannot save — calibration not complete")
                return False
            models = self.models
        if recordings is None:
            recordings = self.recordings

        from gaze_system.db.models import CalibrationEyeTracking

        try:
            db_session.query(CalibrationEyeTracking).filter(
                CalibrationEyeTracking.session_id == str(session_id)
            ).delete()

            timestamp = datetime.now(timezone.utc)
            for eye in EYES:
                model = models[eye]
                measured = [
                    list(getattr(r, eye)) for r in recordings if getattr(r, eye) is not None
                ]
                targets = [
                    [r.target.target_x, r.target.target_y]
                    for r in recordings if getattr(r, eye) is not None
                ]
                db_session.add(CalibrationEyeTracking(
                    session_id=str(session_id),
                    eye=eye,
                    timestamp=timestamp,
                    scale_x=model.scale_x,
                    offset_x=model.offset_x,
                    scale_y=model.scale_y,
                    offset_y=model.offset_y,
                    calib_measured=measured,
                    calib_targets=targets,
                ))
            db_session.commit()
            logger.info(f"✓ Calibration saved for session {session_id}")
            return True

        except SQLAlchemyError as e:
            logger.error(f"Error saving calibration: {e}", exc_info=True)
            db_session.rollback()
            return False

    @staticmethod
    def load_from_database(db_session, session_id) -> Optional[Dict[str, CalibrationModel]]:
        """Load both eyes' models for a session, or None if none were saved"""
        from gaze_system.db.models import CalibrationEyeTracking

        try:
            records = db_session.query(CalibrationEyeTracking).filter(
                CalibrationEyeTracking.session_id == str(session_id)
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Error loading calibration: {e}", exc_info=True)
            return None

        if not records:
            return None

        models = {eye: CalibrationModel.identity() for eye in EYES}
        for record in records:
            models[record.eye] = CalibrationModel(
                scale_x=record.scale_x,
                offset_x=record.offset_x,
                scale_y=record.scale_y,
                offset_y=record.offset_y,
            )
        return models

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _record_point(self):
        target = self.points[self.point_index]
        samples = np.asarray(self._samples_for_point, dtype=float)  # (n, 2 eyes, 2 axes)
        mean_left, mean_right = samples.mean(axis=0)

        self.recordings.append(CalibrationRecording(
            target=target,
            left=Point2D(float(mean_left[0]), float(mean_left[1])),
            right=Point2D(float(mean_right[0]), float(mean_right[1])),
        ))
        self._samples_for_point = []
        self.point_index += 1
        logger.info(f"  ✓ Point {self.point_index}/{len(self.points)} captured ({target.label})")

        if self.point_index >= len(self.points):
            self._fit()

    def _fit(self):
        models = {}
        for eye in EYES:
            pairs = [
                (getattr(r, eye), Point2D(r.target.target_x, r.target.target_y))
                for r in self.recordings if getattr(r, eye) is not None
            ]
            models[eye] = fit_calibration_model(pairs, self.config.degenerate_variance)

        self.models = models
        self.status = STATUS_COMPLETE
        self.fitted_from_run = True
        logger.info(
            f"✓ Calibration complete — left {self.models['left']}, right {self.models['right']}"
        )
        self.signal.fire(self.models)

    def _snapshot(self) -> dict:
        target = self.current_target
        return {
            'status': self.status,
            'current_index': self.point_index,
            'total_points': len(self.points),
            'target_label': target.label if target else None,
            'frames_collected': len(self._samples_for_point),
            'frames_required': self.config.frames_per_calibration_point,
        }

    def _publish(self):
        snapshot = self._snapshot()
        with self._progress_lock:
            self._progress = snapshot

    def __repr__(self):
        status = "calibrated" if self.is_calibrated else "not calibrated"
        return f"<EyeTrackingCalibrator({self.status}, {status})>"
