"""
Gaze System - Tracking Pipeline
===============================
Owns one tracking session: per-frame processing, the calibration run and
the timed capture (assessment) that produces the feature record.

Usage:
    pipeline = GazePipeline(config=EyeTrackingConfig())
    pipeline.start()
    pipeline.start_calibration()
    for landmarks in frames:                 # frame callback
        pipeline.process_frame(landmarks)
    pipeline.start_capture(age=7, gender='M')
    for landmarks in frames:
        pipeline.process_frame(landmarks)    # capture finalises itself after 30 s
    result = pipeline.last_capture_result
    pipeline.stop()                          # writes queued rows when a db_session is set

Threading:
    process_frame() and the start/cancel/finalize calls are the only writers
    and must come from the frame thread. UI countdown loops may call
    get_status() / get_latest_sample() from any thread; both return
    snapshots and never touch tracking state.

Persistence:
    Nothing is written to the database inside the frame callback. A
    completed calibration run and each finished capture are queued, and
    persist() writes the queue from the owning thread. stop() persists too.

Failure policy:
    Missing landmarks skip the frame, degenerate calibration input falls
    back to a translation-only fit, and a capture that ends with no samples
    yields a CaptureResult carrying an error instead of a feature record.
"""

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from gaze_system.coordinator.clock import CentralClock
from gaze_system.sensors.eye_tracking.calibrator import EyeTrackingCalibrator
from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.features import aggregate_features
from gaze_system.sensors.eye_tracking.processor import EyeTrackingProcessor, GazeSample
from gaze_system.sensors.eye_tracking.serializer import serialize_record

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Capture states
# ---------------------------------------------------------------------------
CAPTURE_IDLE      = 'idle'
CAPTURE_RUNNING   = 'running'
CAPTURE_COMPLETE  = 'complete'
CAPTURE_CANCELLED = 'cancelled'

ERROR_NO_SAMPLES = 'Insufficient session data: capture finished with no gaze samples.'


@dataclass
class CaptureSession:
    """Sample buffer and participant metadata of one timed capture"""
    age: float
    gender: str
    start_ms: float
    started_at: datetime
    samples: List[GazeSample] = field(default_factory=list)


@dataclass(frozen=True)
class CaptureResult:
    started_at: datetime
    sample_count: int
    features: Optional[dict] = None
    record: Optional[str] = None
    samples: tuple = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class GazePipeline:
    """
    Single tracking session.

    Responsibilities:
      - Route each frame through the EyeTrackingProcessor
      - Run calibration and expose its completion signal
      - Buffer samples of the active capture and finalise it on time
      - Optionally persist calibration models and capture results
      - Publish read-only status snapshots for the UI
    """

    def __init__(
            self,
            config: Optional[EyeTrackingConfig] = None,
            clock: Optional[CentralClock] = None,
            db_session=None,
            session_id=None,
            on_capture_complete: Optional[Callable[[CaptureResult], None]] = None,
    ):
        """
        Args:
            config:              Shared EyeTrackingConfig
            clock:               CentralClock; one is created if omitted
            db_session:          Optional SQLAlchemy session for persistence
            session_id:          Identifier stored with persisted rows
            on_capture_complete: Called with each CaptureResult
        """
        self.config = config or EyeTrackingConfig()
        self.clock = clock or CentralClock()
        self.db_session = db_session
        self.session_id = session_id or uuid.uuid4()
        self.on_capture_complete = on_capture_complete

        self.calibrator = EyeTrackingCalibrator(self.config)
        self.processor = EyeTrackingProcessor(self.calibrator, self.config, self.clock)

        self.capture_status = CAPTURE_IDLE
        self._capture: Optional[CaptureSession] = None
        self.last_capture_result: Optional[CaptureResult] = None

        # written by persist(), never from inside process_frame()
        self._pending_calibration: Optional[Tuple[dict, tuple]] = None
        self._pending_results: List[CaptureResult] = []

        self._status_lock = threading.Lock()
        self._status = {}

        if self.db_session is not None:
            self.calibrator.signal.add_listener(self._queue_calibration)

        self._publish()
        logger.info(f"GazePipeline created for session {self.session_id}")

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def start(self, now_ms: Optional[float] = None):
        """Begin tracking. Restores a saved calibration for the session if one exists."""
        now_ms = self._now(now_ms)
        self.processor.start(now_ms)

        if self.db_session is not None and not self.calibrator.is_calibrated:
            models = EyeTrackingCalibrator.load_from_database(self.db_session, self.session_id)
            if models:
                self.calibrator.restore(models)

        self._publish(now_ms)
        logger.info("✓ Gaze pipeline started")

    def stop(self):
        """Stop tracking, discarding any unfinished capture, and persist queued rows"""
        if self.capture_status == CAPTURE_RUNNING:
            self.cancel_capture()
        if self.calibrator.is_running:
            self.calibrator.cancel()
        self._publish()
        self.persist()
        logger.info(f"✓ Gaze pipeline stopped — {self.processor.state.sample_count} samples produced")

    # -----------------------------------------------------------------------
    # Frame processing
    # -----------------------------------------------------------------------

    def process_frame(
            self,
            landmarks,
            now_ms: Optional[float] = None,
            frame_width: Optional[int] = None,
            frame_height: Optional[int] = None,
    ) -> Optional[GazeSample]:
        """
        Process one frame. Returns the GazeSample produced on this frame, if any.
        """
        now_ms = self._now(now_ms)
        sample = self.processor.process_frame(landmarks, now_ms, frame_width, frame_height)

        capture = self._capture
        if capture is not None and self.capture_status == CAPTURE_RUNNING:
            elapsed = now_ms - capture.start_ms
            if sample is not None:
                capture.samples.append(replace(
                    sample,
                    recording_time_ms=round(min(self.config.capture_duration_ms, elapsed), 2),
                ))
            if elapsed >= self.config.capture_duration_ms:
                self.finalize_capture(now_ms)

        self._publish(now_ms)
        return sample

    def get_latest_sample(self) -> Optional[GazeSample]:
        return self.processor.get_latest_sample()

    # -----------------------------------------------------------------------
    # Calibration
    # -----------------------------------------------------------------------

    def start_calibration(self):
        if self.capture_status == CAPTURE_RUNNING:
            raise RuntimeError("Cannot calibrate while a capture is running")
        self.calibrator.start()
        self._publish()

    def cancel_calibration(self):
        self.calibrator.cancel()
        self._publish()

    def reset_calibration(self):
        self.calibrator.reset()
        self._publish()

    @property
    def calibration_signal(self):
        return self.calibrator.signal

    # -----------------------------------------------------------------------
    # Capture
    # -----------------------------------------------------------------------

    def start_capture(self, age, gender: str, now_ms: Optional[float] = None):
        """
        Begin a timed capture.

        Raises:
            RuntimeError if calibration has not completed, is running, or a
            capture is already in progress.
            ValueError if age or gender are missing or age is out of range.
        """
        if self.capture_status == CAPTURE_RUNNING:
            raise RuntimeError("A capture is already running")
        if self.calibrator.is_running:
            raise RuntimeError("Wait for calibration to finish before starting a capture")
        if not self.calibrator.is_calibrated:
            raise RuntimeError("Calibrate before starting a capture")

        age_value, gender = self._validate_participant(age, gender)

        now_ms = self._now(now_ms)
        self._capture = CaptureSession(
            age=age_value,
            gender=gender,
            start_ms=now_ms,
            started_at=self.clock.now(),
        )
        self.capture_status = CAPTURE_RUNNING
        self._publish(now_ms)
        logger.info(
            f"✓ Capture started ({self.config.capture_duration_seconds:.0f} s, "
            f"age={age_value:g}, gender={gender})"
        )

    def cancel_capture(self):
        """Discard the in-progress capture buffer"""
        if self.capture_status != CAPTURE_RUNNING:
            return
        discarded = len(self._capture.samples) if self._capture else 0
        self._capture = None
        self.capture_status = CAPTURE_CANCELLED
        self._publish()
        logger.info(f"Capture cancelled — {discarded} samples discarded")

    def finalize_capture(self, now_ms: Optional[float] = None) -> CaptureResult:
        """
        End the running capture and aggregate its samples.

        A capture with no samples yields a CaptureResult with error set and
        no feature record.
        """
        if self.capture_status != CAPTURE_RUNNING or self._capture is None:
            raise RuntimeError("No capture is running")

        capture = self._capture
        self._capture = None
        self.capture_status = CAPTURE_COMPLETE
        samples = tuple(capture.samples)

        if not samples:
            logger.warning("✗ Capture finished with no samples — no feature record produced")
            result = CaptureResult(
                started_at=capture.started_at,
                sample_count=0,
                error=ERROR_NO_SAMPLES,
            )
        else:
            features = aggregate_features(samples, capture.age, capture.gender)
            result = CaptureResult(
                started_at=capture.started_at,
                sample_count=len(samples),
                features=features,
                record=serialize_record(features),
                samples=samples,
            )
            logger.info(f"✓ Capture complete — {len(samples)} samples aggregated")

        self.last_capture_result = result
        if self.db_session is not None:
            self._pending_results.append(result)
        self._publish(now_ms)

        if self.on_capture_complete is not None:
            try:
                self.on_capture_complete(result)
            except Exception as e:
                logger.error(f"Capture completion callback failed: {e}", exc_info=True)
        return result

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def persist(self) -> int:
        """
        Write the queued calibration models and capture results.

        Must be called from the owning thread, never from the frame
        callback. A row that fails to save is logged and dropped.

        Returns:
            Number of rows written (a calibration counts once)
        """
        if self.db_session is None:
            return 0

        written = 0
        pending, self._pending_calibration = self._pending_calibration, None
        if pending is not None:
            models, recordings = pending
            if self.calibrator.save_to_database(self.db_session, self.session_id, models, recordings):
                written += 1

        results, self._pending_results = self._pending_results, []
        if results:
            from gaze_system.db.db_access import GazeDB
            db = GazeDB(session=self.db_session)
            written += sum(
                1 for result in results
                if db.save_capture_result(self.session_id, result) is not None
            )

        if pending is not None or results:
            logger.info(f"Persisted {written} queued rows for session {self.session_id}")
        return written

    @property
    def has_pending_writes(self) -> bool:
        return self._pending_calibration is not None or bool(self._pending_results)

    # -----------------------------------------------------------------------
    # Status
    # -----------------------------------------------------------------------

    def get_status(self, now_ms: Optional[float] = None) -> dict:
        """
        Snapshot for UI countdowns. Safe to call from any thread.

        With now_ms the capture countdown and stimulus index are brought up
        to that time; otherwise they reflect the last processed frame.
        """
        with self._status_lock:
            status = dict(self._status)

        start_ms = status.pop('_capture_start_ms', None)
        if now_ms is not None and start_ms is not None:
            status.update(self._countdown(now_ms - start_ms))
        return status

    # -----------------------------------------------------------------------
    # Private
    # -----------------------------------------------------------------------

    def _now(self, now_ms: Optional[float]) -> float:
        return self.clock.monotonic_ms() if now_ms is None else now_ms

    def _validate_participant(self, age, gender) -> Tuple[float, str]:
        if age is None or age == '' or not gender:
            raise ValueError("Age and gender are required before starting a capture")
        try:
            age_value = float(age)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid age: {age!r}")
        if math.isnan(age_value) or not (self.config.min_age <= age_value <= self.config.max_age):
            raise ValueError(
                f"Age must be between {self.config.min_age:g} and {self.config.max_age:g}"
            )
        gender = str(gender).strip()
        if not gender:
            raise ValueError("Age and gender are required before starting a capture")
        if gender.upper() in ('M', 'F'):
            gender = gender.upper()
        return age_value, gender

    def _countdown(self, elapsed_ms: float) -> dict:
        elapsed_ms = max(0.0, elapsed_ms)
        return {
            'capture_time_left_ms': max(0.0, self.config.capture_duration_ms - elapsed_ms),
            'stimulus_index': min(
                self.config.stimulus_count - 1,
                int(elapsed_ms // self.config.stimulus_duration_ms),
            ),
        }

    def _publish(self, now_ms: Optional[float] = None):
        capture = self._capture
        status = {
            'session_id':       str(self.session_id),
            'calibration':      self.calibrator.get_progress(),
            'is_calibrated':    self.calibrator.is_calibrated,
            'capture_status':   self.capture_status,
            'samples_captured': len(capture.samples) if capture else 0,
            'tracking_ratio':   self.processor.tracking_ratio,
            'blink_count':      self.processor.blink_detector.blink_count,
            'latest_sample':    self.processor.get_latest_sample(),
            'capture_time_left_ms': (
                self.config.capture_duration_ms if self.capture_status != CAPTURE_COMPLETE else 0
            ),
            'stimulus_index':   0,
            '_capture_start_ms': capture.start_ms if capture else None,
        }
        if capture is not None and now_ms is not None:
            status.update(self._countdown(now_ms - capture.start_ms))
        with self._status_lock:
            self._status = status

    def _queue_calibration(self, models):
        if not self.calibrator.fitted_from_run:
            # restored models: stored rows stay as they are
            self._pending_calibration = None
            return
        self._pending_calibration = (dict(models), tuple(self.calibrator.recordings))

    def __repr__(self):
        return (
            f"<GazePipeline(session={self.session_id}, capture={self.capture_status}, "
            f"calibrated={self.calibrator.is_calibrated})>"
        )
