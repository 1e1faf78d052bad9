"""
Gaze System - Database Access Layer
Simple interface for storing finished capture results next to the
calibration models written by EyeTrackingCalibrator.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .connection import DEFAULT_DB_URL, get_db_connection
from .models import CaptureFeatures

logger = logging.getLogger(__name__)


class GazeDB:
    """
    Database access layer for the gaze system.

    Usage:
        db = GazeDB('sqlite:///gaze.db')
        db.save_capture_result(session_id, result)
        rows = db.get_capture_results(session_id)
        db.close()
    """

    def __init__(self, url: str = DEFAULT_DB_URL, session=None):
        if session is not None:
            self.engine, self.session = None, session
            return
        try:
            self.engine, self.session = get_db_connection(url)
        except SQLAlchemyError as e:
            logger.error(f"✗ Failed to connect to {url}: {e}")
            raise

    def save_capture_result(self, session_id, result) -> Optional[int]:
        """
        Persist one CaptureResult.

        Args:
            session_id: Tracking session identifier
            result: CaptureResult returned by GazePipeline.finalize_capture()

        Returns:
            Row id if stored, None otherwise.
        """
        try:
            record = CaptureFeatures(
                session_id=str(session_id),
                started_at=result.started_at,
                sample_count=result.sample_count,
                features=dict(result.features) if result.features is not None else None,
                error=result.error,
            )
            self.session.add(record)
            self.session.commit()
            logger.info(f"✓ Stored capture result {record.id} ({result.sample_count} samples)")
            return record.id
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"✗ Failed to store capture result: {e}")
            return None

    def get_capture_results(self, session_id) -> List[CaptureFeatures]:
        try:
            return self.session.query(CaptureFeatures).filter_by(
                session_id=str(session_id)
            ).order_by(CaptureFeatures.id).all()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching capture results: {e}")
            return []

    def close(self):
        self.session.close()
        if self.engine is not None:
            self.engine.dispose()
