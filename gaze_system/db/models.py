"""
ORM models for persisted eye tracking data
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class CalibrationEyeTracking(Base):
    """One fitted calibration model per eye per session"""
    __tablename__ = 'calibration_eye_tracking'

    id             = Column(Integer, primary_key=True, autoincrement=True)
    session_id     = Column(String(36), nullable=False, index=True)
    eye            = Column(String(5), nullable=False)
    timestamp      = Column(DateTime(timezone=True), default=_utcnow)
    scale_x        = Column(Float, nullable=False, default=1.0)
    offset_x       = Column(Float, nullable=False, default=0.0)
    scale_y        = Column(Float, nullable=False, default=1.0)
    offset_y       = Column(Float, nullable=False, default=0.0)
    calib_measured = Column(JSON)
    calib_targets  = Column(JSON)

    def __repr__(self):
        return f"<CalibrationEyeTracking(session={self.session_id}, eye={self.eye})>"


class CaptureFeatures(Base):
    """Aggregated feature record of one finished capture"""
    __tablename__ = 'capture_features'

    id           = Column(Integer, primary_key=True, autoincrement=True)
    session_id   = Column(String(36), nullable=False, index=True)
    started_at   = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True), default=_utcnow)
    sample_count = Column(Integer, nullable=False, default=0)
    features     = Column(JSON)
    error        = Column(Text)

    def __repr__(self):
        return f"<CaptureFeatures(session={self.session_id}, samples={self.sample_count})>"
