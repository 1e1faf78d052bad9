"""
Feature record and raw sample serialization
"""

import logging
import math
import numbers
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Dict, Sequence

import pandas as pd

from .features import RECORD_COLUMNS

logger = logging.getLogger(__name__)

_THREE_PLACES = Decimal('0.001')

SAMPLE_COLUMNS = (
    'recording_time_ms',
    'timestamp',
    'category_right',
    'category_left',
    'pupil_diameter_right_mm',
    'pupil_diameter_left_mm',
    'point_of_regard_right_x',
    'point_of_regard_right_y',
    'point_of_regard_left_x',
    'point_of_regard_left_y',
    'tracking_ratio',
)


def format_cell(value) -> str:
    """
    Render one record cell.

    Integral numbers print as integers, other numbers are rounded
    (half-up) to 3 decimals without trailing zeros, strings are quoted with
    embedded quotes doubled. None, NaN and infinities print as empty cells.
    """
    if value is None:
        return ''
    if isinstance(value, str):
        return '"' + value.replace('"', '""') + '"'
    if isinstance(value, numbers.Real):
        number = float(value)
        if not math.isfinite(number):
            return ''
        if number.is_integer():
            return str(int(number))
        rounded = Decimal(number).quantize(_THREE_PLACES, rounding=ROUND_HALF_UP).normalize()
        text = format(rounded, 'f')
        return '0' if text in ('-0', '0') else text
    return '"' + str(value).replace('"', '""') + '"'


def serialize_record(vector: Dict[str, object], columns: Sequence[str] = RECORD_COLUMNS) -> str:
    """
    Header line plus one data row, in the fixed column order.

    Columns missing from the vector render as empty cells so the row
    width never changes.
    """
    header = ','.join(columns)
    row = ','.join(format_cell(vector.get(column)) for column in columns)
    return f'{header}\n{row}'


def write_record_csv(vector: Dict[str, object], path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_record(vector), encoding='utf-8')
    logger.info(f"✓ Feature record written to {path}")
    return path


def samples_to_frame(samples: Sequence) -> pd.DataFrame:
    """Raw GazeSamples as a DataFrame with a fixed column order"""
    rows = [
        {
            'recording_time_ms':       s.recording_time_ms,
            'timestamp':               s.timestamp,
            'category_right':          s.category_right,
            'category_left':           s.category_left,
            'pupil_diameter_right_mm': s.pupil_diameter_right_mm,
            'pupil_diameter_left_mm':  s.pupil_diameter_left_mm,
            'point_of_regard_right_x': s.gaze_right.x if s.gaze_right is not None else None,
            'point_of_regard_right_y': s.gaze_right.y if s.gaze_right is not None else None,
            'point_of_regard_left_x':  s.gaze_left.x if s.gaze_left is not None else None,
            'point_of_regard_left_y':  s.gaze_left.y if s.gaze_left is not None else None,
            'tracking_ratio':          s.tracking_ratio,
        }
        for s in samples
    ]
    return pd.DataFrame(rows, columns=list(SAMPLE_COLUMNS))


def write_samples_csv(samples: Sequence, path) -> int:
    """Write raw samples to CSV. Returns the row count written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = samples_to_frame(samples)
    frame.to_csv(path, index=False)
    logger.info(f"✓ {len(frame)} raw samples written to {path}")
    return len(frame)
