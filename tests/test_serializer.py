"""
Serializer tests: cell formatting, the feature record CSV and the raw
sample table
"""

import pandas as pd
import numpy as np

from gaze_system.sensors.eye_tracking.features import (
    FEATURE_COLUMNS,
    RECORD_COLUMNS,
    aggregate_features,
)
from gaze_system.sensors.eye_tracking.geometry import Point2D
from gaze_system.sensors.eye_tracking.processor import GazeSample
from gaze_system.sensors.eye_tracking.serializer import (
    SAMPLE_COLUMNS,
    format_cell,
    samples_to_frame,
    serialize_record,
    write_record_csv,
    write_samples_csv,
)


def _sample(t_ms, x):
    return GazeSample(
        recording_time_ms=t_ms,
        timestamp='2026-01-01T00:00:00+00:00',
        category_left='Fixation',
        category_right='Saccade',
        pupil_diameter_left_mm=4.5,
        pupil_diameter_right_mm=4.75,
        gaze_left=Point2D(x, 200),
        gaze_right=Point2D(x + 10, 210),
        tracking_ratio=96.5,
    )


# ---------------------------------------------------------------------------
# format_cell
# ---------------------------------------------------------------------------

def test_integral_numbers_print_as_integers():
    assert format_cell(2.0) == '2'
    assert format_cell(0) == '0'
    assert format_cell(-3.0) == '-3'
    assert format_cell(np.float64(900.0)) == '900'


def test_fractions_round_half_up_to_three_places():
    assert format_cell(0.0625) == '0.063'
    assert format_cell(1.23456) == '1.235'
    assert format_cell(0.1) == '0.1'
    assert format_cell(2.5) == '2.5'
    assert format_cell(-0.125) == '-0.125'


def test_tiny_values_collapse_to_zero():
    assert format_cell(0.0001) == '0'
    assert format_cell(-0.0004) == '0'


def test_non_finite_and_missing_are_empty():
    assert format_cell(None) == ''
    assert format_cell(float('nan')) == ''
    assert format_cell(float('inf')) == ''


def test_strings_are_quoted():
    assert format_cell('web-app') == '"web-app"'
    assert format_cell('say "hi"') == '"say ""hi"""'


# ---------------------------------------------------------------------------
# Feature record
# ---------------------------------------------------------------------------

def test_empty_session_record_keeps_every_column():
    text = serialize_record(aggregate_features([]))
    header, row = text.split('\n')
    names = header.split(',')
    cells = dict(zip(names, row.split(',')))

    assert names == list(RECORD_COLUMNS)
    assert len(row.split(',')) == len(RECORD_COLUMNS)
    for column in FEATURE_COLUMNS:
        expected = '0.5' if column == 'Gender_encoded' else '0'
        assert cells[column] == expected, column
    assert cells['Source_File'] == '"web-app"'
    assert cells['Gender'] == '"Unknown"'


def test_missing_keys_render_empty():
    text = serialize_record({'a': 1.5}, columns=('a', 'b'))
    assert text == 'a,b\n1.5,'


def test_write_record_csv(tmp_path):
    vector = aggregate_features([_sample(0, 100), _sample(100, 110)], age=6, gender='M')
    path = write_record_csv(vector, tmp_path / 'out' / 'record.csv')

    assert path.exists()
    frame = pd.read_csv(path)
    assert list(frame.columns) == list(RECORD_COLUMNS)
    assert len(frame) == 1
    assert frame.loc[0, 'Age'] == 6
    assert frame.loc[0, 'Gender'] == 'M'
    assert frame.loc[0, 'Recording_1'] == 2


# ---------------------------------------------------------------------------
# Raw samples
# ---------------------------------------------------------------------------

def test_samples_frame_columns_and_values():
    frame = samples_to_frame([_sample(0, 100), _sample(100, 120)])
    assert list(frame.columns) == list(SAMPLE_COLUMNS)
    assert len(frame) == 2
    assert frame.loc[1, 'point_of_regard_right_x'] == 130
    assert frame.loc[1, 'point_of_regard_left_y'] == 200
    assert frame.loc[0, 'category_right'] == 'Saccade'


def test_empty_samples_frame_has_columns():
    frame = samples_to_frame([])
    assert list(frame.columns) == list(SAMPLE_COLUMNS)
    assert frame.empty


def test_write_samples_csv(tmp_path):
    path = tmp_path / 'samples.csv'
    assert write_samples_csv([_sample(0, 100), _sample(100, 110), _sample(200, 120)], path) == 3
    frame = pd.read_csv(path)
    assert list(frame.columns) == list(SAMPLE_COLUMNS)
    assert frame['recording_time_ms'].tolist() == [0, 100, 200]
    assert frame['tracking_ratio'].tolist() == [96.5, 96.5, 96.5]
