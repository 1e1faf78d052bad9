"""
Gaze Feature Aggregation
Post-capture roll-up of GazeSamples into the fixed-order feature record
consumed by the screening classifier.

Column order is a compatibility contract with the trained model: never
reorder, rename, or drop a column here.
"""

import logging
import math
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

import numpy as np

from .classifier import BLINK, CATEGORIES, FIXATION, SACCADE

logger = logging.getLogger(__name__)


def _numbered(prefix: str, count: int) -> List[str]:
    return [f'{prefix}_{i}' for i in range(1, count + 1)]


RECORD_COLUMNS: tuple = tuple(
    _numbered('Tracking_F', 4)
    + _numbered('Pupil_Diam', 12)
    + _numbered('GazePoint_of_I', 12)
    + _numbered('Recording', 3)
    + _numbered('gaze_hori', 4)
    + _numbered('gaze_vert', 4)
    + _numbered('gaze_velo', 4)
    + _numbered('blink_count', 4)
    + _numbered('fix_count', 4)
    + _numbered('sac_count', 4)
    + ['Source_File', 'level_2']
    + _numbered('trial_dur', 2)
    + ['sampling_rate_1',
       'blink_rate_1', 'fixation_rate_1', 'saccade_rate_1',
       'fix_dur_avg_1', 'sac_amp_avg_1', 'sac_peak_vel_avg_1']
    + _numbered('right_eye_c', 3)
    + _numbered('left_eye_c', 3)
    + _numbered('avg_eye_c', 3)
    + ['pupil_diam_avg_1', 'gaze_hori_avg_1', 'gaze_vert_avg_1',
       'Participant', 'Gender', 'Age', 'Class', 'CARS_Score_is_ASD', 'Gender_encoded']
)

# Record columns that are not model inputs
METADATA_COLUMNS = frozenset({
    'Source_File', 'level_2', 'Participant', 'Gender', 'Class', 'CARS_Score_is_ASD',
})

FEATURE_COLUMNS: tuple = tuple(c for c in RECORD_COLUMNS if c not in METADATA_COLUMNS)

SOURCE_FILE = 'web-app'
LEVEL_2     = 'GazePoint_of_I'
CLASS_UNKNOWN = 'Unknown'

_EMPTY_STATS = {'mean': 0.0, 'std': 0.0, 'min': 0.0, 'max': 0.0, 'q1': 0.0, 'q3': 0.0, 'median': 0.0}


def valid_values(values, positive_only: bool = False) -> List[float]:
    """Drop None, non-numeric and non-finite values (and non-positive ones if asked)"""
    out = []
    for value in values:
        if value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(number):
            continue
        if positive_only and number <= 0:
            continue
        out.append(number)
    return out


def compute_stats(values) -> Dict[str, float]:
    """
    Summary statistics over the valid values.

    Quartiles and median are nearest-rank on the sorted values (index
    floor(n * p)), with no interpolation. Standard deviation is the
    population form.

    Args:
        values: Iterable of numbers; None / NaN / inf are ignored

    Returns:
        Dict with mean, std, min, max, q1, q3, median (all 0 when empty)
    """
    data = np.sort(np.asarray(valid_values(values), dtype=float))
    n = data.size
    if n == 0:
        return dict(_EMPTY_STATS)

    return {
        'mean':   float(np.mean(data)),
        'std':    float(np.std(data)),
        'min':    float(data[0]),
        'max':    float(data[-1]),
        'q1':     float(data[int(math.floor(n * 0.25))]),
        'q3':     float(data[int(math.floor(n * 0.75))]),
        'median': float(data[int(math.floor(n * 0.5))]),
    }


def segment_counts(samples: Sequence, segments: int = 4) -> Dict[str, List[int]]:
    """
    Per-segment Blink / Fixation / Saccade counts.

    The buffer is cut into `segments` contiguous slices of ceil(n / segments)
    samples, the last one taking the remainder. A sample counts toward a
    category if either eye shows it.
    """
    counts = {category: [0] * segments for category in CATEGORIES}
    if not samples:
        return counts

    size = math.ceil(len(samples) / segments)
    for idx, sample in enumerate(samples):
        segment = min(segments - 1, idx // size)
        for category in counts:
            if sample.category_right == category or sample.category_left == category:
                counts[category][segment] += 1
    return counts


def encode_gender(gender: Optional[str]) -> float:
    """M = 1, F = 0, anything else 0.5. Case-sensitive; callers normalise."""
    if gender == 'M':
        return 1
    if gender == 'F':
        return 0
    return 0.5


def parse_age(age) -> float:
    try:
        value = float(age)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return value


def _motion(samples: Sequence) -> Dict[str, List[float]]:
    """Frame-to-frame gaze motion derived from consecutive sample pairs"""
    motion = {key: [] for key in (
        'velocity_right', 'velocity_left',
        'horizontal_right', 'vertical_right',
        'horizontal_left', 'vertical_left',
        'fixation_durations', 'saccade_amplitudes', 'saccade_peak_velocities',
    )}

    for prev, curr in zip(samples, samples[1:]):
        dt = (curr.recording_time_ms - prev.recording_time_ms) / 1000.0
        if dt <= 0:
            continue

        deltas = {}
        velocities = {}
        for eye in ('right', 'left'):
            a = getattr(prev, f'gaze_{eye}')
            b = getattr(curr, f'gaze_{eye}')
            if a is None or b is None:
                continue
            dx, dy = b.x - a.x, b.y - a.y
            deltas[eye] = (dx, dy)
            velocities[eye] = math.hypot(dx, dy) / dt
            motion[f'velocity_{eye}'].append(velocities[eye])
            motion[f'horizontal_{eye}'].append(dx / dt)
            motion[f'vertical_{eye}'].append(dy / dt)

        if SACCADE in (curr.category_right, curr.category_left) and len(deltas) == 2:
            (dxr, dyr), (dxl, dyl) = deltas['right'], deltas['left']
            motion['saccade_amplitudes'].append(math.hypot(dxr + dxl, dyr + dyl) / 2)
            motion['saccade_peak_velocities'].append(max(velocities['right'], velocities['left']))

        if curr.category_right == FIXATION and prev.category_right == FIXATION:
            motion['fixation_durations'].append(dt)

    return motion


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def aggregate_features(samples: Sequence, age=None, gender: Optional[str] = None) -> 'OrderedDict[str, object]':
    """
    Roll one capture's samples up into the feature record.

    Args:
        samples: Ordered GazeSamples of one capture session
        age:     Participant age (anything float() accepts; invalid -> 0)
        gender:  'M', 'F' or other/None

    Returns:
        OrderedDict keyed by RECORD_COLUMNS, in that order. Every numeric
        slot holds a finite number even when samples is empty.
    """
    samples = list(samples or [])
    n = len(samples)

    tracking = compute_stats(s.tracking_ratio for s in samples)
    pupil_right = compute_stats(valid_values((s.pupil_diameter_right_mm for s in samples), positive_only=True))
    pupil_left = compute_stats(valid_values((s.pupil_diameter_left_mm for s in samples), positive_only=True))
    por_right_x = compute_stats(s.gaze_right.x for s in samples if s.gaze_right is not None)
    por_right_y = compute_stats(s.gaze_right.y for s in samples if s.gaze_right is not None)
    por_left_x = compute_stats(s.gaze_left.x for s in samples if s.gaze_left is not None)

    times = valid_values(s.recording_time_ms for s in samples)
    time_min = min(times) if times else 0.0
    time_max = max(times) if times else 0.0

    motion = _motion(samples)
    hori_right = compute_stats(motion['horizontal_right'])
    hori_left = compute_stats(motion['horizontal_left'])
    vert_right = compute_stats(motion['vertical_right'])
    vert_left = compute_stats(motion['vertical_left'])
    velo_right = compute_stats(motion['velocity_right'])
    velo_left = compute_stats(motion['velocity_left'])

    counts = segment_counts(samples)

    trial_dur_ms = time_max - time_min
    if trial_dur_ms > 0:
        trial_dur_s = trial_dur_ms / 1000.0
    else:
        trial_dur_s = 1.0 if n else 0.0

    def per_second(total: float) -> float:
        return total / trial_dur_s if trial_dur_s > 0 else 0.0

    right_range = por_right_x['max'] - por_right_x['min']
    left_range = por_left_x['max'] - por_left_x['min']

    values = {
        'Tracking_F_1': tracking['mean'],
        'Tracking_F_2': tracking['std'],
        'Tracking_F_3': tracking['min'],
        'Tracking_F_4': tracking['max'],
        'Pupil_Diam_1': pupil_right['mean'],
        'Pupil_Diam_2': pupil_right['std'],
        'Pupil_Diam_3': pupil_right['min'],
        'Pupil_Diam_4': pupil_right['max'],
        'Pupil_Diam_5': pupil_right['q1'],
        'Pupil_Diam_6': pupil_right['q3'],
        'Pupil_Diam_7': pupil_left['mean'],
        'Pupil_Diam_8': pupil_left['std'],
        'Pupil_Diam_9': pupil_left['min'],
        'Pupil_Diam_10': pupil_left['max'],
        'Pupil_Diam_11': pupil_left['q1'],
        'Pupil_Diam_12': pupil_left['q3'],
        'GazePoint_of_I_1': por_right_x['mean'],
        'GazePoint_of_I_2': por_right_x['std'],
        'GazePoint_of_I_3': por_right_x['min'],
        'GazePoint_of_I_4': por_right_x['max'],
        'GazePoint_of_I_5': por_right_y['mean'],
        'GazePoint_of_I_6': por_right_y['std'],
        'GazePoint_of_I_7': por_right_y['min'],
        'GazePoint_of_I_8': por_right_y['max'],
        'GazePoint_of_I_9': por_left_x['mean'],
        'GazePoint_of_I_10': por_left_x['std'],
        'GazePoint_of_I_11': por_left_x['min'],
        'GazePoint_of_I_12': por_left_x['max'],
        'Recording_1': len(times),
        'Recording_2': time_min,
        'Recording_3': time_max,
        'gaze_hori_1': hori_right['mean'],
        'gaze_hori_2': hori_right['std'],
        'gaze_hori_3': hori_left['mean'],
        'gaze_hori_4': hori_left['std'],
        'gaze_vert_1': vert_right['mean'],
        'gaze_vert_2': vert_right['std'],
        'gaze_vert_3': vert_left['mean'],
        'gaze_vert_4': vert_left['std'],
        'gaze_velo_1': velo_right['mean'],
        'gaze_velo_2': velo_right['max'],
        'gaze_velo_3': velo_left['mean'],
        'gaze_velo_4': velo_left['max'],
        'Source_File': SOURCE_FILE,
        'level_2': LEVEL_2,
        'trial_dur_1': trial_dur_ms,
        'trial_dur_2': trial_dur_s,
        'sampling_rate_1': per_second(n),
        'blink_rate_1': per_second(sum(counts[BLINK])),
        'fixation_rate_1': per_second(sum(counts[FIXATION])),
        'saccade_rate_1': per_second(sum(counts[SACCADE])),
        'fix_dur_avg_1': _mean(motion['fixation_durations']),
        'sac_amp_avg_1': _mean(motion['saccade_amplitudes']),
        'sac_peak_vel_avg_1': _mean(motion['saccade_peak_velocities']),
        'right_eye_c_1': por_right_x['mean'],
        'right_eye_c_2': por_right_x['std'],
        'right_eye_c_3': right_range,
        'left_eye_c_1': por_left_x['mean'],
        'left_eye_c_2': por_left_x['std'],
        'left_eye_c_3': left_range,
        'avg_eye_c_1': (por_right_x['mean'] + por_left_x['mean']) / 2,
        'avg_eye_c_2': (por_right_x['std'] + por_left_x['std']) / 2,
        'avg_eye_c_3': (right_range + left_range) / 2,
        'pupil_diam_avg_1': (pupil_right['mean'] + pupil_left['mean']) / 2,
        'gaze_hori_avg_1': (hori_right['mean'] + hori_left['mean']) / 2,
        'gaze_vert_avg_1': (vert_right['mean'] + vert_left['mean']) / 2,
        'Participant': 0,
        'Gender': gender or 'Unknown',
        'Age': parse_age(age),
        'Class': CLASS_UNKNOWN,
        'CARS_Score_is_ASD': 0,
        'Gender_encoded': encode_gender(gender),
    }
    for i in range(4):
        values[f'blink_count_{i + 1}'] = counts[BLINK][i]
        values[f'fix_count_{i + 1}'] = counts[FIXATION][i]
        values[f'sac_count_{i + 1}'] = counts[SACCADE][i]

    vector = OrderedDict((column, values[column]) for column in RECORD_COLUMNS)
    logger.info(
        f"✓ Aggregated {n} samples — duration {trial_dur_ms:.0f} ms, "
        f"blinks {sum(counts[BLINK])}, fixations {sum(counts[FIXATION])}, "
        f"saccades {sum(counts[SACCADE])}"
    )
    return vector


def feature_values(vector: Dict[str, object]) -> List[float]:
    """The ordered numeric model input (record minus metadata columns)"""
    return [float(vector[column]) for column in FEATURE_COLUMNS]
