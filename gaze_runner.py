"""
Gaze Runner - replay a recorded landmark stream through the pipeline

Usage:
    python gaze_runner.py frames.jsonl --age 7 --gender M
    python gaze_runner.py frames.jsonl --age 7 --gender M --calibrate --out-dir exports
    python gaze_runner.py frames.jsonl --age 7 --gender F --db-url sqlite:///gaze.db --session-id <id>

Input: one JSON object per line:
    {"t_ms": 1234.5, "width": 640, "height": 480, "landmarks": [[x, y, z], ...]}
"landmarks" may also be an {"index": [x, y, z]} object, and is null (or
missing) for frames where no face was detected.

With --calibrate the first frames drive the 5-point calibration and the
capture starts once it completes. Otherwise a calibration saved for the
session is restored, or identity models are used with --skip-calibration.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from gaze_system.pipeline import GazePipeline, CAPTURE_IDLE, CAPTURE_RUNNING
from gaze_system.sensors.eye_tracking import EyeTrackingConfig, CalibrationModel
from gaze_system.sensors.eye_tracking.serializer import write_record_csv, write_samples_csv

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger('gaze_runner')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Replay landmark frames and export gaze features')
    parser.add_argument('frames', help='JSON-lines landmark recording')
    parser.add_argument('--age', required=True, help='Participant age')
    parser.add_argument('--gender', required=True, help="Participant gender ('M' or 'F')")
    parser.add_argument('--out-dir', default='exports', help='Directory for the CSV outputs')
    parser.add_argument('--calibrate', action='store_true',
                        help='Run the 5-point calibration on the first frames')
    parser.add_argument('--skip-calibration', action='store_true',
                        help='Use identity calibration models')
    parser.add_argument('--db-url', default=None, help='SQLAlchemy URL for persistence')
    parser.add_argument('--session-id', default=None, help='Session identifier for persisted rows')
    parser.add_argument('--log-file', default=None, help='Also write DEBUG logs to this file')
    return parser.parse_args(argv)


def read_frames(path):
    """Yield (t_ms, landmarks, width, height) from a JSON-lines file"""
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                frame = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed line {line_no}: {e}")
                continue
            landmarks = frame.get('landmarks')
            if isinstance(landmarks, dict):
                landmarks = {int(k): v for k, v in landmarks.items()}
            yield (
                float(frame['t_ms']),
                landmarks,
                frame.get('width'),
                frame.get('height'),
            )


def run(args) -> int:
    if args.log_file:
        fh = logging.FileHandler(args.log_file)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s'))
        logging.getLogger().addHandler(fh)

    db_session = None
    if args.db_url:
        from gaze_system.db import get_db_connection
        _, db_session = get_db_connection(args.db_url)

    pipeline = GazePipeline(
        config=EyeTrackingConfig(),
        db_session=db_session,
        session_id=args.session_id,
    )

    started = False
    for t_ms, landmarks, width, height in read_frames(args.frames):
        if not started:
            pipeline.start(now_ms=t_ms)
            if args.calibrate:
                pipeline.start_calibration()
            elif args.skip_calibration and not pipeline.calibrator.is_calibrated:
                pipeline.calibrator.restore({
                    'left': CalibrationModel.identity(),
                    'right': CalibrationModel.identity(),
                })
            started = True

        pipeline.process_frame(landmarks, now_ms=t_ms, frame_width=width, frame_height=height)

        if pipeline.capture_status == CAPTURE_IDLE and pipeline.calibrator.is_calibrated:
            pipeline.start_capture(args.age, args.gender, now_ms=t_ms)
        elif pipeline.capture_status not in (CAPTURE_IDLE, CAPTURE_RUNNING):
            break

    if not started:
        logger.error("✗ No frames in recording")
        return 1

    if pipeline.capture_status == CAPTURE_RUNNING:
        logger.info("Recording ended before the capture window — finalising early")
        pipeline.finalize_capture()

    result = pipeline.last_capture_result
    pipeline.stop()
    if db_session is not None:
        db_session.close()

    if result is None:
        logger.error("✗ Capture never started — calibration did not complete")
        return 1
    if not result.ok:
        logger.error(f"✗ {result.error}")
        return 1

    out_dir = Path(args.out_dir)
    stem = f"eye-tracking-{pipeline.session_id}"
    write_record_csv(result.features, out_dir / f"{stem}.csv")
    write_samples_csv(result.samples, out_dir / f"{stem}-samples.csv")
    return 0


def main():
    sys.exit(run(parse_args()))


if __name__ == '__main__':
    main()
