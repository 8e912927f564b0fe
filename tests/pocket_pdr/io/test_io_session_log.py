"""
Unit tests for the NDJSON session log.

Run with: pytest tests/pocket_pdr/io/test_io_session_log.py -v
"""

import io
import json
import tempfile
import unittest
from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pocket_pdr.io import SessionLogWriter, read_session_log, samples_from_log
from pocket_pdr.sensors.types import (
    GRAVITY,
    Pose,
    SensorChannel,
    StepEvent,
    UnifiedSample,
)


def unified(k, filled=SensorChannel.NONE):
    return UnifiedSample(
        t_ns=k * 20_000_000,
        accel=np.array([0.0, 0.0, -GRAVITY]),
        gyro=np.array([0.0, 0.0, 0.1]),
        mag=np.array([20.0, 0.0, 40.0]),
        valid_flags=SensorChannel.ALL,
        filled_flags=filled,
    )


class TestSessionLogWriter(unittest.TestCase):
    """Test writing and reading session logs."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "logs" / "walk.ndjson"

    def tearDown(self):
        self._tmp.cleanup()

    def test_write_and_read(self):
        step = StepEvent(t=0.02, vertical_peak_magnitude=1.2, cadence_hz=2.0,
                         inter_step_ms=0.0, confidence=0.8)
        pose = Pose(x=0.75, y=0.0, theta=0.0, confidence=0.9, t=0.04)
        with SessionLogWriter(self.path) as log:
            log.write_record(0.0, unified(0), state="tracking")
            log.write_record(0.02, unified(1), steps=[step], pose=pose, state="tracking")
            self.assertEqual(log.records_written, 2)

        records = read_session_log(self.path)

        self.assertEqual(len(records), 2)
        self.assertEqual(records[0]["t_ns"], 0)
        self.assertIsNone(records[0]["quaternion"])
        self.assertIsNone(records[0]["pose"])
        self.assertEqual(records[1]["steps"][0]["source"], "detected")
        self.assertEqual(records[1]["steps"][0]["method"], "vertical")
        self.assertEqual(records[1]["pose"]["x"], 0.75)
        self.assertEqual(records[1]["valid"], 7)

    def test_stream_target_left_open(self):
        stream = io.StringIO()
        log = SessionLogWriter(stream)
        log.write_record(0.0, unified(0))
        log.close()

        self.assertFalse(stream.closed)
        self.assertEqual(len(stream.getvalue().splitlines()), 1)

    def test_missing_log(self):
        with pytest.raises(FileNotFoundError):
            read_session_log(self.path)

    def test_corrupt_line(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text('{"t_ns": 0}\nnot json\n')
        with pytest.raises(ValueError, match=":2:"):
            read_session_log(self.path)


class TestSamplesFromLog(unittest.TestCase):
    """Test rebuilding raw samples for replay."""

    def test_filled_channels_dropped(self):
        stream = io.StringIO()
        log = SessionLogWriter(stream)
        log.write_record(0.0, unified(0))
        log.write_record(0.02, unified(1, filled=SensorChannel.MAG))

        records = [json.loads(line) for line in stream.getvalue().splitlines()]
        samples = samples_from_log(records)

        self.assertEqual(len(samples), 2)
        self.assertEqual(samples[0].valid_flags, SensorChannel.ALL)
        self.assertEqual(samples[1].valid_flags, SensorChannel.ACCEL | SensorChannel.GYRO)
        assert_allclose(samples[1].gyro, [0.0, 0.0, 0.1])
        self.assertEqual(samples[1].t_ns, 20_000_000)


if __name__ == "__main__":
    unittest.main()
