"""
Unit tests for the binary calibration record.

Run with: pytest tests/pocket_pdr/io/test_io_calibration_record.py -v
"""

import tempfile
import unittest
from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pocket_pdr.coords.rotations import is_rotation_matrix, rotation_about_z
from pocket_pdr.io import (
    CALIBRATION_RECORD_SIZE,
    calibration_from_bytes,
    calibration_to_bytes,
    load_calibration,
    save_calibration,
)
from pocket_pdr.sensors.types import GRAVITY, DegradedCalibration, ValidCalibration


def sample_calibration():
    return ValidCalibration(
        accel_bias=np.array([0.05, -0.02, 0.1]),
        gyro_bias=np.array([0.01, 0.002, -0.004]),
        mag_bias=np.array([12.5, -3.0, 7.25]),
        R_body_to_phone=rotation_about_z(np.deg2rad(37.0)),
        avg_gravity_body=np.array([0.01, 0.0, -GRAVITY]),
        valid_until_ns=3_600_000_000_123,
    )


class TestCalibrationRecord(unittest.TestCase):
    """Test serialization of calibration snapshots."""

    def test_record_size(self):
        self.assertEqual(CALIBRATION_RECORD_SIZE, 92)
        self.assertEqual(len(calibration_to_bytes(sample_calibration())), 92)

    def test_round_trip(self):
        original = sample_calibration()
        restored = calibration_from_bytes(calibration_to_bytes(original))

        self.assertIsInstance(restored, ValidCalibration)
        assert_allclose(restored.accel_bias, original.accel_bias, atol=1e-6)
        assert_allclose(restored.gyro_bias, original.gyro_bias, atol=1e-6)
        assert_allclose(restored.mag_bias, original.mag_bias, atol=1e-5)
        assert_allclose(restored.R_body_to_phone, original.R_body_to_phone, atol=1e-6)
        assert_allclose(restored.avg_gravity_body, original.avg_gravity_body, atol=1e-5)
        self.assertEqual(restored.valid_until_ns, original.valid_until_ns)

    def test_restored_rotation_is_proper(self):
        restored = calibration_from_bytes(calibration_to_bytes(sample_calibration()))
        R = restored.R_body_to_phone
        self.assertLess(np.linalg.norm(R @ R.T - np.eye(3)), 1e-9)
        self.assertTrue(is_rotation_matrix(R))

    def test_degraded_not_persisted(self):
        with pytest.raises(ValueError):
            calibration_to_bytes(DegradedCalibration.coarse(0, reason="test"))

    def test_wrong_length(self):
        with pytest.raises(ValueError):
            calibration_from_bytes(b"\x00" * 91)


class TestCalibrationFiles(unittest.TestCase):
    """Test saving and loading calibration files."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_save_and_load(self):
        path = save_calibration(sample_calibration(), self.tmp / "nested" / "pocket.cal")

        self.assertTrue(path.exists())
        loaded = load_calibration(path)
        self.assertEqual(loaded.valid_until_ns, sample_calibration().valid_until_ns)

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_calibration(self.tmp / "missing.cal")


if __name__ == "__main__":
    unittest.main()
