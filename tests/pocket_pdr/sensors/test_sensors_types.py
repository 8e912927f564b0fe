"""
Unit tests for the pipeline value types.

Run with: pytest tests/pocket_pdr/sensors/test_sensors_types.py -v
"""

import unittest

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pocket_pdr.coords.rotations import rotation_about_z
from pocket_pdr.sensors.types import (
    GRAVITY,
    CalibrationState,
    DegradedCalibration,
    PlatformStepEvent,
    Pose,
    SensorChannel,
    SensorSample,
    StepEvent,
    StepSource,
    StrideSample,
    UnifiedSample,
    UserProfile,
    ValidCalibration,
)


def make_calibration(R=None, valid_until_ns=10):
    return ValidCalibration(
        accel_bias=np.zeros(3),
        gyro_bias=np.zeros(3),
        mag_bias=np.zeros(3),
        R_body_to_phone=np.eye(3) if R is None else R,
        avg_gravity_body=np.array([0.0, 0.0, -GRAVITY]),
        valid_until_ns=valid_until_ns,
    )


class TestSensorSample(unittest.TestCase):

    def test_valid_flags(self):
        sample = SensorSample(t_ns=5, accel=[0, 0, -9.81], mag=[20, 0, 40])
        self.assertEqual(sample.valid_flags, SensorChannel.ACCEL | SensorChannel.MAG)
        self.assertIsNone(sample.gyro)

    def test_time_in_seconds(self):
        self.assertAlmostEqual(SensorSample(t_ns=1_500_000_000).t, 1.5)

    def test_arrays_are_read_only_copies(self):
        accel = np.array([0.0, 0.0, -9.81])
        sample = SensorSample(t_ns=0, accel=accel)
        accel[2] = 0.0
        self.assertEqual(sample.accel[2], -9.81)
        with pytest.raises(ValueError):
            sample.accel[0] = 1.0

    def test_shape_validation(self):
        with pytest.raises(ValueError, match=r"accel must have shape \(3,\)"):
            SensorSample(t_ns=0, accel=[1.0, 2.0])

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError, match="finite"):
            SensorSample(t_ns=0, gyro=[0.0, np.nan, 0.0])

    def test_negative_timestamp_rejected(self):
        with pytest.raises(ValueError, match="t_ns"):
            SensorSample(t_ns=-1)


class TestUnifiedSample(unittest.TestCase):

    def test_has_channel(self):
        sample = UnifiedSample(
            t_ns=0,
            accel=[0, 0, -9.81],
            gyro=[0, 0, 0],
            mag=[np.nan] * 3,
            valid_flags=SensorChannel.ACCEL | SensorChannel.GYRO,
        )
        self.assertTrue(sample.has(SensorChannel.GYRO))
        self.assertFalse(sample.has(SensorChannel.MAG))
        self.assertEqual(sample.filled_flags, SensorChannel.NONE)


class TestCalibrationState(unittest.TestCase):

    def test_valid_rotation_accepted(self):
        calibration = make_calibration(rotation_about_z(0.3))
        self.assertFalse(calibration.is_degraded)
        assert_allclose(calibration.R_body_to_phone @ calibration.R_body_to_phone.T, np.eye(3),
                        atol=1e-12)

    def test_reflection_rejected(self):
        with pytest.raises(ValueError, match="proper rotation"):
            make_calibration(np.diag([1.0, -1.0, 1.0]))

    def test_validity_window(self):
        calibration = make_calibration(valid_until_ns=100)
        self.assertTrue(calibration.is_valid_at(99))
        self.assertFalse(calibration.is_valid_at(100))

    def test_degraded_coarse(self):
        degraded = DegradedCalibration.coarse(valid_until_ns=0, reason="no steps")
        self.assertTrue(degraded.is_degraded)
        self.assertIsInstance(degraded, CalibrationState)
        assert_allclose(degraded.R_body_to_phone, np.eye(3))
        self.assertEqual(degraded.reason, "no steps")


class TestStepTypes(unittest.TestCase):

    def test_step_event_confidence_bounds(self):
        with pytest.raises(ValueError, match="confidence"):
            StepEvent(t=1.0, vertical_peak_magnitude=1.2, cadence_hz=2.0,
                      inter_step_ms=500.0, confidence=1.5)

    def test_detected_step_cannot_carry_platform_length(self):
        with pytest.raises(ValueError, match="native"):
            StepEvent(t=1.0, vertical_peak_magnitude=1.2, cadence_hz=2.0,
                      inter_step_ms=500.0, confidence=0.9, platform_length_m=0.7)

    def test_native_step_carries_platform_length(self):
        step = StepEvent(t=1.0, vertical_peak_magnitude=1.2, cadence_hz=2.0,
                         inter_step_ms=500.0, confidence=0.9, source=StepSource.NATIVE,
                         native_total_steps=3, platform_length_m=0.7)
        self.assertEqual(step.platform_length_m, 0.7)

    def test_platform_step_event(self):
        event = PlatformStepEvent(t_ns=2_000_000_000, total_steps=4)
        self.assertAlmostEqual(event.t, 2.0)
        with pytest.raises(ValueError, match="length_m"):
            PlatformStepEvent(t_ns=0, total_steps=1, length_m=0.0)

    def test_stride_displacement(self):
        step = StepEvent(t=1.0, vertical_peak_magnitude=1.2, cadence_hz=2.0,
                         inter_step_ms=500.0, confidence=0.9)
        stride = StrideSample(step_event=step, delta_s=0.8, heading=-np.pi / 2)
        assert_allclose(stride.displacement, [0.0, -0.8], atol=1e-12)


class TestPoseAndProfile(unittest.TestCase):

    def test_pose_theta_range(self):
        Pose(x=0.0, y=0.0, theta=np.pi, confidence=0.5, t=0.0)
        with pytest.raises(ValueError, match="theta"):
            Pose(x=0.0, y=0.0, theta=-np.pi, confidence=0.5, t=0.0)

    def test_pose_confidence_range(self):
        with pytest.raises(ValueError, match="confidence"):
            Pose(x=0.0, y=0.0, theta=0.0, confidence=-0.1, t=0.0)

    def test_profile_height_range(self):
        self.assertEqual(UserProfile(height_m=1.8).height_m, 1.8)
        with pytest.raises(ValueError, match="height_m"):
            UserProfile(height_m=3.0)


if __name__ == "__main__":
    unittest.main()
