"""
Unit tests for pocket calibration.

Run with: pytest tests/pocket_pdr/sensors/test_sensors_calibration.py -v
"""

import unittest

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pocket_pdr.coords.rotations import (
    axis_angle_to_quat,
    is_rotation_matrix,
    quat_to_rotation_matrix,
    rotation_about_z,
)
from pocket_pdr.errors import CalibrationInsufficientMotion
from pocket_pdr.sensors.calibration import (
    CalibrationConfig,
    PocketCalibrator,
    apply_calibration,
    estimate_accel_bias,
    estimate_body_to_phone,
    estimate_gyro_bias,
    estimate_mag_bias,
    fit_sphere,
)
from pocket_pdr.sensors.types import (
    GRAVITY,
    NS_PER_S,
    DegradedCalibration,
    SensorChannel,
    UnifiedSample,
    ValidCalibration,
)
from pocket_pdr.sim.walk_synth import StationarySegment, WalkSegment, synthesize_session


def unify(sample):
    return UnifiedSample(
        t_ns=sample.t_ns,
        accel=sample.accel,
        gyro=sample.gyro,
        mag=sample.mag,
        valid_flags=SensorChannel.ALL,
    )


def zero_mean_walk(steps=20, **kwargs):
    """Walk whose vertical profile averages to zero over each step."""
    return synthesize_session([WalkSegment(steps=steps, trough=1.2)], **kwargs)


def tilted_mount():
    tilt = quat_to_rotation_matrix(axis_angle_to_quat(np.array([1.0, 0.0, 0.0]), np.deg2rad(20)))
    return tilt @ rotation_about_z(np.deg2rad(30))


class TestBiasEstimators(unittest.TestCase):

    def test_gyro_bias_from_still_windows(self):
        bias = np.array([0.01, -0.005, 0.003])
        rng = np.random.default_rng(1)
        still = bias + rng.normal(0, 0.001, (100, 3))
        turning = np.tile([0.0, 0.0, 0.8], (50, 1))
        bias_est, windows = estimate_gyro_bias(np.vstack([still, turning]))
        self.assertEqual(windows, 10)
        assert_allclose(bias_est, bias, atol=1e-3)

    def test_gyro_bias_without_still_windows(self):
        bias_est, windows = estimate_gyro_bias(np.tile([0.0, 0.5, 0.0], (40, 1)))
        self.assertEqual(windows, 0)
        assert_allclose(bias_est, np.zeros(3))

    def test_gyro_bias_shape_check(self):
        with pytest.raises(ValueError, match="gyro"):
            estimate_gyro_bias(np.zeros((10, 2)))

    def test_accel_bias_along_gravity(self):
        accel = np.tile([0.0, 0.0, -GRAVITY - 0.15], (50, 1))
        bias, direction = estimate_accel_bias(accel)
        assert_allclose(bias, [0.0, 0.0, -0.15], atol=1e-12)
        assert_allclose(direction, [0.0, 0.0, -1.0])

    def test_accel_bias_zero_mean_rejected(self):
        with pytest.raises(ValueError, match="zero"):
            estimate_accel_bias(np.zeros((5, 3)))

    def test_fit_sphere(self):
        rng = np.random.default_rng(2)
        directions = rng.normal(size=(200, 3))
        directions /= np.linalg.norm(directions, axis=1, keepdims=True)
        center = np.array([10.0, -5.0, 3.0])
        center_est, radius = fit_sphere(center + 45.0 * directions)
        assert_allclose(center_est, center, atol=1e-9)
        self.assertAlmostEqual(radius, 45.0)

    def test_mag_bias_accepted_when_samples_surround_center(self):
        rng = np.random.default_rng(3)
        directions = rng.normal(size=(250, 3))
        directions /= np.linalg.norm(directions, axis=1, keepdims=True)
        offset = np.array([12.0, -8.0, 5.0])
        bias, accepted = estimate_mag_bias(offset + 44.7 * directions)
        self.assertTrue(accepted)
        assert_allclose(bias, offset, atol=1e-6)

    def test_mag_bias_skipped_without_rotation(self):
        mag = np.tile([20.0, 0.0, 40.0], (250, 1))
        bias, accepted = estimate_mag_bias(mag)
        self.assertFalse(accepted)
        assert_allclose(bias, np.zeros(3))


class TestBodyToPhone(unittest.TestCase):

    def test_yaw_mount_recovered(self):
        mount = rotation_about_z(np.deg2rad(30))
        walk = zero_mean_walk(R_body_to_phone=mount)
        accel = np.array([s.accel for s in walk.samples])
        R = estimate_body_to_phone(accel, np.zeros(3))
        assert_allclose(R, mount, atol=1e-6)

    def test_tilted_mount_recovered(self):
        mount = tilted_mount()
        walk = zero_mean_walk(R_body_to_phone=mount)
        accel = np.array([s.accel for s in walk.samples])
        R = estimate_body_to_phone(accel, np.zeros(3))
        self.assertTrue(is_rotation_matrix(R))
        self.assertLess(np.linalg.norm(R @ R.T - np.eye(3)), 1e-3)
        self.assertGreater(np.linalg.det(R), 0.0)
        assert_allclose(R, mount, atol=1e-6)

    def test_no_horizontal_motion_only_levels(self):
        accel = np.tile([0.0, -GRAVITY * np.sin(0.2), -GRAVITY * np.cos(0.2)], (50, 1))
        R = estimate_body_to_phone(accel, np.zeros(3))
        assert_allclose(R.T @ accel[0], [0.0, 0.0, -GRAVITY], atol=1e-9)


class TestApplyCalibration(unittest.TestCase):

    def test_removes_bias_and_rotates(self):
        mount = rotation_about_z(np.deg2rad(90))
        calibration = ValidCalibration(
            accel_bias=np.array([0.1, 0.0, 0.0]),
            gyro_bias=np.array([0.0, 0.01, 0.0]),
            mag_bias=np.array([1.0, 1.0, 1.0]),
            R_body_to_phone=mount,
            avg_gravity_body=np.array([0.0, 0.0, -GRAVITY]),
            valid_until_ns=0,
        )
        sample = UnifiedSample(
            t_ns=0,
            accel=mount @ np.array([1.0, 0.0, -GRAVITY]) + [0.1, 0.0, 0.0],
            gyro=np.array([0.0, 0.01, 0.0]),
            mag=mount @ np.array([20.0, 0.0, 40.0]) + 1.0,
            valid_flags=SensorChannel.ALL,
        )
        accel_b, gyro_b, mag_b = apply_calibration(sample, calibration)
        assert_allclose(accel_b, [1.0, 0.0, -GRAVITY], atol=1e-12)
        assert_allclose(gyro_b, np.zeros(3), atol=1e-12)
        assert_allclose(mag_b, [20.0, 0.0, 40.0], atol=1e-12)

    def test_missing_mag_is_none(self):
        sample = UnifiedSample(
            t_ns=0, accel=[0, 0, -GRAVITY], gyro=[0, 0, 0], mag=[np.nan] * 3,
            valid_flags=SensorChannel.ACCEL | SensorChannel.GYRO,
        )
        _, _, mag_b = apply_calibration(sample, DegradedCalibration.coarse(0))
        self.assertIsNone(mag_b)


class TestPocketCalibrator(unittest.TestCase):

    def setUp(self):
        self.progress = []
        self.calibrator = PocketCalibrator(on_progress=self.progress.append)

    def feed(self, session, steps_every=25):
        for k, sample in enumerate(session.samples):
            self.calibrator.add_sample(unify(sample))
            if k % steps_every == 0:
                self.calibrator.note_step()
            if self.calibrator.is_complete(sample.t_ns):
                return sample.t_ns
        return session.samples[-1].t_ns

    def test_successful_calibration(self):
        mount = rotation_about_z(np.deg2rad(-25))
        walk = zero_mean_walk(steps=30, R_body_to_phone=mount,
                              gyro_bias=np.array([0.005, 0.0, -0.004]))
        now_ns = self.feed(walk)
        self.assertEqual(self.calibrator.samples_seen, 250)

        state = self.calibrator.finalize(now_ns)
        self.assertIsInstance(state, ValidCalibration)
        self.assertEqual(state.valid_until_ns, now_ns + 3600 * NS_PER_S)
        assert_allclose(state.R_body_to_phone, mount, atol=1e-6)
        assert_allclose(state.gyro_bias, [0.005, 0.0, -0.004], atol=1e-9)
        assert_allclose(state.avg_gravity_body, [0.0, 0.0, -GRAVITY], atol=1e-6)

        final = self.progress[-1]
        self.assertEqual(final.step, "complete")
        self.assertTrue(final.is_complete)
        self.assertEqual(final.progress, 1.0)

    def test_progress_every_ten_samples(self):
        self.feed(zero_mean_walk(steps=30))
        collecting = [p for p in self.progress if p.step == "collecting"]
        self.assertEqual(len(collecting), 24)
        fractions = [p.progress for p in collecting]
        self.assertEqual(fractions, sorted(fractions))
        self.assertTrue(all(0.0 <= f < 1.0 for f in fractions))

    def test_insufficient_steps(self):
        still = synthesize_session([StationarySegment(6.0)])
        now_ns = self.feed(still, steps_every=10_000)
        with pytest.raises(CalibrationInsufficientMotion) as exc_info:
            self.calibrator.finalize(now_ns)
        self.assertEqual(exc_info.value.steps_seen, 1)
        self.assertEqual(self.progress[-1].step, "failed")
        self.assertTrue(self.progress[-1].is_complete)

    def test_timeout_completes_window(self):
        calibrator = PocketCalibrator(CalibrationConfig(timeout_s=1.0))
        walk = zero_mean_walk(steps=6)
        for sample in walk.samples:
            calibrator.add_sample(unify(sample))
            if calibrator.is_complete(sample.t_ns):
                break
        self.assertLess(calibrator.samples_seen, 250)
        self.assertAlmostEqual(calibrator.elapsed_s(sample.t_ns), 1.0)

    def test_config_validation(self):
        self.assertEqual(CalibrationConfig().validate(), [])
        self.assertTrue(CalibrationConfig(samples_required=10).validate())


if __name__ == "__main__":
    unittest.main()
