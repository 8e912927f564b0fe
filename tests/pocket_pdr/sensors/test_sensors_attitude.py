"""
Unit tests for the attitude tracker.

Run with: pytest tests/pocket_pdr/sensors/test_sensors_attitude.py -v
"""

import unittest

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pocket_pdr.coords.rotations import (
    axis_angle_to_quat,
    quat_to_rotation_matrix,
    rotation_about_z,
)
from pocket_pdr.sensors.attitude import AttitudeConfig, AttitudeTracker, initial_attitude
from pocket_pdr.sensors.types import GRAVITY

DT = 0.02
ACCEL_REST = np.array([0.0, 0.0, -GRAVITY])
MAG_WORLD = np.array([20.0, 0.0, 40.0])


def mag_at(heading):
    return rotation_about_z(heading).T @ MAG_WORLD


def feed(tracker, t0, n, accel=ACCEL_REST, gyro=np.zeros(3), mag=None):
    """Push n identical samples starting at t0; return the states."""
    states = []
    for k in range(n):
        m = mag_at(0.0) if mag is None else (mag(k) if callable(mag) else mag)
        states.append(tracker.update(t0 + k * DT, accel, gyro, m))
    return states


class TestInitialAttitude(unittest.TestCase):

    def test_level_north(self):
        q = initial_attitude(ACCEL_REST, MAG_WORLD)
        assert_allclose(quat_to_rotation_matrix(q), np.eye(3), atol=1e-12)

    def test_heading_from_mag(self):
        q = initial_attitude(ACCEL_REST, mag_at(0.7))
        R = quat_to_rotation_matrix(q)
        self.assertAlmostEqual(np.arctan2(R[1, 0], R[0, 0]), 0.7)

    def test_tilt_from_accel(self):
        tilt = quat_to_rotation_matrix(axis_angle_to_quat(np.array([1.0, 0.0, 0.0]), 0.3))
        accel_b = tilt.T @ ACCEL_REST
        R = quat_to_rotation_matrix(initial_attitude(accel_b, tilt.T @ MAG_WORLD))
        assert_allclose(R @ accel_b, ACCEL_REST, atol=1e-9)

    def test_without_mag_uses_body_x(self):
        R = quat_to_rotation_matrix(initial_attitude(ACCEL_REST))
        assert_allclose(R, np.eye(3), atol=1e-12)

    def test_zero_accel_rejected(self):
        with pytest.raises(ValueError, match="accel_b"):
            initial_attitude(np.zeros(3))


class TestAttitudeTracker(unittest.TestCase):

    def setUp(self):
        self.tracker = AttitudeTracker()

    def test_waits_for_valid_accel(self):
        state = self.tracker.update(0.0, np.full(3, np.nan), np.zeros(3), MAG_WORLD)
        self.assertIsNone(state)
        self.assertFalse(self.tracker.initialized)
        self.assertIsNotNone(self.tracker.update(DT, ACCEL_REST, np.zeros(3), MAG_WORLD))

    def test_stationary_becomes_stable(self):
        states = feed(self.tracker, 0.0, 60)
        self.assertFalse(states[0].is_stable)
        self.assertTrue(states[-1].is_stable)
        self.assertGreater(states[-1].stability_ms, 1000)
        self.assertEqual(states[-1].reference_age_ms, 0.0)
        self.assertAlmostEqual(states[-1].heading, 0.0, places=9)
        self.assertAlmostEqual(states[-1].mag_confidence, 1.0)

    def test_quaternion_stays_unit(self):
        rng = np.random.default_rng(0)
        t = 0.0
        for _ in range(500):
            state = self.tracker.update(
                t, ACCEL_REST + rng.normal(0, 2.0, 3), rng.normal(0, 1.0, 3),
                MAG_WORLD + rng.normal(0, 5.0, 3),
            )
            self.assertLess(abs(np.linalg.norm(state.q_bw) - 1.0), 1e-4)
            self.assertTrue(-np.pi < state.heading <= np.pi)
            t += DT

    def test_yaw_rate_turns_heading(self):
        feed(self.tracker, 0.0, 50)
        rate = 0.5
        feed(self.tracker, 50 * DT, 100, gyro=np.array([0.0, 0.0, rate]),
             mag=lambda k: mag_at(rate * (k + 1) * DT))
        states = feed(self.tracker, 150 * DT, 50, mag=mag_at(1.0))
        self.assertAlmostEqual(states[-1].heading, 1.0, delta=0.02)

    def test_mag_correction_removes_yaw_error(self):
        feed(self.tracker, 0.0, 10)
        states = feed(self.tracker, 10 * DT, 1000, mag=mag_at(0.2))
        self.assertAlmostEqual(states[-1].heading, 0.2, delta=0.01)
        self.assertGreater(self.tracker.mag_corrections, 0)

    def test_disturbed_field_lowers_mag_confidence(self):
        feed(self.tracker, 0.0, 50)
        corrections = self.tracker.mag_corrections
        states = feed(self.tracker, 50 * DT, 10, mag=1.39 * mag_at(0.0))
        self.assertLess(states[-1].mag_confidence, 0.1)
        self.assertAlmostEqual(states[-1].mag_confidence, 0.05, delta=0.01)
        self.assertEqual(self.tracker.mag_corrections, corrections)

    def test_gravity_correction_levels_attitude(self):
        # Initialized level, then the accel shows a 10 degree tilt
        feed(self.tracker, 0.0, 1)
        tilt = quat_to_rotation_matrix(axis_angle_to_quat(np.array([0.0, 1.0, 0.0]), np.deg2rad(10)))
        accel_b = tilt.T @ ACCEL_REST
        states = feed(self.tracker, DT, 600, accel=accel_b, mag=tilt.T @ MAG_WORLD)
        R = quat_to_rotation_matrix(states[-1].q_bw)
        assert_allclose(R @ accel_b / GRAVITY, [0.0, 0.0, -1.0], atol=1e-3)
        self.assertGreater(self.tracker.gravity_corrections, 0)

    def test_reference_age_grows_without_gravity_reference(self):
        feed(self.tracker, 0.0, 10)
        # Strong vertical acceleration: no gravity correction, not stable
        states = feed(self.tracker, 10 * DT, 45, accel=np.array([0.0, 0.0, -GRAVITY - 3.0]))
        self.assertFalse(states[-1].is_stable)
        self.assertGreaterEqual(states[-1].reference_age_ms, 880.0)

    def test_heading_jump_rejected_then_reanchored(self):
        feed(self.tracker, 0.0, 20)
        spike = self.tracker.update(20 * DT, ACCEL_REST, np.array([0.0, 0.0, 50.0]), mag_at(0.0))
        self.assertAlmostEqual(spike.heading, 0.0, places=6)
        self.assertGreater(abs(spike.raw_heading), np.deg2rad(30))
        self.assertEqual(self.tracker.heading_jumps_rejected, 1)

        states = feed(self.tracker, 21 * DT, AttitudeConfig().heading_jump_reanchor)
        self.assertLess(abs(states[-1].heading - states[-1].raw_heading), 0.05)

    def test_heading_at_interpolates_history(self):
        feed(self.tracker, 0.0, 10)
        rate = 1.0
        feed(self.tracker, 10 * DT, 50, gyro=np.array([0.0, 0.0, rate]),
             mag=lambda k: mag_at(rate * (k + 1) * DT))
        early = self.tracker.heading_at(0.0)
        late = self.tracker.heading_at(59 * DT)
        middle = self.tracker.heading_at(35 * DT)
        self.assertAlmostEqual(early, 0.0, places=6)
        self.assertTrue(early < middle < late)
        self.assertAlmostEqual(self.tracker.heading_at(100.0), late)

    def test_heading_at_without_history(self):
        with pytest.raises(RuntimeError, match="history"):
            self.tracker.heading_at(0.0)

    def test_reset_clock_skips_gap(self):
        states = feed(self.tracker, 0.0, 10)
        self.tracker.reset_clock()
        after = self.tracker.update(100.0, ACCEL_REST, np.array([0.0, 0.0, 1.0]), mag_at(0.0))
        assert_allclose(after.q_bw, states[-1].q_bw, atol=1e-6)

    def test_reset_forgets_attitude(self):
        feed(self.tracker, 0.0, 10)
        self.tracker.reset()
        self.assertFalse(self.tracker.initialized)
        self.assertIsNone(self.tracker.mag_reference)


class TestAttitudeConfig(unittest.TestCase):

    def test_defaults_valid(self):
        self.assertEqual(AttitudeConfig().validate(), [])

    def test_invalid_gain(self):
        problems = AttitudeConfig(gravity_gain=0.0).validate()
        self.assertTrue(any("gravity_gain" in p for p in problems))


if __name__ == "__main__":
    unittest.main()
