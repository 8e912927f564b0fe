"""
Unit tests for the synthetic pocket stream generator.

Run with: pytest tests/pocket_pdr/sim/test_sim_walk_synth.py -v
"""

import unittest
from dataclasses import dataclass

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pocket_pdr.sensors.types import GRAVITY
from pocket_pdr.sim.walk_synth import (
    DEFAULT_MAG_FIELD,
    MagneticInterference,
    StationarySegment,
    TurnSegment,
    WalkSegment,
    step_profile,
    synthesize_session,
)


@dataclass(frozen=True)
class Hop:
    duration_s: float


class TestStepProfile(unittest.TestCase):
    """Test the single-step vertical profile."""

    def test_peak_and_trough(self):
        values = step_profile(np.array([0.0, 0.25, 0.5, 0.75]), peak=1.2, trough=0.5)
        assert_allclose(values, [0.0, 1.2, 0.0, -0.5], atol=1e-12)


class TestSynthesizeSession(unittest.TestCase):
    """Test stream layout and ground truth."""

    def setUp(self):
        self.session = synthesize_session(
            [StationarySegment(2.0), WalkSegment(steps=10), StationarySegment(1.0)]
        )

    def test_sample_count_and_spacing(self):
        samples = self.session.samples
        self.assertEqual(len(samples), 100 + 250 + 50)
        self.assertEqual(samples[0].t_ns, 0)
        self.assertEqual(samples[1].t_ns - samples[0].t_ns, 20_000_000)
        assert_allclose(self.session.t[:3], [0.0, 0.02, 0.04])

    def test_step_times(self):
        assert_allclose(self.session.step_times, 2.125 + 0.5 * np.arange(10))

    def test_final_position(self):
        assert_allclose(self.session.final_position, [7.0, 0.0], atol=1e-9)
        assert_allclose(self.session.position[0], [0.0, 0.0])

    def test_stationary_readings(self):
        sample = self.session.samples[10]
        assert_allclose(sample.accel, [0.0, 0.0, -GRAVITY])
        assert_allclose(sample.gyro, np.zeros(3))
        assert_allclose(sample.mag, DEFAULT_MAG_FIELD)

    def test_walk_vertical_peak(self):
        # First footfall of the walk segment sits at local tau = 0.25
        accel = np.array([s.accel for s in self.session.samples])
        walk = accel[100:125, 2]
        self.assertAlmostEqual(walk.min(), -GRAVITY - 1.2, delta=0.05)

    def test_start_offset(self):
        shifted = synthesize_session([StationarySegment(1.0)], start_ns=5_000_000_000)
        self.assertEqual(shifted.samples[0].t_ns, 5_000_000_000)
        self.assertEqual(shifted.t[0], 0.0)


class TestTurns(unittest.TestCase):
    """Test heading changes."""

    def test_turn_rate_and_heading(self):
        session = synthesize_session(
            [TurnSegment(90.0, duration_s=1.0), WalkSegment(steps=2)]
        )

        self.assertAlmostEqual(session.samples[10].gyro[2], np.pi / 2)
        self.assertAlmostEqual(session.heading[-1], np.pi / 2)
        assert_allclose(session.final_position, [0.0, 1.4], atol=1e-9)

    def test_mag_follows_heading(self):
        session = synthesize_session([TurnSegment(90.0, duration_s=1.0), StationarySegment(0.5)])
        assert_allclose(session.samples[-1].mag, [0.0, -20.0, 40.0], atol=1e-9)

    def test_initial_heading(self):
        session = synthesize_session([StationarySegment(0.5)], initial_heading=np.pi / 2)
        assert_allclose(session.heading, np.pi / 2)


class TestMountingAndDisturbances(unittest.TestCase):
    """Test mounting rotation, bias, noise and interference."""

    def test_mounting_rotation(self):
        R = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]])
        session = synthesize_session([StationarySegment(0.5)], R_body_to_phone=R)

        assert_allclose(session.samples[0].accel, [0.0, GRAVITY, 0.0], atol=1e-12)
        assert_allclose(session.R_body_to_phone, R)

    def test_gyro_bias(self):
        session = synthesize_session(
            [StationarySegment(0.5)], gyro_bias=np.array([0.01, -0.02, 0.03])
        )
        assert_allclose(session.samples[5].gyro, [0.01, -0.02, 0.03])

    def test_interference_window(self):
        session = synthesize_session(
            [StationarySegment(4.0)],
            interference=[MagneticInterference(start_s=1.0, duration_s=1.0, field_scale=1.5)],
        )
        nominal = np.linalg.norm(DEFAULT_MAG_FIELD)

        self.assertAlmostEqual(np.linalg.norm(session.samples[25].mag), nominal)
        self.assertAlmostEqual(np.linalg.norm(session.samples[75].mag), 1.5 * nominal)
        self.assertAlmostEqual(np.linalg.norm(session.samples[110].mag), nominal)

    def test_noise_reproducible(self):
        kwargs = dict(accel_noise_std=0.05, gyro_noise_std=0.01, mag_noise_std=0.5, seed=3)
        a = synthesize_session([StationarySegment(1.0)], **kwargs)
        b = synthesize_session([StationarySegment(1.0)], **kwargs)

        assert_allclose(a.samples[7].accel, b.samples[7].accel)
        self.assertGreater(np.abs(a.samples[7].accel - [0.0, 0.0, -GRAVITY]).max(), 0.0)


class TestErrors(unittest.TestCase):
    """Test argument validation."""

    def test_bad_rate(self):
        with pytest.raises(ValueError):
            synthesize_session([StationarySegment(1.0)], sample_rate_hz=0.0)

    def test_improper_rotation(self):
        with pytest.raises(ValueError):
            synthesize_session([StationarySegment(1.0)], R_body_to_phone=np.diag([1.0, 1.0, -1.0]))

    def test_no_samples(self):
        with pytest.raises(ValueError):
            synthesize_session([])

    def test_unknown_segment(self):
        with pytest.raises(TypeError):
            synthesize_session([Hop(1.0)])


if __name__ == "__main__":
    unittest.main()
