"""
Unit tests for heading wrap helpers.

Run with: pytest tests/pocket_pdr/utils/test_utils_angles.py -v
"""

import unittest

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pocket_pdr.utils.angles import (
    angle_diff,
    interpolate_angle,
    wrap_angle,
    wrap_angle_array,
    wrapped_ema,
)


class TestWrapAngle(unittest.TestCase):
    """wrap_angle maps into (-π, π]."""

    def test_identity_inside_range(self):
        for angle in (0.0, 1.0, -1.0, 3.0, -3.0):
            self.assertAlmostEqual(wrap_angle(angle), angle)

    def test_multiple_turns(self):
        self.assertAlmostEqual(wrap_angle(3.5 * np.pi), -0.5 * np.pi)
        self.assertAlmostEqual(wrap_angle(-2.5 * np.pi), -0.5 * np.pi)
        self.assertAlmostEqual(wrap_angle(4 * np.pi + 0.1), 0.1)

    def test_lower_bound_is_open(self):
        self.assertEqual(wrap_angle(-np.pi), np.pi)
        self.assertEqual(wrap_angle(np.pi), np.pi)

    def test_array_matches_scalar(self):
        angles = np.linspace(-10, 10, 101)
        expected = np.array([wrap_angle(a) for a in angles])
        assert_allclose(wrap_angle_array(angles), expected, atol=1e-12)

    def test_array_range(self):
        wrapped = wrap_angle_array(np.array([-np.pi, -3 * np.pi, np.pi, 7.0]))
        self.assertTrue(np.all(wrapped > -np.pi))
        self.assertTrue(np.all(wrapped <= np.pi))


class TestAngleDiff(unittest.TestCase):
    """Shortest signed difference across the seam."""

    def test_across_seam(self):
        self.assertAlmostEqual(angle_diff(np.pi - 0.1, -np.pi + 0.1), -0.2)
        self.assertAlmostEqual(angle_diff(-np.pi + 0.1, np.pi - 0.1), 0.2)

    def test_array_input(self):
        result = angle_diff(np.array([0.1, np.pi - 0.1]), np.array([0.0, -np.pi + 0.1]))
        assert_allclose(result, [0.1, -0.2], atol=1e-12)


class TestWrappedEma(unittest.TestCase):
    """Exponential filtering on the circle."""

    def test_gain_one_returns_new(self):
        self.assertAlmostEqual(wrapped_ema(0.5, 1.5, 1.0), 1.5)

    def test_gain_zero_keeps_previous(self):
        self.assertAlmostEqual(wrapped_ema(0.5, 1.5, 0.0), 0.5)

    def test_short_way_round(self):
        # From 179° toward -179°: must move through 180°, not through 0°
        previous = np.deg2rad(179.0)
        new = np.deg2rad(-179.0)
        result = wrapped_ema(previous, new, 0.5)
        self.assertAlmostEqual(abs(result), np.pi, places=9)

    def test_invalid_gain(self):
        with pytest.raises(ValueError, match="gain"):
            wrapped_ema(0.0, 1.0, 1.5)


class TestInterpolateAngle(unittest.TestCase):

    def test_midpoint(self):
        self.assertAlmostEqual(interpolate_angle(0.0, 0.0, 1.0, 1.0, 0.5), 0.5)

    def test_across_seam(self):
        a0 = np.deg2rad(170.0)
        a1 = np.deg2rad(-170.0)
        self.assertAlmostEqual(interpolate_angle(0.0, a0, 1.0, a1, 0.5), np.pi)

    def test_clamped(self):
        self.assertAlmostEqual(interpolate_angle(0.0, 0.0, 1.0, 1.0, 2.0), 1.0)
        self.assertAlmostEqual(interpolate_angle(0.0, 0.0, 1.0, 1.0, -1.0), 0.0)


if __name__ == "__main__":
    unittest.main()
