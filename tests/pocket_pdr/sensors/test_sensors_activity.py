"""
Unit tests for motion mode classification.

Run with: pytest tests/pocket_pdr/sensors/test_sensors_activity.py -v
"""

import unittest

import pytest

from pocket_pdr.sensors.activity import Mode, ModeClassifier, classify_mode


class TestClassifyMode(unittest.TestCase):
    """Test the stateless classifier."""

    def test_stationary_without_steps(self):
        self.assertIs(classify_mode(10.0, None, False, False), Mode.STATIONARY)

    def test_walking_after_recent_step(self):
        self.assertIs(classify_mode(10.0, 9.0, False, False), Mode.WALKING)
        self.assertIs(classify_mode(10.0, 8.0, False, False), Mode.WALKING)

    def test_stationary_after_timeout(self):
        self.assertIs(classify_mode(10.0, 7.9, False, False), Mode.STATIONARY)

    def test_degraded_wins(self):
        self.assertIs(classify_mode(10.0, 9.9, True, False), Mode.DEGRADED)
        self.assertIs(classify_mode(10.0, 9.9, False, True), Mode.DEGRADED)


class TestModeClassifier(unittest.TestCase):
    """Test transition reporting."""

    def test_reports_transitions_only(self):
        classifier = ModeClassifier()

        self.assertIs(classifier.update(0.0, None, False, False), Mode.STATIONARY)
        self.assertIsNone(classifier.update(0.5, None, False, False))
        self.assertIs(classifier.update(1.0, 1.0, False, False), Mode.WALKING)
        self.assertIsNone(classifier.update(2.0, 1.0, False, False))
        self.assertIs(classifier.update(3.5, 1.0, False, False), Mode.STATIONARY)
        self.assertIs(classifier.mode, Mode.STATIONARY)

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            ModeClassifier(walking_timeout_s=0.0)


if __name__ == "__main__":
    unittest.main()
