"""
Unit tests for session counters and listener events.

Run with: pytest tests/pocket_pdr/session/test_session_counters.py -v
"""

import unittest

import pytest

from pocket_pdr.session import STANDARD_COUNTERS, RecordingListener, SessionCounters, WarningEvent


class TestSessionCounters(unittest.TestCase):
    """Test counter bookkeeping."""

    def test_all_standard_counters_start_at_zero(self):
        counters = SessionCounters()
        for name in STANDARD_COUNTERS:
            self.assertEqual(counters[name], 0)

    def test_increment_and_set(self):
        counters = SessionCounters()
        counters.increment("late_sample")
        counters.increment("late_sample", 2)
        counters.set("heading_updates", 7)

        self.assertEqual(counters["late_sample"], 3)
        self.assertEqual(counters["heading_updates"], 7)

    def test_unknown_counter(self):
        counters = SessionCounters()
        with pytest.raises(KeyError):
            counters.increment("bogus")
        with pytest.raises(KeyError):
            counters.set("bogus", 1)

    def test_snapshot_is_frozen_copy(self):
        counters = SessionCounters()
        counters.increment("steps_emitted")
        snapshot = counters.snapshot(t=4.0)

        counters.increment("steps_emitted")

        self.assertEqual(snapshot["steps_emitted"], 1)
        self.assertEqual(snapshot.t, 4.0)
        with pytest.raises(TypeError):
            snapshot.counters["steps_emitted"] = 5

    def test_total_dropped(self):
        counters = SessionCounters()
        counters.increment("late_sample")
        counters.increment("rejected_cadence", 2)
        counters.increment("outlier_rejected")
        counters.increment("steps_emitted", 10)

        self.assertEqual(counters.snapshot(0.0).total_dropped(), 4)


class TestRecordingListener(unittest.TestCase):
    """Test the event-recording listener."""

    def test_records_warnings(self):
        listener = RecordingListener()
        listener.on_warning(WarningEvent("outlier_rejected", "jump", t=1.0))
        self.assertEqual([w.kind for w in listener.warnings], ["outlier_rejected"])
        self.assertEqual(listener.poses, [])


if __name__ == "__main__":
    unittest.main()
