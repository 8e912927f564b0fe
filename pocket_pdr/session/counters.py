"""
Session counters.

Every dropped, rejected or corrected item in the pipeline has a reason
code here. The orchestrator owns one SessionCounters per session and hands
out immutable CounterSnapshot copies. The core is single-threaded, so no
locking is needed.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping


STANDARD_COUNTERS = {
    "samples_in": "Raw samples pushed",
    "unified_samples": "Unified samples processed",
    "late_sample": "Samples or steps older than already-consumed data",
    "filled_samples": "Unified samples with at least one filled channel",
    "paused_dropped": "Samples discarded while paused",
    "steps_emitted": "Step events consumed by the stride model",
    "rejected_cadence": "Candidates faster than the physiological limit",
    "rejected_gyro": "Candidates without hip-swing confirmation",
    "native_matched": "Candidates confirmed by a platform step event",
    "native_duplicate": "Platform events that did not advance total_steps",
    "native_unmatched": "Platform events without a matching candidate",
    "late_step": "Step events older than the last consumed step",
    "heading_updates": "Accepted EKF heading observations",
    "heading_gated": "Refused EKF heading observations",
    "heading_reacquired": "EKF heading re-acquisitions",
    "outlier_corrected": "Trajectory jumps shortened along the prior direction",
    "outlier_rejected": "Trajectory points rejected after an outlier run",
    "distance_gated": "Trajectory points closer than the minimum distance",
    "numerical_resets": "EKF covariance resets after non-finite values",
    "calibration_attempts": "Pocket calibration windows completed",
    "calibration_degraded": "Calibrations that fell back to the coarse state",
}


@dataclass(frozen=True)
class CounterSnapshot:
    """Read-only view of the counters at time `t`."""

    t: float
    counters: Mapping[str, int]

    def __getitem__(self, name: str) -> int:
        return self.counters[name]

    def total_dropped(self) -> int:
        """Samples and steps discarded for any reason."""
        return sum(
            self.counters[name]
            for name in ("late_sample", "paused_dropped", "rejected_cadence", "rejected_gyro",
                         "late_step", "outlier_rejected")
        )


class SessionCounters:
    """
    Named integer counters, all standard names starting at zero.

    Usage:
        counters = SessionCounters()
        counters.increment('late_sample')
        snapshot = counters.snapshot(t=12.5)
        snapshot['late_sample']  # 1
    """

    def __init__(self):
        self._counters: Dict[str, int] = {name: 0 for name in STANDARD_COUNTERS}

    def increment(self, name: str, value: int = 1) -> None:
        if name not in self._counters:
            raise KeyError(f"unknown counter '{name}'")
        self._counters[name] += value

    def set(self, name: str, value: int) -> None:
        """Mirror a counter kept by a pipeline component."""
        if name not in self._counters:
            raise KeyError(f"unknown counter '{name}'")
        self._counters[name] = int(value)

    def __getitem__(self, name: str) -> int:
        return self._counters[name]

    def snapshot(self, t: float) -> CounterSnapshot:
        return CounterSnapshot(t=t, counters=MappingProxyType(dict(self._counters)))
