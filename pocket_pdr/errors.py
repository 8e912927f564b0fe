"""
Error hierarchy for the pocket PDR core.

Structural errors (SensorUnavailable, ConfigInvalid) propagate to the
caller. The others are raised at the point of detection and absorbed by the
session orchestrator, which counts them and lowers the pose confidence.
"""

from typing import List, Optional


class PdrError(Exception):
    """Base class for all errors raised by the PDR core."""


class SensorUnavailable(PdrError, RuntimeError):
    """The intake cannot produce unified samples; the session halts."""


class StaleSensor(SensorUnavailable):
    """A channel has been silent for more than the staleness limit."""

    def __init__(self, channel: str, silent_s: float, limit_s: float):
        self.channel = channel
        self.silent_s = silent_s
        self.limit_s = limit_s
        super().__init__(
            f"{channel} channel silent for {silent_s:.3f} s (limit {limit_s:.3f} s)"
        )


class CalibrationInsufficientMotion(PdrError):
    """The calibration window closed without enough walking."""

    def __init__(self, steps_seen: int, samples_seen: int, steps_required: int):
        self.steps_seen = steps_seen
        self.samples_seen = samples_seen
        self.steps_required = steps_required
        super().__init__(
            f"calibration saw {steps_seen} steps in {samples_seen} samples, "
            f"need at least {steps_required}"
        )


class NumericalInstability(PdrError, ArithmeticError):
    """EKF state or covariance became non-finite."""


class LateSample(PdrError):
    """A sample arrived older than the last emitted unified sample."""

    def __init__(self, t_ns: int, last_emitted_ns: Optional[int]):
        self.t_ns = t_ns
        self.last_emitted_ns = last_emitted_ns
        super().__init__(f"sample at {t_ns} ns precedes last emitted {last_emitted_ns} ns")


class PlatformStepDuplicate(PdrError):
    """A platform step event did not advance the cumulative step counter."""

    def __init__(self, total_steps: int, last_total_steps: int):
        self.total_steps = total_steps
        self.last_total_steps = last_total_steps
        super().__init__(
            f"platform total_steps {total_steps} does not exceed {last_total_steps}"
        )


class ConfigInvalid(PdrError, ValueError):
    """Session configuration refused at start."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("invalid configuration: " + "; ".join(self.problems))
