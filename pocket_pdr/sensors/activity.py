"""
Motion mode classification for consumer notifications.

Modes:
    DEGRADED    calibration is the coarse fallback, or the step detector is
                running on the magnitude signal because the attitude lost
                its gravity reference.
    WALKING     a step was emitted within the walking timeout (2 s).
    STATIONARY  otherwise.

The classifier only reports transitions; repeated identical modes are
swallowed.
"""

from enum import Enum
from typing import Optional


class Mode(Enum):
    STATIONARY = "stationary"
    WALKING = "walking"
    DEGRADED = "degraded"


def classify_mode(
    t: float,
    last_step_t: Optional[float],
    calibration_degraded: bool,
    detector_fallback: bool,
    walking_timeout_s: float = 2.0,
) -> Mode:
    """
    Classify the current motion mode.

    Args:
        t: Current time in seconds.
        last_step_t: Time of the most recent emitted step, or None.
        calibration_degraded: True when tracking on a coarse calibration.
        detector_fallback: True when the detector uses the magnitude path.
        walking_timeout_s: Step recency that still counts as walking.

    Returns:
        Mode for time t.
    """
    if calibration_degraded or detector_fallback:
        return Mode.DEGRADED
    if last_step_t is not None and t - last_step_t <= walking_timeout_s:
        return Mode.WALKING
    return Mode.STATIONARY


class ModeClassifier:
    """Stateful wrapper around classify_mode that reports changes only."""

    def __init__(self, walking_timeout_s: float = 2.0):
        if walking_timeout_s <= 0:
            raise ValueError(f"walking_timeout_s must be positive, got {walking_timeout_s}")
        self.walking_timeout_s = walking_timeout_s
        self.mode: Optional[Mode] = None

    def update(
        self,
        t: float,
        last_step_t: Optional[float],
        calibration_degraded: bool,
        detector_fallback: bool,
    ) -> Optional[Mode]:
        """Return the new mode on a transition, None otherwise."""
        mode = classify_mode(
            t, last_step_t, calibration_degraded, detector_fallback, self.walking_timeout_s
        )
        if mode is self.mode:
            return None
        self.mode = mode
        return mode
