"""
Stride model: metric stride length and world-frame displacement per step.

The anthropometric model is

    Δs = k * sqrt(h) * f^0.3

where h is the user height (m) and f the cadence (Hz). The constant k is
fixed so that a 1.75 m subject walking at 2 Hz gets a 0.75 m stride, and
the result is clamped to [0.25, 1.20] m. A stride length supplied by the
platform pedometer is used as-is.

The stride is laid along the heading at the step time:

    (Δx, Δy) = Δs * (cos θ, sin θ)
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from pocket_pdr.sensors.types import StepEvent, StrideSample, UserProfile
from pocket_pdr.utils.angles import wrap_angle


REFERENCE_HEIGHT_M = 1.75
REFERENCE_CADENCE_HZ = 2.0
REFERENCE_STRIDE_M = 0.75

K_STRIDE = REFERENCE_STRIDE_M / (np.sqrt(REFERENCE_HEIGHT_M) * REFERENCE_CADENCE_HZ ** 0.3)
"""Anthropometric constant (≈ 0.4605) of the stride model."""


@dataclass(frozen=True)
class StrideConfig:
    k: float = float(K_STRIDE)
    cadence_exponent: float = 0.3
    min_stride_m: float = 0.25
    max_stride_m: float = 1.20

    def validate(self) -> List[str]:
        problems = []
        if self.k <= 0:
            problems.append("stride.k must be positive")
        if not 0 < self.min_stride_m < self.max_stride_m:
            problems.append("stride bounds must satisfy 0 < min < max")
        return problems


def stride_length(
    height_m: float,
    cadence_hz: float,
    k: float = float(K_STRIDE),
    exponent: float = 0.3,
    min_stride_m: float = 0.25,
    max_stride_m: float = 1.20,
) -> float:
    """
    Anthropometric stride length.

    Args:
        height_m: User height in meters.
        cadence_hz: Step frequency in Hz.
        k: Model constant.
        exponent: Cadence exponent.
        min_stride_m: Lower clamp.
        max_stride_m: Upper clamp.

    Returns:
        Stride length in meters, clamped to [min_stride_m, max_stride_m].

    Example:
        >>> round(stride_length(1.75, 2.0), 3)
        0.75
    """
    if height_m <= 0:
        raise ValueError(f"height_m must be positive, got {height_m}")
    if cadence_hz <= 0:
        raise ValueError(f"cadence_hz must be positive, got {cadence_hz}")
    length = k * np.sqrt(height_m) * cadence_hz ** exponent
    return float(np.clip(length, min_stride_m, max_stride_m))


class StrideModel:
    """Turns step events into stride samples for one user."""

    def __init__(self, profile: UserProfile, config: Optional[StrideConfig] = None):
        self.profile = profile
        self.config = config or StrideConfig()

    def length_for(self, step: StepEvent) -> float:
        """Platform length when present, anthropometric estimate otherwise."""
        if step.platform_length_m is not None:
            return float(step.platform_length_m)
        cfg = self.config
        return stride_length(
            self.profile.height_m,
            step.cadence_hz,
            cfg.k,
            cfg.cadence_exponent,
            cfg.min_stride_m,
            cfg.max_stride_m,
        )

    def make_stride(self, step: StepEvent, heading: float) -> StrideSample:
        return StrideSample(step_event=step, delta_s=self.length_for(step), heading=wrap_angle(heading))
