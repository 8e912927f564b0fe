"""Utility functions shared across the PDR core."""

from pocket_pdr.utils.angles import (
    angle_diff,
    interpolate_angle,
    wrap_angle,
    wrap_angle_array,
    wrapped_ema,
)

__all__ = [
    "wrap_angle",
    "wrap_angle_array",
    "angle_diff",
    "wrapped_ema",
    "interpolate_angle",
]
