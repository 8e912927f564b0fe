"""
Angle wrapping and manipulation utilities.

Provides the single wrap helper used everywhere headings are compared,
filtered or emitted. Headings in this package live in the half-open
interval (-π, π]: an angle of exactly -π is reported as +π.

Critical for:
- Heading innovations in the pose EKF
- Wrapped exponential smoothing of the attitude heading
- Interpolating heading history at a step timestamp
"""

import numpy as np
from typing import Union


def wrap_angle(angle: float) -> float:
    """
    Wrap angle to (-π, π] range.

    Without wrapping, headings near ±180° produce large incorrect
    innovations (e.g., -179° vs +179° = 358° error instead of 2° error).

    Args:
        angle: Angle in radians (can be any value)

    Returns:
        Wrapped angle in range (-π, π]

    Example:
        >>> wrap_angle(3.5 * np.pi)  # 630° -> -90°
        -1.5707963267948966
        >>> wrap_angle(-np.pi)  # lower bound is open
        3.141592653589793
    """
    wrapped = float(np.arctan2(np.sin(angle), np.cos(angle)))
    if wrapped <= -np.pi:
        wrapped = float(np.pi)
    return wrapped


def wrap_angle_array(angles: np.ndarray) -> np.ndarray:
    """
    Wrap array of angles to (-π, π] range.

    Vectorized version of wrap_angle().

    Args:
        angles: Array of angles in radians

    Returns:
        Array of wrapped angles in range (-π, π]
    """
    wrapped = np.arctan2(np.sin(angles), np.cos(angles))
    return np.where(wrapped <= -np.pi, np.pi, wrapped)


def angle_diff(angle1: Union[float, np.ndarray],
               angle2: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Compute the shortest angular difference between two angles.

    Returns angle1 - angle2, wrapped to (-π, π]. This is the innovation
    for heading observations in the pose EKF.

    Args:
        angle1: First angle in radians (measured)
        angle2: Second angle in radians (predicted)

    Returns:
        Shortest signed difference angle1 - angle2

    Example:
        >>> angle_diff(np.pi - 0.1, -np.pi + 0.1)  # Nearly opposite
        -0.2
    """
    if isinstance(angle1, np.ndarray) or isinstance(angle2, np.ndarray):
        return wrap_angle_array(np.asarray(angle1) - np.asarray(angle2))
    else:
        return wrap_angle(angle1 - angle2)


def wrapped_ema(previous: float, new: float, gain: float) -> float:
    """
    One step of an exponential filter on the circle.

    Moves `previous` toward `new` by `gain` times their shortest angular
    difference, so smoothing across the ±π seam never swings the long way
    round.

    Args:
        previous: Current filtered angle in radians
        new: New raw angle in radians
        gain: Filter gain in [0, 1]; 1 returns `new`

    Returns:
        Filtered angle in (-π, π]
    """
    if not 0.0 <= gain <= 1.0:
        raise ValueError(f"gain must be in [0, 1], got {gain}")
    return wrap_angle(previous + gain * angle_diff(new, previous))


def interpolate_angle(t0: float, a0: float, t1: float, a1: float, t: float) -> float:
    """Linearly interpolate between two angles along the shortest arc."""
    if t1 <= t0:
        return wrap_angle(a1)
    frac = min(1.0, max(0.0, (t - t0) / (t1 - t0)))
    return wrap_angle(a0 + frac * angle_diff(a1, a0))

