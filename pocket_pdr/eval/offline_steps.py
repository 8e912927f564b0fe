"""
Offline step counting for recorded sessions.

A zero-phase reference detector used to cross-check the streaming
detector on logged data: accel magnitude minus gravity, Butterworth
low-pass with filtfilt, then scipy.signal.find_peaks with a height and
minimum-spacing constraint. It needs the whole recording, so it is never
used in the live pipeline.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy import signal

from pocket_pdr.sensors.types import GRAVITY, NS_PER_S, SensorSample


@dataclass(frozen=True)
class OfflineSteps:
    """
    Result of offline step detection.

    Attributes:
        indices: Peak sample indices (n_steps,).
        times: Peak times in seconds (n_steps,).
        signal: Filtered dynamic magnitude (N,).
    """

    indices: np.ndarray
    times: np.ndarray
    signal: np.ndarray

    @property
    def count(self) -> int:
        return len(self.indices)

    def cadence_hz(self) -> float:
        """Median step frequency, 0 with fewer than two steps."""
        if len(self.times) < 2:
            return 0.0
        return float(1.0 / np.median(np.diff(self.times)))


def detect_steps_offline(
    accel: np.ndarray,
    t: np.ndarray,
    min_peak_height: float = 0.6,
    min_step_interval_s: float = 0.25,
    lowpass_cutoff_hz: Optional[float] = 5.0,
    g: float = GRAVITY,
) -> OfflineSteps:
    """
    Detect steps on a full recording.

    Args:
        accel: Accelerometer readings, shape (N, 3), m/s².
        t: Sample times, shape (N,), seconds, uniformly spaced.
        min_peak_height: Minimum filtered peak (m/s² above gravity).
        min_step_interval_s: Minimum spacing between peaks.
        lowpass_cutoff_hz: Butterworth cutoff; None disables filtering.
        g: Gravity magnitude.

    Returns:
        OfflineSteps with peak indices, times and the filtered signal.

    Example:
        >>> t = np.arange(0, 10, 0.02)
        >>> accel = np.column_stack([0 * t, 0 * t, -9.81 - 1.2 * np.sin(4 * np.pi * t)])
        >>> detect_steps_offline(accel, t).count
        20
    """
    accel = np.asarray(accel, dtype=float)
    t = np.asarray(t, dtype=float)
    if accel.ndim != 2 or accel.shape[1] != 3:
        raise ValueError(f"accel must have shape (N, 3), got {accel.shape}")
    if t.shape != (len(accel),):
        raise ValueError(f"t must have shape ({len(accel)},), got {t.shape}")
    if len(t) < 2:
        return OfflineSteps(np.zeros(0, dtype=int), np.zeros(0), np.zeros(len(t)))

    dt = float(np.median(np.diff(t)))
    if dt <= 0:
        raise ValueError("t must be increasing")

    # Step 1: dynamic magnitude
    dynamic = np.linalg.norm(accel, axis=1) - g

    # Step 2: zero-phase low-pass
    filtered = dynamic
    if lowpass_cutoff_hz is not None:
        normalized_cutoff = lowpass_cutoff_hz / (0.5 / dt)
        # filtfilt needs more than 3 * max(len(a), len(b)) samples
        if normalized_cutoff < 1.0 and len(dynamic) > 15:
            b, a = signal.butter(4, normalized_cutoff, btype="low")
            filtered = signal.filtfilt(b, a, dynamic)

    # Step 3: peaks
    distance = max(1, int(round(min_step_interval_s / dt)))
    indices, _ = signal.find_peaks(filtered, height=min_peak_height, distance=distance)
    return OfflineSteps(indices=indices, times=t[indices], signal=filtered)


def detect_steps_in_samples(samples: Sequence[SensorSample], **kwargs) -> OfflineSteps:
    """detect_steps_offline over raw samples; samples without accel are skipped."""
    with_accel = [s for s in samples if s.accel is not None]
    if not with_accel:
        return OfflineSteps(np.zeros(0, dtype=int), np.zeros(0), np.zeros(0))
    accel = np.array([s.accel for s in with_accel])
    t0 = with_accel[0].t_ns
    t = np.array([(s.t_ns - t0) / NS_PER_S for s in with_accel])
    return detect_steps_offline(accel, t, **kwargs)
