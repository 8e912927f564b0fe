"""
Sensor intake: align three independent inertial streams into unified samples.

The accelerometer, gyroscope and magnetometer are delivered by independent
platform sources at nominally equal rates. `SensorIntake` queues each
channel, and `tick()` releases one `UnifiedSample` at a time, keyed on the
oldest pending reading:

    1. t_ref = timestamp of the oldest queued reading (any channel).
    2. A channel contributes its head reading if it lies before
       t_ref + tolerance (±1 nominal period by default).
    3. The window closes when every channel contributed, or when any
       channel already holds a reading at or past the window end (waiting
       longer cannot complete it). Missing channels are filled with their last
       valid value and flagged.

Per-channel drop rates (fraction of unified samples that needed a fill) are
tracked as a short exponential average and feed the pose confidence.
"""

import logging
from collections import deque
from typing import Deque, Dict, Optional, Tuple

import numpy as np

from pocket_pdr.errors import LateSample, StaleSensor
from pocket_pdr.sensors.types import (
    CHANNEL_NAMES,
    NS_PER_S,
    SensorChannel,
    SensorSample,
    UnifiedSample,
)

logger = logging.getLogger(__name__)

_CHANNELS = (SensorChannel.ACCEL, SensorChannel.GYRO, SensorChannel.MAG)

MIN_SAMPLE_RATE_HZ = 5.0
MAX_SAMPLE_RATE_HZ = 75.0


class SensorIntake:
    """
    Queue-and-align front end for raw sensor samples.

    Args:
        sample_rate_hz: Nominal rate of every channel, in [5, 75] Hz.
        tolerance_periods: Half-width of the alignment window in periods.
        stale_periods: Silence (in periods) after which a channel is stale.
        drop_rate_window_s: Time constant of the drop-rate average.

    Example:
        >>> intake = SensorIntake(sample_rate_hz=50.0)
        >>> intake.push(SensorSample(0, accel=[0, 0, -9.81], gyro=[0, 0, 0], mag=[20, 0, 40]))
        >>> unified = intake.tick()
        >>> bool(unified.valid_flags == SensorChannel.ALL)
        True
    """

    def __init__(
        self,
        sample_rate_hz: float = 50.0,
        tolerance_periods: float = 1.0,
        stale_periods: float = 4.0,
        drop_rate_window_s: float = 2.0,
    ):
        if not MIN_SAMPLE_RATE_HZ <= sample_rate_hz <= MAX_SAMPLE_RATE_HZ:
            raise ValueError(
                f"sample_rate_hz must be in [{MIN_SAMPLE_RATE_HZ}, {MAX_SAMPLE_RATE_HZ}], "
                f"got {sample_rate_hz}"
            )
        if tolerance_periods <= 0 or stale_periods <= tolerance_periods:
            raise ValueError(
                "need 0 < tolerance_periods < stale_periods, got "
                f"{tolerance_periods} and {stale_periods}"
            )
        self.sample_rate_hz = sample_rate_hz
        period_ns = NS_PER_S / sample_rate_hz
        self.tolerance_ns = int(round(tolerance_periods * period_ns))
        self.stale_limit_ns = int(round(stale_periods * period_ns))
        self._drop_alpha = min(1.0, 1.0 / (drop_rate_window_s * sample_rate_hz))

        self._queues: Dict[SensorChannel, Deque[Tuple[int, np.ndarray]]] = {
            ch: deque() for ch in _CHANNELS
        }
        self._drop_rate: Dict[SensorChannel, float] = {ch: 0.0 for ch in _CHANNELS}
        self._last_valid: Dict[SensorChannel, Optional[np.ndarray]] = {
            ch: None for ch in _CHANNELS
        }
        self.reset()

    def reset(self) -> None:
        """Discard pending readings and restart alignment from the next push.

        Last valid values and drop rates survive so fills stay available.
        """
        for queue in self._queues.values():
            queue.clear()
        self._last_seen_ns: Dict[SensorChannel, Optional[int]] = {ch: None for ch in _CHANNELS}
        self._start_ns: Optional[int] = None
        self._newest_ns: Optional[int] = None
        self._last_emitted_ns: Optional[int] = None

    @property
    def last_emitted_ns(self) -> Optional[int]:
        return self._last_emitted_ns

    def push(self, sample: SensorSample) -> None:
        """
        Enqueue the channels present in `sample`.

        Raises:
            LateSample: If the sample is not newer than the last unified
                sample already emitted.
        """
        if self._last_emitted_ns is not None and sample.t_ns <= self._last_emitted_ns:
            raise LateSample(sample.t_ns, self._last_emitted_ns)

        if self._start_ns is None:
            self._start_ns = sample.t_ns
        for channel in _CHANNELS:
            if not sample.valid_flags & channel:
                continue
            value = getattr(sample, CHANNEL_NAMES[channel])
            self._queues[channel].append((sample.t_ns, value))
            last = self._last_seen_ns[channel]
            self._last_seen_ns[channel] = sample.t_ns if last is None else max(last, sample.t_ns)
        if self._newest_ns is None or sample.t_ns > self._newest_ns:
            self._newest_ns = sample.t_ns

    def tick(self) -> Optional[UnifiedSample]:
        """
        Emit the next unified sample if its alignment window is closed.

        Returns:
            A UnifiedSample, or None while more readings are needed.

        Raises:
            StaleSensor: If any channel has been silent for more than the
                staleness limit relative to the newest reading seen.
        """
        self._check_staleness()

        heads = [q[0][0] for q in self._queues.values() if q]
        if not heads:
            return None
        t_ref = min(heads)
        window_end = t_ref + self.tolerance_ns

        contributing = {
            ch for ch, q in self._queues.items() if q and q[0][0] < window_end
        }
        complete = len(contributing) == len(_CHANNELS)
        overrun = any(q and q[-1][0] >= window_end for q in self._queues.values())
        if not complete and not overrun:
            return None

        values = {}
        valid = SensorChannel.NONE
        filled = SensorChannel.NONE
        for channel in _CHANNELS:
            if channel in contributing:
                _, value = self._queues[channel].popleft()
                self._last_valid[channel] = value
                valid |= channel
                missing = 0.0
            elif self._last_valid[channel] is not None:
                value = self._last_valid[channel]
                valid |= channel
                filled |= channel
                missing = 1.0
            else:
                value = np.full(3, np.nan)
                missing = 1.0
            values[channel] = value
            self._drop_rate[channel] += self._drop_alpha * (missing - self._drop_rate[channel])

        self._last_emitted_ns = t_ref
        return UnifiedSample(
            t_ns=t_ref,
            accel=values[SensorChannel.ACCEL],
            gyro=values[SensorChannel.GYRO],
            mag=values[SensorChannel.MAG],
            valid_flags=valid,
            filled_flags=filled,
        )

    def drop_rates(self) -> Dict[str, float]:
        """Recent fraction of unified samples that needed a fill, per channel."""
        return {CHANNEL_NAMES[ch]: rate for ch, rate in self._drop_rate.items()}

    def max_drop_rate(self) -> float:
        return max(self._drop_rate.values())

    def _check_staleness(self) -> None:
        if self._newest_ns is None:
            return
        for channel in _CHANNELS:
            reference = self._last_seen_ns[channel]
            if reference is None:
                reference = self._start_ns
            silent_ns = self._newest_ns - reference
            if silent_ns > self.stale_limit_ns:
                name = CHANNEL_NAMES[channel]
                logger.warning(f"Sensor channel {name} stale for {silent_ns / NS_PER_S:.3f} s")
                raise StaleSensor(name, silent_ns / NS_PER_S, self.stale_limit_ns / NS_PER_S)
