"""
Step detector: footfalls from the vertical-projected acceleration.

The detector runs a small state machine over the upward dynamic vertical
acceleration a_v (gravity removed, world frame):

    IDLE --a_v > rise--> RISING --local max--> PEAK_CANDIDATE
    PEAK_CANDIDATE --a_v < fall within 800 ms--> FALLING (else abort to IDLE)
    FALLING --local min <= trough--> candidate step --> REFRACTORY --> IDLE

Default thresholds are rise = +0.6, fall = +0.2, trough = -0.3 m/s². The
refractory period is max(250 ms, 60 / max_cadence_bpm) counted from the
step (peak) time.

Fallback path:
    When the attitude has had no gravity reference for more than 2 s, or
    the projection fails (attitude missing or non-finite), the detector runs
    on the accel magnitude |a| - g with thresholds +1.2 / +0.4 / -0.5 and
    marks steps MAGNITUDE_FALLBACK. Switching path resets the state machine.

Every candidate goes through the physiological guards (minimum interval,
maximum step frequency, optional hip-swing gyro confirmation), is scored,
and is held for the native overlay window so a platform step event can
still upgrade it to source=NATIVE. Events are released in timestamp order
and never changed afterwards.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Deque, List, Optional, Tuple

import numpy as np

from pocket_pdr.coords.rotations import quat_to_rotation_matrix
from pocket_pdr.errors import PlatformStepDuplicate
from pocket_pdr.sensors.types import (
    GRAVITY,
    AttitudeState,
    DetectionMethod,
    PlatformStepEvent,
    StepEvent,
    StepSource,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepDetectorConfig:
    """Thresholds and guards for the step detector."""

    rise_threshold: float = 0.6
    fall_threshold: float = 0.2
    trough_threshold: float = -0.3
    fallback_rise_threshold: float = 1.2
    fallback_fall_threshold: float = 0.4
    fallback_trough_threshold: float = -0.5
    peak_window_s: float = 0.8
    max_step_duration_s: float = 1.5
    min_refractory_s: float = 0.25
    max_cadence_bpm: float = 240.0
    min_step_interval_s: float = 0.15
    max_allowed_frequency_hz: float = 4.0
    cadence_history: int = 8
    default_cadence_hz: float = 2.0
    fallback_after_s: float = 2.0
    gyro_confirmation: Optional[bool] = None
    gyro_confirmation_window_s: float = 0.5
    gyro_confirmation_threshold: float = 0.1
    degraded_mag_confidence: float = 0.1
    native_window_s: float = 0.2
    prominence_scale: float = 2.0

    def validate(self) -> List[str]:
        problems = []
        if not self.trough_threshold < self.fall_threshold < self.rise_threshold:
            problems.append("step_detector thresholds must satisfy trough < fall < rise")
        if not (
            self.fallback_trough_threshold
            < self.fallback_fall_threshold
            < self.fallback_rise_threshold
        ):
            problems.append("step_detector fallback thresholds must satisfy trough < fall < rise")
        if not 30.0 <= self.max_cadence_bpm <= 400.0:
            problems.append("max_cadence_bpm must be in [30, 400]")
        if self.min_step_interval_s <= 0 or self.max_allowed_frequency_hz <= 0:
            problems.append("step_detector interval guards must be positive")
        if self.cadence_history < 2:
            problems.append("step_detector.cadence_history must be >= 2")
        if self.peak_window_s <= 0 or self.native_window_s < 0:
            problems.append("step_detector windows must be positive")
        return problems

    @property
    def refractory_s(self) -> float:
        return max(self.min_refractory_s, 60.0 / self.max_cadence_bpm)


class DetectorState(Enum):
    IDLE = "idle"
    RISING = "rising_edge"
    PEAK_CANDIDATE = "peak_candidate"
    FALLING = "falling_edge"
    REFRACTORY = "refractory"


@dataclass(frozen=True)
class StepCandidate:
    """A peak/trough pair that completed the state machine.

    Attributes:
        t: Peak time in seconds; becomes the step time.
        peak: Signal value at the peak (m/s²).
        trough: Signal value at the trough (m/s²).
        t_detected: Time at which the trough was confirmed.
        method: Signal path that produced it.
        reference_ok: Whether the attitude had a gravity reference.
    """

    t: float
    peak: float
    trough: float
    t_detected: float
    method: DetectionMethod = DetectionMethod.VERTICAL
    reference_ok: bool = True


def vertical_acceleration(accel_b: np.ndarray, q_bw: np.ndarray) -> float:
    """Upward dynamic acceleration: -((R_bw a)_z + g), positive when pushed up."""
    a_w = quat_to_rotation_matrix(q_bw) @ accel_b
    return float(-(a_w[2] + GRAVITY))


def magnitude_signal(accel_b: np.ndarray) -> float:
    """Gravity-removed accel magnitude |a| - g."""
    return float(np.linalg.norm(accel_b) - GRAVITY)


class StepDetector:
    """
    Online step detector with physiological guards and native overlay.

    Counters:
        candidates: state-machine candidates seen
        rejected_cadence: candidates rejected by the interval/frequency guards
        rejected_gyro: candidates rejected by gyro confirmation
        native_matched: candidates upgraded by a platform event
        native_unmatched: platform events that never met a candidate
        fallback_switches: transitions into the magnitude path
    """

    def __init__(self, config: Optional[StepDetectorConfig] = None):
        self.config = config or StepDetectorConfig()
        self.candidates = 0
        self.rejected_cadence = 0
        self.rejected_gyro = 0
        self.native_matched = 0
        self.native_unmatched = 0
        self.fallback_switches = 0
        self.step_count = 0
        self._step_times: Deque[float] = deque(maxlen=self.config.cadence_history)
        self._last_native_total: Optional[int] = None
        self._natives: List[PlatformStepEvent] = []
        self._pending: List[Tuple[float, StepEvent]] = []
        self._gyro_window: Deque[Tuple[float, float]] = deque()
        self.method = DetectionMethod.VERTICAL
        self.reset_state()

    def reset_state(self) -> None:
        """Return the state machine to IDLE, keeping history and counters."""
        self.state = DetectorState.IDLE
        self._prev: Optional[float] = None
        self._peak: Tuple[float, float] = (0.0, -np.inf)
        self._trough: Tuple[float, float] = (0.0, np.inf)
        self._refractory_until = -np.inf

    @property
    def in_fallback(self) -> bool:
        return self.method is DetectionMethod.MAGNITUDE_FALLBACK

    @property
    def last_step_time(self) -> Optional[float]:
        return self._step_times[-1] if self._step_times else None

    def update(
        self,
        t: float,
        accel_b: np.ndarray,
        gyro_b: np.ndarray,
        attitude: Optional[AttitudeState],
    ) -> List[StepEvent]:
        """
        Feed one calibrated body-frame sample.

        Args:
            t: Sample time in seconds.
            accel_b: Body-frame accel (m/s²).
            gyro_b: Body-frame angular rate (rad/s), NaN if unavailable.
            attitude: Attitude snapshot for this sample, or None.

        Returns:
            Step events released at this sample, in timestamp order.
        """
        cfg = self.config
        if np.all(np.isfinite(gyro_b)):
            self._gyro_window.append((t, float(np.linalg.norm(gyro_b))))
        while self._gyro_window and self._gyro_window[0][0] < t - cfg.gyro_confirmation_window_s:
            self._gyro_window.popleft()

        if not np.all(np.isfinite(accel_b)):
            return self._release(t)

        # Step 1: choose the signal path
        method, signal = self._select_signal(accel_b, attitude)
        if method is not self.method:
            if method is DetectionMethod.MAGNITUDE_FALLBACK:
                self.fallback_switches += 1
                logger.debug(f"Step detector falling back to magnitude at t={t:.3f} s")
            self.method = method
            self.reset_state()

        # Step 2: state machine
        candidate = self._advance(t, signal)
        if candidate is not None:
            reference_ok = attitude is not None and attitude.reference_age_ms <= cfg.fallback_after_s * 1000.0
            mag_degraded = attitude is None or attitude.mag_confidence < cfg.degraded_mag_confidence
            self.process_candidate(replace(candidate, reference_ok=reference_ok), mag_degraded)

        # Step 3: release held events
        self._prune_natives(t)
        return self._release(t)

    def process_candidate(self, candidate: StepCandidate, mag_degraded: bool = False) -> bool:
        """
        Apply guards to a candidate and queue it for emission.

        Args:
            candidate: Completed peak/trough pair.
            mag_degraded: True when the magnetometer is below its
                confidence floor (enables gyro confirmation by default).

        Returns:
            True if the candidate was accepted.
        """
        cfg = self.config
        self.candidates += 1
        last = self.last_step_time

        # Physiological guards
        if last is not None:
            interval = candidate.t - last
            if interval < cfg.min_step_interval_s or interval <= 0 or 1.0 / interval > cfg.max_allowed_frequency_hz:
                self.rejected_cadence += 1
                logger.debug(f"Step at t={candidate.t:.3f} s rejected: interval {interval * 1000:.0f} ms")
                return False

        use_gyro = cfg.gyro_confirmation if cfg.gyro_confirmation is not None else mag_degraded
        if use_gyro:
            recent = [w for _, w in self._gyro_window]
            if not recent or float(np.mean(recent)) <= cfg.gyro_confirmation_threshold:
                self.rejected_gyro += 1
                logger.debug(f"Step at t={candidate.t:.3f} s rejected: no hip swing")
                return False

        inter_step_ms = 0.0 if last is None else (candidate.t - last) * 1000.0
        self._step_times.append(candidate.t)
        self.step_count += 1
        event = StepEvent(
            t=candidate.t,
            vertical_peak_magnitude=candidate.peak,
            cadence_hz=self._cadence(),
            inter_step_ms=inter_step_ms,
            confidence=self._confidence(candidate),
            method=candidate.method,
        )

        native = self._take_native(candidate.t)
        if native is not None:
            self._pending.append((candidate.t_detected, self._as_native(event, native)))
            self._release_through(candidate.t)
        else:
            self._pending.append((candidate.t_detected + cfg.native_window_s, event))
        return True

    def push_native(self, event: PlatformStepEvent) -> None:
        """
        Register a platform step event.

        Raises:
            PlatformStepDuplicate: If total_steps does not advance.
        """
        if self._last_native_total is not None and event.total_steps <= self._last_native_total:
            raise PlatformStepDuplicate(event.total_steps, self._last_native_total)
        self._last_native_total = event.total_steps

        window = self.config.native_window_s
        for i, (release_t, pending) in enumerate(self._pending):
            if pending.source is StepSource.DETECTED and abs(pending.t - event.t) <= window:
                self._pending[i] = (release_t, self._as_native(pending, event))
                self._release_through(pending.t)
                return
        self._natives.append(event)

    def flush(self, t: Optional[float] = None) -> List[StepEvent]:
        """Release held events due by `t` (all of them when t is None)."""
        return self._release(np.inf if t is None else t)

    def _select_signal(
        self, accel_b: np.ndarray, attitude: Optional[AttitudeState]
    ) -> Tuple[DetectionMethod, float]:
        if attitude is not None and attitude.reference_age_ms <= self.config.fallback_after_s * 1000.0:
            a_v = vertical_acceleration(accel_b, attitude.q_bw)
            if np.isfinite(a_v):
                return DetectionMethod.VERTICAL, a_v
        return DetectionMethod.MAGNITUDE_FALLBACK, magnitude_signal(accel_b)

    def _thresholds(self) -> Tuple[float, float, float]:
        cfg = self.config
        if self.in_fallback:
            return cfg.fallback_rise_threshold, cfg.fallback_fall_threshold, cfg.fallback_trough_threshold
        return cfg.rise_threshold, cfg.fall_threshold, cfg.trough_threshold

    def _advance(self, t: float, s: float) -> Optional[StepCandidate]:
        cfg = self.config
        rise, fall, trough = self._thresholds()
        candidate = None

        if self.state is DetectorState.REFRACTORY and t >= self._refractory_until:
            self.state = DetectorState.IDLE

        if self.state is DetectorState.IDLE:
            if s > rise and (self._prev is None or self._prev <= rise):
                self.state = DetectorState.RISING
                self._peak = (t, s)

        elif self.state is DetectorState.RISING:
            if s >= self._peak[1]:
                self._peak = (t, s)
            else:
                self.state = DetectorState.PEAK_CANDIDATE
                if s < fall:
                    self.state = DetectorState.FALLING
                    self._trough = (t, s)

        elif self.state is DetectorState.PEAK_CANDIDATE:
            if s > self._peak[1]:
                self.state = DetectorState.RISING
                self._peak = (t, s)
            elif s < fall:
                self.state = DetectorState.FALLING
                self._trough = (t, s)
            elif t - self._peak[0] > cfg.peak_window_s:
                self.state = DetectorState.IDLE

        elif self.state is DetectorState.FALLING:
            if s <= self._trough[1]:
                self._trough = (t, s)
            elif self._trough[1] <= trough:
                candidate = StepCandidate(
                    t=self._peak[0],
                    peak=self._peak[1],
                    trough=self._trough[1],
                    t_detected=t,
                    method=self.method,
                )
                self.state = DetectorState.REFRACTORY
                self._refractory_until = self._peak[0] + cfg.refractory_s
                if t >= self._refractory_until:
                    self.state = DetectorState.IDLE
            elif s > rise:
                # Shallow trough followed by a new rise: restart on this peak
                self.state = DetectorState.RISING
                self._peak = (t, s)
            if self.state is DetectorState.FALLING and t - self._peak[0] > cfg.max_step_duration_s:
                self.state = DetectorState.IDLE

        self._prev = s
        return candidate

    def _walking_intervals(self) -> np.ndarray:
        # Gaps longer than one step (standing, turning in place) are not cadence
        intervals = np.diff(np.asarray(self._step_times))
        return intervals[intervals <= self.config.max_step_duration_s]

    def _cadence(self) -> float:
        intervals = self._walking_intervals()
        if len(intervals) == 0:
            return self.config.default_cadence_hz
        return float(1.0 / np.mean(intervals))

    def _confidence(self, candidate: StepCandidate) -> float:
        prominence = float(np.clip((candidate.peak - candidate.trough) / self.config.prominence_scale, 0.0, 1.0))
        intervals = self._walking_intervals()
        if len(intervals) >= 2:
            consistency = float(np.clip(1.0 - np.std(intervals) / np.mean(intervals), 0.0, 1.0))
        else:
            consistency = 0.5
        stability = 1.0 if candidate.reference_ok and candidate.method is DetectionMethod.VERTICAL else 0.5
        return float(np.clip(0.4 * prominence + 0.3 * consistency + 0.3 * stability, 0.0, 1.0))

    def _take_native(self, t: float) -> Optional[PlatformStepEvent]:
        window = self.config.native_window_s
        best = None
        for native in self._natives:
            if abs(native.t - t) <= window and (best is None or abs(native.t - t) < abs(best.t - t)):
                best = native
        if best is not None:
            self._natives.remove(best)
        return best

    def _as_native(self, event: StepEvent, native: PlatformStepEvent) -> StepEvent:
        self.native_matched += 1
        return replace(
            event,
            confidence=1.0,
            source=StepSource.NATIVE,
            native_total_steps=native.total_steps,
            platform_length_m=native.length_m,
        )

    def _prune_natives(self, t: float) -> None:
        horizon = t - 2.0 * self.config.native_window_s - self.config.max_step_duration_s
        stale = [n for n in self._natives if n.t < horizon]
        if stale:
            self.native_unmatched += len(stale)
            self._natives = [n for n in self._natives if n.t >= horizon]

    def _release_through(self, t_step: float) -> None:
        # Everything up to and including t_step becomes due immediately
        self._pending = [
            (-np.inf, ev) if ev.t <= t_step else (release_t, ev)
            for release_t, ev in self._pending
        ]

    def _release(self, t: float) -> List[StepEvent]:
        if not self._pending:
            return []
        self._pending.sort(key=lambda item: item[1].t)
        released = []
        while self._pending and self._pending[0][0] <= t:
            released.append(self._pending.pop(0)[1])
        return released
