"""
Attitude tracker: gyro-integrated quaternion with gravity and magnetic correction.

Maintains q_bw (body -> world) by integrating the body-frame angular rate
and nudging the result with two complementary corrections:

    Gravity correction:
        When the accel magnitude is close to g and the recent accel
        variance is small, the world-projected accel direction is rotated
        toward (0, 0, -1) by a fraction α_acc of the misalignment angle.

    Magnetic correction:
        The world-projected magnetic vector should point along +x (world x
        is horizontal magnetic north). Its horizontal angle is the yaw
        error; the tracker removes α_mag = 0.005 * c_mag of it per sample,
        provided c_mag is at least the acceptance floor (0.1).

The magnetometer confidence c_mag combines a field-magnitude score against
a learned local magnitude (1 within 20%, falling to 0 at 40%) and a gyro
score that penalizes fast rotation.

Heading output is the yaw of body +x, smoothed by a wrapped exponential
filter whose gain moves from 0.1 to 0.3 with c_mag. Raw heading jumps over
30° between consecutive readings are rejected.

Frame Conventions:
    - Inputs are calibrated body-frame vectors (biases removed, rotated by
      R_body_to_phone^T).
    - World frame: z up, x along horizontal magnetic north at start.
    - Quaternion: scalar-first, v_world = R(q_bw) @ v_body.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

import numpy as np

from pocket_pdr.coords.rotations import (
    axis_angle_to_quat,
    quat_integrate,
    quat_multiply,
    quat_normalize,
    quat_to_rotation_matrix,
    rotation_matrix_to_quat,
    yaw_from_rotation_matrix,
)
from pocket_pdr.sensors.types import GRAVITY, AttitudeState
from pocket_pdr.utils.angles import angle_diff, interpolate_angle, wrapped_ema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttitudeConfig:
    """Tuning constants for the attitude tracker."""

    gravity_gain: float = 0.02
    gravity_norm_tolerance: float = 0.5
    gravity_variance_threshold: float = 0.5
    mag_gain: float = 0.005
    mag_confidence_floor: float = 0.1
    mag_field_tolerance: float = 0.2
    mag_field_cutoff: float = 0.4
    mag_learn_samples: int = 5
    mag_learn_rate: float = 0.01
    gyro_confidence_scale: float = 1.0
    stability_window_s: float = 1.0
    stability_accel_variance: float = 0.05
    stability_gyro: float = 0.1
    min_variance_samples: int = 5
    heading_gain_min: float = 0.1
    heading_gain_max: float = 0.3
    heading_jump_limit: float = float(np.deg2rad(30.0))
    heading_jump_reanchor: int = 5
    heading_history_s: float = 3.0
    max_dt: float = 0.5

    def validate(self) -> List[str]:
        problems = []
        for name in ("gravity_gain", "mag_gain", "mag_learn_rate"):
            if not 0.0 < getattr(self, name) <= 1.0:
                problems.append(f"attitude.{name} must be in (0, 1]")
        if not 0.0 <= self.mag_confidence_floor <= 1.0:
            problems.append("attitude.mag_confidence_floor must be in [0, 1]")
        if not 0.0 < self.mag_field_tolerance < self.mag_field_cutoff:
            problems.append("attitude.mag_field_tolerance must be in (0, mag_field_cutoff)")
        if not 0.0 <= self.heading_gain_min <= self.heading_gain_max <= 1.0:
            problems.append("attitude heading gains must satisfy 0 <= min <= max <= 1")
        if self.stability_window_s <= 0 or self.heading_history_s <= 0:
            problems.append("attitude windows must be positive")
        if self.min_variance_samples < 2 or self.mag_learn_samples < 1:
            problems.append("attitude sample counts too small")
        return problems


def initial_attitude(accel_b: np.ndarray, mag_b: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Quaternion from one accel (and optionally mag) reading (TRIAD).

    Tilt comes from the gravity direction; yaw puts the horizontal part of
    the magnetic vector on world +x. Without a usable magnetic vector the
    body x-axis defines world x.

    Args:
        accel_b: Body-frame accel at rest, shape (3,). Points down.
        mag_b: Body-frame magnetic vector, shape (3,), or None.

    Returns:
        Unit quaternion q_bw.
    """
    norm_a = np.linalg.norm(accel_b)
    if not np.isfinite(norm_a) or norm_a < 1e-6:
        raise ValueError(f"accel_b must be a finite non-zero vector, got {accel_b}")
    up_b = -accel_b / norm_a

    north_b = None
    if mag_b is not None and np.all(np.isfinite(mag_b)):
        horizontal = mag_b - np.dot(mag_b, up_b) * up_b
        if np.linalg.norm(horizontal) > 1e-6:
            north_b = horizontal
    if north_b is None:
        for axis in (np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0])):
            horizontal = axis - np.dot(axis, up_b) * up_b
            if np.linalg.norm(horizontal) > 1e-3:
                north_b = horizontal
                break
    north_b = north_b / np.linalg.norm(north_b)
    west_b = np.cross(up_b, north_b)

    # Rows are the world axes expressed in body coordinates
    R_bw = np.vstack([north_b, west_b, up_b])
    return rotation_matrix_to_quat(R_bw)


class AttitudeTracker:
    """
    Complementary attitude filter producing AttitudeState snapshots.

    The tracker initializes from the first sample carrying a valid accel
    reading. Call `reset_clock()` after a pause so the next sample does not
    integrate the gap.

    Example:
        >>> tracker = AttitudeTracker()
        >>> state = tracker.update(0.0, np.array([0, 0, -9.81]), np.zeros(3),
        ...                        np.array([20.0, 0.0, 40.0]))
        >>> round(state.heading, 6)
        0.0
    """

    def __init__(self, config: Optional[AttitudeConfig] = None):
        self.config = config or AttitudeConfig()
        self.reset()

    def reset(self) -> None:
        """Forget the attitude; the next accel sample re-initializes it."""
        self.q_bw: Optional[np.ndarray] = None
        self._t_last: Optional[float] = None
        self._accel_norms: Deque[Tuple[float, float]] = deque()
        self._gyro_norms: Deque[Tuple[float, float]] = deque()
        self._mag_learning: List[float] = []
        self.mag_reference: Optional[float] = None
        self.mag_confidence = 0.0
        self._stability_ms = 0.0
        self._reference_age_ms = 0.0
        self._raw_heading: Optional[float] = None
        self._heading: Optional[float] = None
        self._heading_rejects = 0
        self._history: Deque[Tuple[float, float]] = deque()
        self.gravity_corrections = 0
        self.mag_corrections = 0
        self.heading_jumps_rejected = 0

    def reset_clock(self) -> None:
        """Drop the time reference so the next update does not integrate."""
        self._t_last = None

    @property
    def initialized(self) -> bool:
        return self.q_bw is not None

    def update(
        self,
        t: float,
        accel_b: np.ndarray,
        gyro_b: np.ndarray,
        mag_b: Optional[np.ndarray] = None,
    ) -> Optional[AttitudeState]:
        """
        Process one calibrated body-frame sample.

        Args:
            t: Sample time in seconds.
            accel_b: Accel in body frame (m/s²), NaN if unavailable.
            gyro_b: Angular rate in body frame (rad/s), NaN if unavailable.
            mag_b: Magnetic vector in body frame (µT), None or NaN if unavailable.

        Returns:
            AttitudeState, or None until a valid accel reading initializes
            the tracker.
        """
        cfg = self.config
        accel_ok = bool(np.all(np.isfinite(accel_b)))
        gyro_ok = bool(np.all(np.isfinite(gyro_b)))
        mag_ok = mag_b is not None and bool(np.all(np.isfinite(mag_b)))

        dt = 0.0 if self._t_last is None else min(max(t - self._t_last, 0.0), cfg.max_dt)
        self._t_last = t

        if self.q_bw is None:
            if not accel_ok:
                return None
            self.q_bw = initial_attitude(accel_b, mag_b if mag_ok else None)
            logger.debug(f"Attitude initialized at t={t:.3f} s")
        elif gyro_ok and dt > 0.0:
            # Step 1: gyro propagation
            self.q_bw = quat_integrate(self.q_bw, gyro_b, dt)

        # Step 2: sliding windows of accel and gyro magnitudes
        accel_norm = float(np.linalg.norm(accel_b)) if accel_ok else np.nan
        gyro_norm = float(np.linalg.norm(gyro_b)) if gyro_ok else np.nan
        self._push_window(self._accel_norms, t, accel_norm)
        self._push_window(self._gyro_norms, t, gyro_norm)
        accel_variance = self._window_variance()
        mean_gyro = self._window_mean(self._gyro_norms)

        # Step 3: gravity correction
        gravity_referenced = False
        if (
            accel_ok
            and abs(accel_norm - GRAVITY) < cfg.gravity_norm_tolerance
            and accel_variance < cfg.gravity_variance_threshold
        ):
            self._correct_gravity(accel_b)
            gravity_referenced = True

        # Step 4: magnetic confidence and correction
        if mag_ok:
            self.mag_confidence = self._mag_confidence(float(np.linalg.norm(mag_b)), mean_gyro)
            if self.mag_confidence >= cfg.mag_confidence_floor:
                self._correct_mag(mag_b)
        else:
            self.mag_confidence = 0.0

        # Step 5: stability bookkeeping
        is_stable = bool(
            gyro_ok
            and accel_variance < cfg.stability_accel_variance
            and gyro_norm < cfg.stability_gyro
        )
        self._stability_ms = self._stability_ms + dt * 1000.0 if is_stable else 0.0
        if is_stable or gravity_referenced:
            self._reference_age_ms = 0.0
        else:
            self._reference_age_ms += dt * 1000.0

        # Step 6: heading output
        R = quat_to_rotation_matrix(self.q_bw)
        raw_heading = yaw_from_rotation_matrix(R)
        heading = self._smooth_heading(raw_heading)
        self._history.append((t, heading))
        while self._history and self._history[0][0] < t - cfg.heading_history_s:
            self._history.popleft()

        omega_world = R @ gyro_b if gyro_ok else np.zeros(3)
        return AttitudeState(
            t=t,
            q_bw=self.q_bw.copy(),
            omega_world=omega_world,
            is_stable=is_stable,
            stability_ms=int(self._stability_ms),
            accel_variance=accel_variance,
            mag_confidence=self.mag_confidence,
            heading=heading,
            raw_heading=raw_heading,
            reference_age_ms=self._reference_age_ms,
        )

    def heading_at(self, t: float) -> float:
        """
        Smoothed heading interpolated at time `t` from the recent history.

        Times before the retained history return the oldest heading; times
        after it return the newest.
        """
        if not self._history:
            raise RuntimeError("AttitudeTracker has no heading history yet")
        history = self._history
        if t <= history[0][0]:
            return history[0][1]
        if t >= history[-1][0]:
            return history[-1][1]
        # History is short (a few seconds); scan from the newest end
        for i in range(len(history) - 1, 0, -1):
            t0, h0 = history[i - 1]
            t1, h1 = history[i]
            if t0 <= t <= t1:
                return interpolate_angle(t0, h0, t1, h1, t)
        return history[-1][1]

    def _push_window(self, window: Deque[Tuple[float, float]], t: float, value: float) -> None:
        if np.isfinite(value):
            window.append((t, value))
        while window and window[0][0] < t - self.config.stability_window_s:
            window.popleft()

    def _window_variance(self) -> float:
        if len(self._accel_norms) < self.config.min_variance_samples:
            return float("inf")
        return float(np.var([v for _, v in self._accel_norms]))

    @staticmethod
    def _window_mean(window: Deque[Tuple[float, float]]) -> float:
        if not window:
            return 0.0
        return float(np.mean([v for _, v in window]))

    def _correct_gravity(self, accel_b: np.ndarray) -> None:
        R = quat_to_rotation_matrix(self.q_bw)
        a_w = R @ (accel_b / np.linalg.norm(accel_b))
        target = np.array([0.0, 0.0, -1.0])
        axis = np.cross(a_w, target)
        angle = float(np.arctan2(np.linalg.norm(axis), np.dot(a_w, target)))
        if angle < 1e-9:
            return
        dq = axis_angle_to_quat(axis, self.config.gravity_gain * angle)
        # World-frame correction: left-multiply
        self.q_bw = quat_normalize(quat_multiply(dq, self.q_bw))
        self.gravity_corrections += 1

    def _correct_mag(self, mag_b: np.ndarray) -> None:
        R = quat_to_rotation_matrix(self.q_bw)
        m_w = R @ mag_b
        if np.hypot(m_w[0], m_w[1]) < 1e-6:
            return
        yaw_error = float(np.arctan2(m_w[1], m_w[0]))
        gain = self.config.mag_gain * self.mag_confidence
        dq = axis_angle_to_quat(np.array([0.0, 0.0, 1.0]), -gain * yaw_error)
        self.q_bw = quat_normalize(quat_multiply(dq, self.q_bw))
        self.mag_corrections += 1

    def _mag_confidence(self, field: float, mean_gyro: float) -> float:
        cfg = self.config
        if self.mag_reference is None:
            self._mag_learning.append(field)
            if len(self._mag_learning) < cfg.mag_learn_samples:
                return 0.0
            self.mag_reference = float(np.median(self._mag_learning))
            logger.debug(f"Learned local field magnitude {self.mag_reference:.1f} uT")
        if self.mag_reference <= 0:
            return 0.0

        error = abs(field - self.mag_reference) / self.mag_reference
        if error <= cfg.mag_field_tolerance:
            field_score = 1.0
        else:
            span = cfg.mag_field_cutoff - cfg.mag_field_tolerance
            field_score = max(0.0, 1.0 - (error - cfg.mag_field_tolerance) / span)
        gyro_score = 1.0 / (1.0 + mean_gyro / cfg.gyro_confidence_scale)
        confidence = float(np.clip(field_score * gyro_score, 0.0, 1.0))

        # Track slow changes of the local field only when it is trustworthy
        if field_score == 1.0 and mean_gyro < cfg.stability_gyro:
            self.mag_reference += cfg.mag_learn_rate * (field - self.mag_reference)
        return confidence

    def _smooth_heading(self, raw: float) -> float:
        cfg = self.config
        if self._heading is None:
            self._raw_heading = raw
            self._heading = raw
            return raw

        if abs(angle_diff(raw, self._raw_heading)) > cfg.heading_jump_limit:
            self._heading_rejects += 1
            self.heading_jumps_rejected += 1
            if self._heading_rejects < cfg.heading_jump_reanchor:
                return self._heading
            # The jump persisted: accept the new raw heading as the baseline
            logger.debug(f"Heading re-anchored after {self._heading_rejects} rejected jumps")
            self._raw_heading = raw
            self._heading = raw
            self._heading_rejects = 0
            return raw

        self._heading_rejects = 0
        self._raw_heading = raw
        gain = cfg.heading_gain_min + (cfg.heading_gain_max - cfg.heading_gain_min) * self.mag_confidence
        self._heading = wrapped_ema(self._heading, raw, gain)
        return self._heading
