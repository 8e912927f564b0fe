"""
Planar pose EKF fusing stride displacements and heading observations.

State x = (px, py, θ), covariance P (3x3).

    Process noise:
        q_xy = 0.01 m² per second since the previous stride (added to P_xx
        and P_yy at each predict), q_θ = (0.01 rad)² per second (added to
        P_θθ at every sample through time_update()).

    Predict (every stride sample):
        x⁻ = x + u,  u = (Δx, Δy, 0)

    Displacement update:
        z = u observed through h(x) = x_xy - x_anchor, where x_anchor is the
        position before the predict. R_u = σ_s² I with
        σ_s = 0.05 m / max(0.1, step_confidence). The θ row carries infinite
        noise and is left out of H.

    Heading update:
        z = θ_attitude, H = [0, 0, 1], R_θ = (5° / max(0.1, c_mag))².
        The innovation is wrapped to (-π, π] and gated at 30°. Observations
        with c_mag below 0.1 are gated off. The first accepted observation
        initializes θ; after a long run of gated observations θ is
        re-acquired from the observation with an inflated variance.

Both updates use the Joseph form for the covariance.

Confidence:
    1 / (1 + trace(P_xy)), multiplied by a linear decay of
    `confidence_decay_per_s` per second since the last accepted update and
    clipped to [0, 1]. Zero before the first update.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from pocket_pdr.errors import NumericalInstability
from pocket_pdr.estimators.base import StateEstimator
from pocket_pdr.sensors.types import Pose
from pocket_pdr.utils.angles import angle_diff, wrap_angle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoseEKFConfig:
    """Noise and gating constants of the pose EKF."""

    q_xy: float = 0.01
    q_theta: float = 0.01 ** 2
    initial_position_var: float = 0.01
    initial_heading_var: float = float(np.deg2rad(10.0)) ** 2
    stride_sigma_m: float = 0.05
    heading_sigma: float = float(np.deg2rad(5.0))
    min_quality: float = 0.1
    mag_confidence_floor: float = 0.1
    heading_gate: float = float(np.deg2rad(30.0))
    reacquire_after: int = 25
    confidence_decay_per_s: float = 0.05
    max_predict_dt: float = 10.0

    def validate(self) -> List[str]:
        problems = []
        for name in ("q_xy", "q_theta", "initial_position_var", "initial_heading_var",
                     "stride_sigma_m", "heading_sigma", "heading_gate"):
            if not getattr(self, name) > 0:
                problems.append(f"ekf.{name} must be positive")
        if not 0.0 < self.min_quality <= 1.0:
            problems.append("ekf.min_quality must be in (0, 1]")
        if self.reacquire_after < 1:
            problems.append("ekf.reacquire_after must be >= 1")
        if self.confidence_decay_per_s < 0:
            problems.append("ekf.confidence_decay_per_s must be >= 0")
        return problems


class PoseEKF(StateEstimator):
    """
    Three-state pose filter (px, py, θ).

    Attributes:
        heading_updates: accepted heading observations
        heading_gated: heading observations refused by the c_mag floor or the
            innovation gate
        heading_reacquired: times θ was re-acquired after a gated run
        numerical_resets: soft resets after a non-finite state

    Example:
        >>> ekf = PoseEKF()
        >>> ekf.update_heading(0.0, mag_confidence=1.0, t=0.0)
        True
        >>> ekf.predict(np.array([0.75, 0.0]), t=0.5)
        >>> ekf.update_displacement(np.array([0.75, 0.0]), step_confidence=0.9, t=0.5)
        >>> ekf.pose(0.5).x
        0.75
    """

    def __init__(self, config: Optional[PoseEKFConfig] = None, t0: float = 0.0):
        super().__init__(state_dim=3)
        self.config = config or PoseEKFConfig()
        cfg = self.config
        self.P0 = np.diag([cfg.initial_position_var, cfg.initial_position_var, cfg.initial_heading_var])
        self.state = np.zeros(3)
        self.covariance = self.P0.copy()
        self._last_good_state = self.state.copy()
        self._anchor = self.state[:2].copy()
        self._t_theta = t0
        self._t_predict = t0
        self._t_last_update: Optional[float] = None
        self._heading_initialized = False
        self._consecutive_gated = 0
        self.heading_updates = 0
        self.heading_gated = 0
        self.heading_reacquired = 0
        self.numerical_resets = 0

    def time_update(self, t: float) -> None:
        """Grow the heading variance by q_θ for the time elapsed since the last call."""
        dt = t - self._t_theta
        if dt > 0:
            self.covariance[2, 2] += self.config.q_theta * dt
            self._t_theta = t

    def predict(self, u: Optional[np.ndarray] = None, t: Optional[float] = None) -> None:
        """
        Propagate the state by a stride displacement.

        Args:
            u: Displacement (Δx, Δy) or (Δx, Δy, 0) in meters.
            t: Stride time in seconds.
        """
        if u is None:
            u = np.zeros(2)
        u = np.asarray(u, dtype=float)
        if u.shape not in ((2,), (3,)):
            raise ValueError(f"u must have shape (2,) or (3,), got {u.shape}")
        if t is None:
            t = self._t_predict
        self.time_update(t)

        dt = float(np.clip(t - self._t_predict, 0.0, self.config.max_predict_dt))
        self._t_predict = max(self._t_predict, t)

        self._anchor = self.state[:2].copy()
        self.state[:2] = self.state[:2] + u[:2]
        self.covariance[0, 0] += self.config.q_xy * dt
        self.covariance[1, 1] += self.config.q_xy * dt
        self._check_numerics()

    def update_displacement(self, u: np.ndarray, step_confidence: float, t: float) -> None:
        """
        Observe the stride displacement just applied by predict().

        Args:
            u: Displacement (Δx, Δy) in meters.
            step_confidence: Step confidence in [0, 1].
            t: Stride time in seconds.
        """
        z = np.asarray(u, dtype=float)[:2]
        sigma = self.config.stride_sigma_m / max(self.config.min_quality, step_confidence)
        H = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        R = sigma ** 2 * np.eye(2)
        innovation = z - (self.state[:2] - self._anchor)
        self._joseph_update(H, R, innovation)
        self._mark_updated(t)

    def update_heading(self, theta: float, mag_confidence: float, t: float) -> bool:
        """
        Observe the attitude heading.

        Args:
            theta: Heading observation in radians.
            mag_confidence: c_mag of the attitude tracker.
            t: Observation time in seconds.

        Returns:
            True if the observation was applied.
        """
        cfg = self.config
        self.time_update(t)
        if mag_confidence < cfg.mag_confidence_floor:
            self.heading_gated += 1
            return False

        sigma = cfg.heading_sigma / max(cfg.min_quality, mag_confidence)
        R = np.array([[sigma ** 2]])

        if not self._heading_initialized:
            self._set_heading(theta, sigma ** 2)
            self._heading_initialized = True
            self.heading_updates += 1
            self._mark_updated(t)
            return True

        innovation = angle_diff(theta, self.state[2])
        if abs(innovation) > cfg.heading_gate:
            self._consecutive_gated += 1
            if self._consecutive_gated < cfg.reacquire_after:
                self.heading_gated += 1
                return False
            logger.info(
                f"Heading re-acquired after {self._consecutive_gated} gated observations "
                f"(innovation {np.rad2deg(innovation):.1f} deg)"
            )
            self._set_heading(theta, sigma ** 2 + innovation ** 2)
            self.heading_reacquired += 1
            self._mark_updated(t)
            return True

        H = np.array([[0.0, 0.0, 1.0]])
        self._joseph_update(H, R, np.array([innovation]))
        self.state[2] = wrap_angle(self.state[2])
        self.heading_updates += 1
        self._mark_updated(t)
        return True

    def confidence(self, t: float) -> float:
        """Pose confidence in [0, 1] at time `t`."""
        if self._t_last_update is None:
            return 0.0
        base = 1.0 / (1.0 + float(np.trace(self.covariance[:2, :2])))
        decay = max(0.0, 1.0 - self.config.confidence_decay_per_s * max(0.0, t - self._t_last_update))
        return float(np.clip(base * decay, 0.0, 1.0))

    def pose(self, t: float, health: float = 1.0) -> Pose:
        """Current pose; `health` in [0, 1] scales the confidence."""
        health = float(np.clip(health, 0.0, 1.0))
        return Pose(
            x=float(self.state[0]),
            y=float(self.state[1]),
            theta=wrap_angle(self.state[2]),
            confidence=self.confidence(t) * health,
            t=t,
        )

    @property
    def heading_variance(self) -> float:
        return float(self.covariance[2, 2])

    def soft_reset(self) -> None:
        """Reset P to its initial value and restore the last finite state."""
        if not np.all(np.isfinite(self.state)):
            self.state = self._last_good_state.copy()
        self.covariance = self.P0.copy()
        self._anchor = self.state[:2].copy()
        self.numerical_resets += 1
        logger.warning("Pose EKF covariance reset after numerical failure")

    def reset_position(self, xy: np.ndarray, inflation_var: float = 0.0) -> None:
        """Move the position estimate and inflate its variance."""
        xy = np.asarray(xy, dtype=float)
        if xy.shape != (2,):
            raise ValueError(f"xy must have shape (2,), got {xy.shape}")
        self.state[:2] = xy
        self._anchor = xy.copy()
        self.covariance[0, 0] += inflation_var
        self.covariance[1, 1] += inflation_var
        self._check_numerics()

    def shift_time(self, gap: float) -> None:
        """Advance internal timestamps by `gap` seconds (pause/resume)."""
        if gap <= 0:
            return
        self._t_theta += gap
        self._t_predict += gap
        if self._t_last_update is not None:
            self._t_last_update += gap

    def _set_heading(self, theta: float, variance: float) -> None:
        self.state[2] = wrap_angle(theta)
        self.covariance[2, :] = 0.0
        self.covariance[:, 2] = 0.0
        self.covariance[2, 2] = variance

    def _joseph_update(self, H: np.ndarray, R: np.ndarray, innovation: np.ndarray) -> None:
        P = self.covariance
        S = H @ P @ H.T + R
        K = P @ H.T @ np.linalg.inv(S)
        self.state = self.state + K @ innovation
        I_KH = np.eye(self.state_dim) - K @ H
        self.covariance = I_KH @ P @ I_KH.T + K @ R @ K.T
        self._check_numerics()

    def _mark_updated(self, t: float) -> None:
        self._consecutive_gated = 0
        if self._t_last_update is None or t > self._t_last_update:
            self._t_last_update = t

    def _check_numerics(self) -> None:
        if not (np.all(np.isfinite(self.state)) and np.all(np.isfinite(self.covariance))):
            raise NumericalInstability("pose EKF state or covariance is not finite")
        self._last_good_state = self.state.copy()
