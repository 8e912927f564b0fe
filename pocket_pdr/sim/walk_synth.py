"""
Synthetic pocket IMU streams.

Builds raw SensorSample sequences for a walker described as a list of
segments, together with the ground-truth heading, track and step times.

Body frame: x forward, y left, z up; level when the walker is upright.
World frame: x magnetic north, z up, heading counter-clockwise. The
accelerometer reports the gravity vector, (0, 0, -g) at rest, and an
upward push of a_up shows up as (R_bw · a)_z = -g - a_up.

Each step has a 500 ms (by default) vertical profile

    a_up(τ) = peak · sin(2πτ)      for τ in [0, 0.5)
    a_up(τ) = trough · sin(2πτ)    for τ in [0.5, 1)

so the footfall peak sits at τ = 0.25, plus a forward sway along body x
that gives the calibrator a principal horizontal axis.

Example:
    >>> session = synthesize_session(
    ...     [StationarySegment(2.0), WalkSegment(steps=10), StationarySegment(1.0)]
    ... )
    >>> len(session.step_times)
    10
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

import numpy as np

from pocket_pdr.coords.rotations import is_rotation_matrix, rotation_about_z
from pocket_pdr.sensors.types import GRAVITY, NS_PER_S, SensorSample

# Local field in the world frame (µT)
DEFAULT_MAG_FIELD = np.array([20.0, 0.0, 40.0])


# ============================================================================
# SEGMENTS
# ============================================================================

@dataclass(frozen=True)
class StationarySegment:
    """Walker standing still."""

    duration_s: float


@dataclass(frozen=True)
class WalkSegment:
    """
    Straight walk at the current heading.

    Attributes:
        steps: Number of footfalls.
        step_period_s: Time between footfalls.
        peak: Vertical acceleration peak (m/s²).
        trough: Vertical acceleration trough magnitude (m/s²).
        forward_amplitude: Forward sway amplitude (m/s²).
        stride_m: Ground-truth stride length.
    """

    steps: int
    step_period_s: float = 0.5
    peak: float = 1.2
    trough: float = 0.5
    forward_amplitude: float = 0.8
    stride_m: float = 0.7

    @property
    def duration_s(self) -> float:
        return self.steps * self.step_period_s


@dataclass(frozen=True)
class TurnSegment:
    """Turn in place by `angle_deg` (positive = left) at a constant rate."""

    angle_deg: float
    duration_s: float = 1.0


Segment = Union[StationarySegment, WalkSegment, TurnSegment]


@dataclass(frozen=True)
class MagneticInterference:
    """Scale the field magnitude by `field_scale` over [start_s, start_s + duration_s)."""

    start_s: float
    duration_s: float
    field_scale: float = 1.39


@dataclass
class SyntheticSession:
    """
    Generated stream plus ground truth.

    Attributes:
        samples: Raw phone-frame samples.
        t: Sample times relative to the first sample (N,).
        heading: True body heading (N,) in radians.
        position: True position (N, 2) in meters, updated at each footfall.
        step_times: Footfall (peak) times relative to the first sample.
        R_body_to_phone: Mounting rotation used.
    """

    samples: List[SensorSample]
    t: np.ndarray
    heading: np.ndarray
    position: np.ndarray
    step_times: List[float] = field(default_factory=list)
    R_body_to_phone: np.ndarray = field(default_factory=lambda: np.eye(3))

    @property
    def final_position(self) -> np.ndarray:
        return self.position[-1]


def step_profile(tau: np.ndarray, peak: float = 1.2, trough: float = 0.5) -> np.ndarray:
    """Upward acceleration over one step, `tau` in [0, 1)."""
    wave = np.sin(2.0 * np.pi * tau)
    return np.where(tau < 0.5, peak * wave, trough * wave)


# ============================================================================
# STREAM GENERATION
# ============================================================================

def synthesize_session(
    segments: Sequence[Segment],
    sample_rate_hz: float = 50.0,
    start_ns: int = 0,
    initial_heading: float = 0.0,
    R_body_to_phone: Optional[np.ndarray] = None,
    gyro_bias: Optional[np.ndarray] = None,
    accel_noise_std: float = 0.0,
    gyro_noise_std: float = 0.0,
    mag_noise_std: float = 0.0,
    mag_field: Optional[np.ndarray] = None,
    interference: Sequence[MagneticInterference] = (),
    seed: Optional[int] = None,
) -> SyntheticSession:
    """
    Generate a raw sample stream for a sequence of segments.

    Args:
        segments: Walker activity in order.
        sample_rate_hz: Output rate.
        start_ns: Timestamp of the first sample.
        initial_heading: Heading at the start (radians).
        R_body_to_phone: Phone mounting, v_phone = R @ v_body. Identity if None.
        gyro_bias: Constant phone-frame gyro bias (rad/s).
        accel_noise_std: White noise on each accel axis (m/s²).
        gyro_noise_std: White noise on each gyro axis (rad/s).
        mag_noise_std: White noise on each mag axis (µT).
        mag_field: World-frame magnetic field; DEFAULT_MAG_FIELD if None.
        interference: Windows of disturbed field magnitude.
        seed: Random seed for the noise.

    Returns:
        SyntheticSession with samples and ground truth.
    """
    if sample_rate_hz <= 0:
        raise ValueError(f"sample_rate_hz must be positive, got {sample_rate_hz}")
    R_bp = np.eye(3) if R_body_to_phone is None else np.asarray(R_body_to_phone, dtype=float)
    if R_bp.shape != (3, 3) or not is_rotation_matrix(R_bp):
        raise ValueError("R_body_to_phone must be a (3, 3) proper rotation matrix")
    bias = np.zeros(3) if gyro_bias is None else np.asarray(gyro_bias, dtype=float)
    m_w = DEFAULT_MAG_FIELD if mag_field is None else np.asarray(mag_field, dtype=float)
    rng = np.random.default_rng(seed)
    dt = 1.0 / sample_rate_hz

    # Step 1: per-sample body kinematics for every segment
    t_parts, psi_parts, up_parts, fwd_parts, rate_parts = [], [], [], [], []
    step_times: List[float] = []
    step_strides: List[float] = []
    t0 = 0.0
    psi = initial_heading
    for segment in segments:
        n = int(round(segment.duration_s * sample_rate_hz))
        if n <= 0:
            continue
        t_seg = t0 + dt * np.arange(n)
        local = t_seg - t0
        a_up = np.zeros(n)
        a_fwd = np.zeros(n)
        yaw_rate = np.zeros(n)
        psi_seg = np.full(n, psi)
        if isinstance(segment, WalkSegment):
            tau = np.mod(local / segment.step_period_s, 1.0)
            a_up = step_profile(tau, segment.peak, segment.trough)
            a_fwd = segment.forward_amplitude * np.cos(2.0 * np.pi * tau)
            for i in range(segment.steps):
                step_times.append(t0 + (i + 0.25) * segment.step_period_s)
                step_strides.append(segment.stride_m)
        elif isinstance(segment, TurnSegment):
            rate = np.deg2rad(segment.angle_deg) / segment.duration_s
            yaw_rate = np.full(n, rate)
            psi_seg = psi + rate * local
            psi = psi + np.deg2rad(segment.angle_deg)
        elif not isinstance(segment, StationarySegment):
            raise TypeError(f"unknown segment type {type(segment).__name__}")
        t_parts.append(t_seg)
        psi_parts.append(psi_seg)
        up_parts.append(a_up)
        fwd_parts.append(a_fwd)
        rate_parts.append(yaw_rate)
        t0 += n * dt

    if not t_parts:
        raise ValueError("segments produce no samples")
    t = np.concatenate(t_parts)
    heading = np.concatenate(psi_parts)
    a_up = np.concatenate(up_parts)
    a_fwd = np.concatenate(fwd_parts)
    yaw_rate = np.concatenate(rate_parts)
    N = len(t)

    # Step 2: ground-truth track, advanced at each footfall
    position = np.zeros((N, 2))
    xy = np.zeros(2)
    k = 0
    for step_t, stride in zip(step_times, step_strides):
        while k < N and t[k] < step_t:
            position[k] = xy
            k += 1
        i = min(k, N - 1)
        xy = xy + stride * np.array([np.cos(heading[i]), np.sin(heading[i])])
    position[k:] = xy

    # Step 3: sensor readings in body frame, then phone frame
    field_scale = np.ones(N)
    for window in interference:
        mask = (t >= window.start_s) & (t < window.start_s + window.duration_s)
        field_scale[mask] = window.field_scale

    samples = []
    period_ns = NS_PER_S / sample_rate_hz
    for k in range(N):
        R_wb = rotation_about_z(heading[k]).T
        accel_b = np.array([a_fwd[k], 0.0, -GRAVITY - a_up[k]])
        gyro_b = np.array([0.0, 0.0, yaw_rate[k]])
        accel_p = R_bp @ accel_b + accel_noise_std * rng.standard_normal(3)
        gyro_p = R_bp @ gyro_b + bias + gyro_noise_std * rng.standard_normal(3)
        mag_b = field_scale[k] * (R_wb @ m_w)
        mag_p = R_bp @ mag_b + mag_noise_std * rng.standard_normal(3)
        samples.append(
            SensorSample(
                t_ns=start_ns + int(round(k * period_ns)),
                accel=accel_p,
                gyro=gyro_p,
                mag=mag_p,
            )
        )

    return SyntheticSession(
        samples=samples,
        t=t,
        heading=heading,
        position=position,
        step_times=step_times,
        R_body_to_phone=R_bp,
    )
