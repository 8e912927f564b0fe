"""
Data structures shared by the pocket PDR pipeline.

This module defines the value types that flow between the pipeline stages:
    - Raw and unified inertial samples (accelerometer, gyroscope, magnetometer)
    - Calibration snapshots (valid and degraded variants)
    - Attitude snapshots emitted by the attitude tracker
    - Step events, stride samples, poses and trajectory points
    - The user profile consumed by the stride model

All structures are frozen dataclasses. Array fields are copied on
construction and marked read-only, so a snapshot handed to a consumer can
never be changed underneath the pipeline.

Time Base Convention:
    Raw samples and platform step events carry integer monotonic
    nanoseconds (t_ns). Everything downstream of the intake uses float
    seconds (t = t_ns * 1e-9).

Frame Conventions:
    - Phone frame: fixed to the handset; raw samples arrive in it.
    - Body frame: fixed to the walker's torso, x forward, z up.
      v_phone = R_body_to_phone @ v_body.
    - World frame: local level frame, z up, x along horizontal magnetic
      north at session start, heading counter-clockwise positive.

Accelerometer Convention:
    A level device at rest reports (0, 0, -g): the gravity vector, not
    the specific force.
"""

from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import Optional, Tuple

import numpy as np

from pocket_pdr.coords.rotations import is_rotation_matrix


GRAVITY = 9.81
"""Standard gravity magnitude in m/s²."""

NS_PER_S = 1_000_000_000


def _frozen_array(name: str, value, shape: Tuple[int, ...]) -> np.ndarray:
    arr = np.array(value, dtype=np.float64, copy=True)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    arr.setflags(write=False)
    return arr


class SensorChannel(IntFlag):
    """Bit flags naming the three inertial channels."""

    NONE = 0
    ACCEL = 1
    GYRO = 2
    MAG = 4
    ALL = ACCEL | GYRO | MAG


CHANNEL_NAMES = {
    SensorChannel.ACCEL: "accel",
    SensorChannel.GYRO: "gyro",
    SensorChannel.MAG: "mag",
}


@dataclass(frozen=True)
class SensorSample:
    """
    One raw sample from the platform, in the phone frame.

    Any channel may be missing; `valid_flags` tells which are present.

    Attributes:
        t_ns: Monotonic timestamp in nanoseconds.
        accel: Accelerometer reading [ax, ay, az] in m/s², or None.
        gyro: Gyroscope reading [gx, gy, gz] in rad/s, or None.
        mag: Magnetometer reading [mx, my, mz] in µT, or None.
    """

    t_ns: int
    accel: Optional[np.ndarray] = None
    gyro: Optional[np.ndarray] = None
    mag: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if int(self.t_ns) != self.t_ns or self.t_ns < 0:
            raise ValueError(f"t_ns must be a non-negative integer, got {self.t_ns}")
        object.__setattr__(self, "t_ns", int(self.t_ns))
        for name in ("accel", "gyro", "mag"):
            value = getattr(self, name)
            if value is None:
                continue
            arr = _frozen_array(name, value, (3,))
            if not np.all(np.isfinite(arr)):
                raise ValueError(f"{name} must be finite, got {arr}")
            object.__setattr__(self, name, arr)

    @property
    def t(self) -> float:
        """Timestamp in seconds."""
        return self.t_ns / NS_PER_S

    @property
    def valid_flags(self) -> SensorChannel:
        flags = SensorChannel.NONE
        if self.accel is not None:
            flags |= SensorChannel.ACCEL
        if self.gyro is not None:
            flags |= SensorChannel.GYRO
        if self.mag is not None:
            flags |= SensorChannel.MAG
        return flags


@dataclass(frozen=True)
class UnifiedSample:
    """
    A time-aligned triple of accel, gyro and mag readings.

    Channels never seen yet hold NaN and are absent from `valid_flags`.
    Channels filled from their last valid value appear in both
    `valid_flags` and `filled_flags`.
    """

    t_ns: int
    accel: np.ndarray
    gyro: np.ndarray
    mag: np.ndarray
    valid_flags: SensorChannel
    filled_flags: SensorChannel = SensorChannel.NONE

    def __post_init__(self) -> None:
        for name in ("accel", "gyro", "mag"):
            object.__setattr__(self, name, _frozen_array(name, getattr(self, name), (3,)))

    @property
    def t(self) -> float:
        return self.t_ns / NS_PER_S

    def has(self, channel: SensorChannel) -> bool:
        """True if `channel` carries a real or filled reading."""
        return bool(self.valid_flags & channel)


@dataclass(frozen=True)
class CalibrationState:
    """
    Immutable calibration snapshot.

    Attributes:
        accel_bias: Accelerometer bias in the phone frame (m/s²).
        gyro_bias: Gyroscope bias in the phone frame (rad/s).
        mag_bias: Hard-iron magnetometer bias in the phone frame (µT).
        R_body_to_phone: Rotation with v_phone = R @ v_body. Must be a
            proper rotation (det = +1, orthonormal columns).
        avg_gravity_body: Mean gravity vector expressed in the body frame
            over the calibration window (m/s²).
        valid_until_ns: Monotonic timestamp after which the snapshot
            must be re-estimated.

    Use the `ValidCalibration` and `DegradedCalibration` variants; the base
    class is never instantiated by the pipeline.
    """

    accel_bias: np.ndarray
    gyro_bias: np.ndarray
    mag_bias: np.ndarray
    R_body_to_phone: np.ndarray
    avg_gravity_body: np.ndarray
    valid_until_ns: int

    def __post_init__(self) -> None:
        for name in ("accel_bias", "gyro_bias", "mag_bias", "avg_gravity_body"):
            object.__setattr__(self, name, _frozen_array(name, getattr(self, name), (3,)))
        R = _frozen_array("R_body_to_phone", self.R_body_to_phone, (3, 3))
        if not is_rotation_matrix(R):
            raise ValueError("R_body_to_phone must be a proper rotation matrix")
        object.__setattr__(self, "R_body_to_phone", R)
        object.__setattr__(self, "valid_until_ns", int(self.valid_until_ns))

    @property
    def is_degraded(self) -> bool:
        return False

    def is_valid_at(self, t_ns: int) -> bool:
        """True while `t_ns` precedes the validity deadline."""
        return t_ns < self.valid_until_ns


@dataclass(frozen=True)
class ValidCalibration(CalibrationState):
    """Calibration estimated from a successful walking window."""


@dataclass(frozen=True)
class DegradedCalibration(CalibrationState):
    """Coarse calibration used when estimation failed.

    Identity rotation and zero biases unless stated otherwise; tracking
    proceeds with reduced confidence.
    """

    reason: str = ""

    @property
    def is_degraded(self) -> bool:
        return True

    @classmethod
    def coarse(cls, valid_until_ns: int, reason: str = "") -> "DegradedCalibration":
        """Identity rotation, zero biases, nominal gravity."""
        return cls(
            accel_bias=np.zeros(3),
            gyro_bias=np.zeros(3),
            mag_bias=np.zeros(3),
            R_body_to_phone=np.eye(3),
            avg_gravity_body=np.array([0.0, 0.0, -GRAVITY]),
            valid_until_ns=valid_until_ns,
            reason=reason,
        )


@dataclass(frozen=True)
class AttitudeState:
    """
    Attitude snapshot after one IMU sample.

    Attributes:
        t: Sample time in seconds.
        q_bw: Unit quaternion [qw, qx, qy, qz], body -> world.
        omega_world: Angular rate rotated into the world frame (rad/s).
        is_stable: Accel variance over 1 s below threshold and gyro
            magnitude below threshold.
        stability_ms: Duration of the current run of stable samples.
        accel_variance: Variance of the accel magnitude over the last 1 s.
        mag_confidence: c_mag in [0, 1].
        heading: Smoothed heading of body +x in (-π, π].
        raw_heading: Unsmoothed heading from q_bw in (-π, π].
        reference_age_ms: Time since the attitude last had a gravity
            reference (stable sample or accepted gravity correction).
    """

    t: float
    q_bw: np.ndarray
    omega_world: np.ndarray
    is_stable: bool
    stability_ms: int
    accel_variance: float
    mag_confidence: float
    heading: float
    raw_heading: float
    reference_age_ms: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "q_bw", _frozen_array("q_bw", self.q_bw, (4,)))
        object.__setattr__(
            self, "omega_world", _frozen_array("omega_world", self.omega_world, (3,))
        )
        if not 0.0 <= self.mag_confidence <= 1.0:
            raise ValueError(f"mag_confidence must be in [0, 1], got {self.mag_confidence}")


class StepSource(Enum):
    """Where a step event came from."""

    NATIVE = "native"
    DETECTED = "detected"


class DetectionMethod(Enum):
    """Signal path used by the step detector."""

    VERTICAL = "vertical"
    MAGNITUDE_FALLBACK = "magnitude_fallback"


@dataclass(frozen=True)
class StepEvent:
    """
    A single emitted footfall. Immutable once emitted.

    Attributes:
        t: Step time in seconds (time of the acceleration peak).
        vertical_peak_magnitude: Peak of the detection signal (m/s²).
        cadence_hz: Rolling cadence at this step.
        inter_step_ms: Time since the previous emitted step (0 for the first).
        confidence: Step confidence in [0, 1].
        source: NATIVE when confirmed by a platform step event.
        method: Signal path that produced the candidate.
        native_total_steps: Platform step counter, NATIVE only.
        platform_length_m: Platform-supplied stride length, NATIVE only.
    """

    t: float
    vertical_peak_magnitude: float
    cadence_hz: float
    inter_step_ms: float
    confidence: float
    source: StepSource = StepSource.DETECTED
    method: DetectionMethod = DetectionMethod.VERTICAL
    native_total_steps: Optional[int] = None
    platform_length_m: Optional[float] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if self.cadence_hz <= 0:
            raise ValueError(f"cadence_hz must be positive, got {self.cadence_hz}")
        if self.source is StepSource.DETECTED and self.platform_length_m is not None:
            raise ValueError("platform_length_m is only carried by native steps")


@dataclass(frozen=True)
class PlatformStepEvent:
    """Step notification from the platform pedometer.

    `total_steps` is the platform's cumulative counter and must be
    monotonic non-decreasing; `length_m` is optional.
    """

    t_ns: int
    total_steps: int
    length_m: Optional[float] = None

    def __post_init__(self) -> None:
        if self.length_m is not None and not self.length_m > 0:
            raise ValueError(f"length_m must be positive, got {self.length_m}")

    @property
    def t(self) -> float:
        return self.t_ns / NS_PER_S


@dataclass(frozen=True)
class StrideSample:
    """A step event turned into a metric displacement."""

    step_event: StepEvent
    delta_s: float
    heading: float

    def __post_init__(self) -> None:
        if not self.delta_s > 0:
            raise ValueError(f"delta_s must be positive, got {self.delta_s}")

    @property
    def displacement(self) -> np.ndarray:
        """World-frame displacement (Δx, Δy) in meters."""
        return self.delta_s * np.array([np.cos(self.heading), np.sin(self.heading)])


@dataclass(frozen=True)
class Pose:
    """Planar pose estimate with confidence."""

    x: float
    y: float
    theta: float
    confidence: float
    t: float

    def __post_init__(self) -> None:
        if not -np.pi < self.theta <= np.pi:
            raise ValueError(f"theta must be in (-pi, pi], got {self.theta}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")


@dataclass(frozen=True)
class TrajectoryPoint:
    """
    A retained trajectory point.

    `corrected` marks points moved by the outlier gate; `segment_start`
    marks the first point after the filter gave up on a run of outliers.
    """

    x: float
    y: float
    t: float
    confidence: float
    corrected: bool = False
    segment_start: bool = False


@dataclass(frozen=True)
class UserProfile:
    """Walker anthropometrics. `weight_kg` is informational."""

    height_m: float
    weight_kg: Optional[float] = field(default=None)

    def __post_init__(self) -> None:
        if not 0.5 <= self.height_m <= 2.5:
            raise ValueError(f"height_m must be in [0.5, 2.5], got {self.height_m}")
        if self.weight_kg is not None and not self.weight_kg > 0:
            raise ValueError(f"weight_kg must be positive, got {self.weight_kg}")
