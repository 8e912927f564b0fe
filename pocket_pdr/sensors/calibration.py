"""
Pocket calibration: sensor biases and the body-to-phone rotation while walking.

The calibrator collects a bounded window of phone-frame samples while the
user walks naturally and then estimates:
    - Gyro bias: mean rate over short windows where the device is not
      rotating (|ω| < 0.02 rad/s).
    - Accel bias: the residual between the windowed mean acceleration and
      a gravity vector of magnitude g along the same direction.
    - Mag bias: the centroid of the magnetic samples (hard-iron center),
      refined by a least-squares sphere fit. Accepted only when the samples
      actually surround the centroid; a walking window that never rotates
      the phone leaves the bias at zero.
    - R_body_to_phone: levels the mean gravity onto (0, 0, -g), then turns
      about the vertical so the principal horizontal acceleration axis
      (the walking direction) lies on +x_body.

The window holds N=250 samples and is cut off by a 15 s hard timeout.
Calibration fails with CalibrationInsufficientMotion when fewer than 4
steps were detected during the window.

Frame Conventions:
    v_phone = R_body_to_phone @ v_body, so the calibrated body-frame
    vector of a phone reading is R_body_to_phone.T @ (v_phone - bias).
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from pocket_pdr.coords.rotations import align_vectors, orthonormalize, rotation_about_z
from pocket_pdr.errors import CalibrationInsufficientMotion
from pocket_pdr.sensors.types import (
    GRAVITY,
    NS_PER_S,
    CalibrationState,
    SensorChannel,
    UnifiedSample,
    ValidCalibration,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationConfig:
    """Tuning constants for the pocket calibrator."""

    samples_required: int = 250
    progress_interval: int = 10
    timeout_s: float = 15.0
    min_steps: int = 4
    min_samples: int = 50
    still_gyro_threshold: float = 0.02
    gyro_window: int = 10
    validity_s: float = 3600.0
    mag_radius_min: float = 15.0
    mag_radius_max: float = 100.0
    mag_radius_spread: float = 0.35
    min_horizontal_variance: float = 1e-3

    def validate(self) -> List[str]:
        problems = []
        if self.samples_required < self.min_samples or self.min_samples < 3:
            problems.append("calibration.samples_required must be >= min_samples >= 3")
        if self.progress_interval < 1:
            problems.append("calibration.progress_interval must be >= 1")
        if self.timeout_s <= 0 or self.validity_s <= 0:
            problems.append("calibration timeouts must be positive")
        if self.min_steps < 0:
            problems.append("calibration.min_steps must be >= 0")
        if not 0 < self.mag_radius_min < self.mag_radius_max:
            problems.append("calibration mag radius range is empty")
        return problems


@dataclass(frozen=True)
class CalibrationProgress:
    """Progress report delivered to the consumer during calibration.

    Attributes:
        step: Phase name ('collecting', 'complete' or 'failed').
        progress: Fraction in [0, 1].
        message: Human-readable status.
        is_complete: True on the final report of an attempt.
    """

    step: str
    progress: float
    message: str
    is_complete: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.progress <= 1.0:
            raise ValueError(f"progress must be in [0, 1], got {self.progress}")


def apply_calibration(
    sample: UnifiedSample,
    calibration: CalibrationState,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Remove biases and rotate a unified sample into the body frame.

    Missing channels come back as NaN vectors (mag as None).

    Returns:
        Tuple of (accel_b, gyro_b, mag_b).
    """
    R_pb = calibration.R_body_to_phone.T
    accel_b = R_pb @ (sample.accel - calibration.accel_bias)
    gyro_b = R_pb @ (sample.gyro - calibration.gyro_bias)
    mag_b = None
    if sample.has(SensorChannel.MAG):
        mag_b = R_pb @ (sample.mag - calibration.mag_bias)
    return accel_b, gyro_b, mag_b


def estimate_gyro_bias(
    gyro: np.ndarray,
    threshold: float = 0.02,
    window: int = 10,
) -> Tuple[np.ndarray, int]:
    """
    Mean gyro rate over the windows in which the device is not rotating.

    The series is cut into consecutive windows of `window` samples; a window
    qualifies when every sample's rate magnitude is below `threshold`.

    Args:
        gyro: Gyro samples, shape (N, 3), rad/s.
        threshold: Magnitude limit in rad/s.
        window: Window length in samples.

    Returns:
        Tuple of (bias, windows_used). With no qualifying window the bias
        is zero.
    """
    if gyro.ndim != 2 or gyro.shape[1] != 3:
        raise ValueError(f"gyro must have shape (N, 3), got {gyro.shape}")
    means = []
    for start in range(0, gyro.shape[0] - window + 1, window):
        chunk = gyro[start:start + window]
        if np.all(np.linalg.norm(chunk, axis=1) < threshold):
            means.append(chunk.mean(axis=0))
    if not means:
        return np.zeros(3), 0
    return np.mean(means, axis=0), len(means)


def estimate_accel_bias(accel: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Accel bias along the inferred gravity direction.

    Over a walking window the dynamic acceleration averages out, so the
    mean reading is gravity plus bias. Projecting onto the mean direction
    attributes any magnitude excess to bias.

    Args:
        accel: Accel samples in the phone frame, shape (N, 3), m/s².

    Returns:
        Tuple of (bias, gravity_direction) where gravity_direction is the
        unit vector of the mean reading (pointing down).
    """
    if accel.ndim != 2 or accel.shape[1] != 3:
        raise ValueError(f"accel must have shape (N, 3), got {accel.shape}")
    mean = accel.mean(axis=0)
    norm = np.linalg.norm(mean)
    if norm < 1e-6:
        raise ValueError("mean acceleration is zero; cannot infer gravity direction")
    direction = mean / norm
    bias = mean - GRAVITY * direction
    return bias, direction


def fit_sphere(points: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Algebraic least-squares sphere fit.

    Solves |p|² = 2 p·c + (r² - |c|²) for center c and radius r.

    Args:
        points: Shape (N, 3), N >= 4.

    Returns:
        Tuple of (center, radius).
    """
    if points.ndim != 2 or points.shape[1] != 3 or points.shape[0] < 4:
        raise ValueError(f"points must have shape (N>=4, 3), got {points.shape}")
    A = np.hstack([2.0 * points, np.ones((points.shape[0], 1))])
    b = np.sum(points ** 2, axis=1)
    solution, *_ = np.linalg.lstsq(A, b, rcond=None)
    center = solution[:3]
    radius_sq = solution[3] + np.dot(center, center)
    return center, float(np.sqrt(max(radius_sq, 0.0)))


def estimate_mag_bias(
    mag: np.ndarray,
    radius_min: float = 15.0,
    radius_max: float = 100.0,
    max_spread: float = 0.35,
) -> Tuple[np.ndarray, bool]:
    """
    Hard-iron bias from the centroid of the magnetic samples.

    The centroid is the ellipsoid center only if the samples lie around it
    at roughly the local field strength. When they do, a sphere fit refines
    the center; otherwise the bias is left at zero.

    Args:
        mag: Magnetic samples in the phone frame, shape (N, 3), µT.
        radius_min: Smallest plausible field magnitude (µT).
        radius_max: Largest plausible field magnitude (µT).
        max_spread: Largest accepted relative spread of sample radii.

    Returns:
        Tuple of (bias, accepted).
    """
    if mag.ndim != 2 or mag.shape[1] != 3:
        raise ValueError(f"mag must have shape (N, 3), got {mag.shape}")
    if mag.shape[0] < 4:
        return np.zeros(3), False

    centroid = mag.mean(axis=0)
    radii = np.linalg.norm(mag - centroid, axis=1)
    median_radius = float(np.median(radii))
    if not radius_min <= median_radius <= radius_max:
        return np.zeros(3), False
    if np.std(radii) / median_radius > max_spread:
        return np.zeros(3), False

    center, radius = fit_sphere(mag)
    if radius_min <= radius <= radius_max:
        return center, True
    return centroid, True


def estimate_body_to_phone(
    accel: np.ndarray,
    accel_bias: np.ndarray,
    min_horizontal_variance: float = 1e-3,
) -> np.ndarray:
    """
    Rotation R_body_to_phone from a walking accel window.

    Step 1 levels the mean (bias-corrected) acceleration onto -z. Step 2
    finds the principal axis of the horizontal acceleration in the leveled
    frame and turns it onto +x. The axis sign is fixed so that it has a
    non-negative component along the leveled phone x-axis.

    Args:
        accel: Accel samples in the phone frame, shape (N, 3).
        accel_bias: Accel bias in the phone frame, shape (3,).
        min_horizontal_variance: Below this principal variance (m²/s⁴) the
            horizontal motion is considered directionless and no yaw is
            applied.

    Returns:
        3x3 proper rotation with v_phone = R @ v_body.
    """
    corrected = accel - accel_bias
    mean = corrected.mean(axis=0)

    # Step 1: level the mean gravity
    R_level = align_vectors(mean, np.array([0.0, 0.0, -1.0]))

    # Step 2: principal horizontal motion axis
    leveled = corrected @ R_level.T
    horizontal = leveled[:, :2] - leveled[:, :2].mean(axis=0)
    yaw = 0.0
    if horizontal.shape[0] >= 2:
        cov = np.cov(horizontal, rowvar=False)
        eigvals, eigvecs = np.linalg.eigh(cov)
        if eigvals[-1] >= min_horizontal_variance:
            axis = eigvecs[:, -1]
            phone_x = R_level[:2, 0]
            if np.dot(axis, phone_x) < 0:
                axis = -axis
            yaw = float(np.arctan2(axis[1], axis[0]))

    R_phone_to_body = rotation_about_z(-yaw) @ R_level
    return orthonormalize(R_phone_to_body.T)


class PocketCalibrator:
    """
    Collects a walking window and turns it into a ValidCalibration.

    Usage:
        >>> calibrator = PocketCalibrator(on_progress=print)
        >>> for sample in unified_samples:
        ...     calibrator.add_sample(sample)
        ...     if step_detected:
        ...         calibrator.note_step()
        ...     if calibrator.is_complete(sample.t_ns):
        ...         state = calibrator.finalize(sample.t_ns)
        ...         break

    Args:
        config: Calibration constants.
        on_progress: Called with CalibrationProgress every
            `progress_interval` samples and once on finalize.
    """

    def __init__(
        self,
        config: Optional[CalibrationConfig] = None,
        on_progress: Optional[Callable[[CalibrationProgress], None]] = None,
    ):
        self.config = config or CalibrationConfig()
        self.on_progress = on_progress
        self._accel: List[np.ndarray] = []
        self._gyro: List[np.ndarray] = []
        self._mag: List[np.ndarray] = []
        self._start_ns: Optional[int] = None
        self._last_ns: Optional[int] = None
        self.steps_seen = 0

    @property
    def samples_seen(self) -> int:
        return len(self._accel)

    def add_sample(self, sample: UnifiedSample) -> None:
        """Record one unified phone-frame sample (accel required)."""
        if self._start_ns is None:
            self._start_ns = sample.t_ns
        self._last_ns = sample.t_ns
        if not sample.has(SensorChannel.ACCEL):
            return
        self._accel.append(np.asarray(sample.accel))
        if sample.has(SensorChannel.GYRO):
            self._gyro.append(np.asarray(sample.gyro))
        if sample.has(SensorChannel.MAG):
            self._mag.append(np.asarray(sample.mag))

        n = self.samples_seen
        if n % self.config.progress_interval == 0 and n < self.config.samples_required:
            self._report(
                "collecting",
                min(0.99, self._fraction_done(sample.t_ns)),
                f"Collected {n}/{self.config.samples_required} samples, {self.steps_seen} steps",
            )

    def note_step(self) -> None:
        """Count a step detected during the window."""
        self.steps_seen += 1

    def elapsed_s(self, t_ns: int) -> float:
        if self._start_ns is None:
            return 0.0
        return (t_ns - self._start_ns) / NS_PER_S

    def is_complete(self, t_ns: int) -> bool:
        """True once the window is full or the hard timeout expired."""
        return (
            self.samples_seen >= self.config.samples_required
            or self.elapsed_s(t_ns) >= self.config.timeout_s
        )

    def finalize(self, now_ns: int) -> ValidCalibration:
        """
        Estimate the calibration from the collected window.

        Args:
            now_ns: Current monotonic time; validity is counted from here.

        Returns:
            ValidCalibration.

        Raises:
            CalibrationInsufficientMotion: Too few steps or samples.
        """
        cfg = self.config
        if self.steps_seen < cfg.min_steps or self.samples_seen < cfg.min_samples:
            self._report(
                "failed",
                1.0,
                f"Insufficient motion: {self.steps_seen} steps in {self.samples_seen} samples",
                is_complete=True,
            )
            raise CalibrationInsufficientMotion(self.steps_seen, self.samples_seen, cfg.min_steps)

        accel = np.vstack(self._accel)
        gyro = np.vstack(self._gyro) if self._gyro else np.zeros((0, 3))
        mag = np.vstack(self._mag) if self._mag else np.zeros((0, 3))

        # Step 1: biases
        gyro_bias, windows = (
            estimate_gyro_bias(gyro, cfg.still_gyro_threshold, cfg.gyro_window)
            if gyro.shape[0] else (np.zeros(3), 0)
        )
        accel_bias, _ = estimate_accel_bias(accel)
        mag_bias, mag_accepted = estimate_mag_bias(
            mag, cfg.mag_radius_min, cfg.mag_radius_max, cfg.mag_radius_spread
        )

        # Step 2: mounting rotation
        R_body_to_phone = estimate_body_to_phone(accel, accel_bias, cfg.min_horizontal_variance)
        avg_gravity_body = R_body_to_phone.T @ (accel - accel_bias).mean(axis=0)

        state = ValidCalibration(
            accel_bias=accel_bias,
            gyro_bias=gyro_bias,
            mag_bias=mag_bias,
            R_body_to_phone=R_body_to_phone,
            avg_gravity_body=avg_gravity_body,
            valid_until_ns=now_ns + int(cfg.validity_s * NS_PER_S),
        )
        logger.info(
            f"Calibration complete: {self.samples_seen} samples, {self.steps_seen} steps, "
            f"{windows} still gyro windows, mag bias {'accepted' if mag_accepted else 'skipped'}"
        )
        self._report("complete", 1.0, "Calibration complete", is_complete=True)
        return state

    def _fraction_done(self, t_ns: int) -> float:
        by_count = self.samples_seen / self.config.samples_required
        by_time = self.elapsed_s(t_ns) / self.config.timeout_s
        return max(by_count, by_time)

    def _report(self, step: str, progress: float, message: str, is_complete: bool = False) -> None:
        if self.on_progress is not None:
            self.on_progress(CalibrationProgress(step, progress, message, is_complete))
