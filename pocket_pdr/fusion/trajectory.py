"""
Post-EKF trajectory filter.

Each candidate point passes three stages before it is appended:

    1. Distance gate: points closer than MIN_POINT_DISTANCE (0.10 m) to the
       last kept point are skipped.
    2. Outlier gate: a jump longer than OUTLIER_THRESHOLD (2.0 m) is
       replaced by a point at 0.8 * threshold along the last accepted
       direction and marked `corrected`. The third consecutive outlier is
       rejected and the next point opens a new segment.
    3. Confidence-weighted smoothing toward the previous point:
       p' = (1 - α) p_new + α p_prev with α = 0.2 * (1 - confidence).
       Corrected points are kept on the projection unsmoothed.

The distance gate is checked again after smoothing so that retained
consecutive points are never closer than the minimum distance.
"""

import logging
from collections import deque
from typing import Deque, Optional, Tuple

import numpy as np

from pocket_pdr.sensors.types import TrajectoryPoint

logger = logging.getLogger(__name__)


class TrajectoryFilter:
    """
    Append-only, bounded trajectory with distance and outlier gating.

    Args:
        min_point_distance_m: Minimum spacing of retained points.
        outlier_threshold_m: Largest accepted step-to-step jump.
        max_length: Maximum retained points; the oldest are dropped.
        correction_fraction: Corrected jump length as a fraction of the
            outlier threshold.
        max_consecutive_outliers: Outlier run length that is rejected.
        smoothing_gain: α at zero confidence.

    Counters:
        distance_gated, outlier_corrected, outlier_rejected
    """

    def __init__(
        self,
        min_point_distance_m: float = 0.10,
        outlier_threshold_m: float = 2.0,
        max_length: int = 5000,
        correction_fraction: float = 0.8,
        max_consecutive_outliers: int = 3,
        smoothing_gain: float = 0.2,
    ):
        if not 0 < min_point_distance_m < outlier_threshold_m:
            raise ValueError(
                "need 0 < min_point_distance_m < outlier_threshold_m, got "
                f"{min_point_distance_m} and {outlier_threshold_m}"
            )
        if max_length < 2:
            raise ValueError(f"max_length must be >= 2, got {max_length}")
        self.min_point_distance_m = min_point_distance_m
        self.outlier_threshold_m = outlier_threshold_m
        self.correction_fraction = correction_fraction
        self.max_consecutive_outliers = max_consecutive_outliers
        self.smoothing_gain = smoothing_gain
        self._points: Deque[TrajectoryPoint] = deque(maxlen=max_length)
        self._direction: Optional[np.ndarray] = None
        self._consecutive_outliers = 0
        self._segment_break = False
        self.distance_gated = 0
        self.outlier_corrected = 0
        self.outlier_rejected = 0

    @property
    def points(self) -> Tuple[TrajectoryPoint, ...]:
        return tuple(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def add(self, x: float, y: float, t: float, confidence: float) -> Tuple[Optional[TrajectoryPoint], str]:
        """
        Offer a pose to the trajectory.

        Returns:
            Tuple of (point, action). `point` is the retained point or None;
            `action` is one of 'kept', 'segment_start', 'corrected',
            'distance_gated', 'rejected'.
        """
        confidence = float(np.clip(confidence, 0.0, 1.0))
        if not self._points or self._segment_break:
            segment_start = bool(self._points)
            point = TrajectoryPoint(float(x), float(y), t, confidence, segment_start=segment_start)
            self._points.append(point)
            self._segment_break = False
            self._consecutive_outliers = 0
            self._direction = None
            return point, "segment_start" if segment_start else "kept"

        prev = np.array([self._points[-1].x, self._points[-1].y])
        p = np.array([x, y], dtype=float)
        jump = float(np.linalg.norm(p - prev))

        # Step 1: distance gate
        if jump < self.min_point_distance_m:
            self.distance_gated += 1
            return None, "distance_gated"

        # Step 2: outlier gate
        corrected = False
        if jump > self.outlier_threshold_m:
            self._consecutive_outliers += 1
            if self._consecutive_outliers >= self.max_consecutive_outliers:
                self.outlier_rejected += 1
                self._segment_break = True
                logger.warning(
                    f"Trajectory point at t={t:.3f} s rejected after "
                    f"{self._consecutive_outliers} consecutive outliers ({jump:.2f} m)"
                )
                return None, "rejected"
            direction = self._direction if self._direction is not None else (p - prev) / jump
            p = prev + direction * (self.correction_fraction * self.outlier_threshold_m)
            corrected = True
            self.outlier_corrected += 1
            logger.debug(f"Trajectory jump of {jump:.2f} m at t={t:.3f} s corrected")
        else:
            self._consecutive_outliers = 0

        # Step 3: confidence-weighted smoothing; corrected points stay on the projection
        if not corrected:
            alpha = self.smoothing_gain * (1.0 - confidence)
            p = (1.0 - alpha) * p + alpha * prev
            step = float(np.linalg.norm(p - prev))
            if step < self.min_point_distance_m:
                self.distance_gated += 1
                return None, "distance_gated"
            self._direction = (p - prev) / step

        point = TrajectoryPoint(float(p[0]), float(p[1]), t, confidence, corrected=corrected)
        self._points.append(point)
        return point, "corrected" if corrected else "kept"
