"""
Error metrics for PDR runs against ground truth.
"""

from typing import Dict, Optional, Sequence, Union

import numpy as np

from pocket_pdr.sensors.types import TrajectoryPoint
from pocket_pdr.utils.angles import wrap_angle_array


def compute_position_errors(truth: np.ndarray, estimated: np.ndarray) -> np.ndarray:
    """
    Position error vectors, estimated minus truth.

    Args:
        truth: True positions, shape (N, 2).
        estimated: Estimated positions, shape (N, 2).

    Returns:
        Error vectors, shape (N, 2).

    Raises:
        ValueError: If the shapes differ.
    """
    truth = np.asarray(truth, dtype=float)
    estimated = np.asarray(estimated, dtype=float)
    if truth.shape != estimated.shape:
        raise ValueError(f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}")
    return estimated - truth


def compute_heading_errors(truth: np.ndarray, estimated: np.ndarray) -> np.ndarray:
    """Heading errors wrapped to (−π, π]."""
    truth = np.asarray(truth, dtype=float)
    estimated = np.asarray(estimated, dtype=float)
    if truth.shape != estimated.shape:
        raise ValueError(f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}")
    return wrap_angle_array(estimated - truth)


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """RMSE over all entries, or along `axis`."""
    errors = np.asarray(errors, dtype=float)
    if axis is None:
        return float(np.sqrt(np.mean(errors ** 2)))
    return np.sqrt(np.mean(errors ** 2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Summary statistics of error magnitudes.

    Args:
        errors: Error vectors (N, d) or scalar errors (N,).

    Returns:
        Dictionary with 'mean', 'median', 'std', 'rmse', 'p90', 'p95', 'max'.
    """
    errors = np.asarray(errors, dtype=float)
    if errors.size == 0:
        raise ValueError("errors must not be empty")
    magnitudes = np.linalg.norm(errors, axis=1) if errors.ndim > 1 else np.abs(errors)
    return {
        "mean": float(np.mean(magnitudes)),
        "median": float(np.median(magnitudes)),
        "std": float(np.std(magnitudes)),
        "rmse": float(np.sqrt(np.mean(magnitudes ** 2))),
        "p90": float(np.percentile(magnitudes, 90)),
        "p95": float(np.percentile(magnitudes, 95)),
        "max": float(np.max(magnitudes)),
    }


def trajectory_to_arrays(points: Sequence[TrajectoryPoint]):
    """Split trajectory points into (t (N,), xy (N, 2), confidence (N,))."""
    if not points:
        return np.zeros(0), np.zeros((0, 2)), np.zeros(0)
    t = np.array([p.t for p in points])
    xy = np.array([[p.x, p.y] for p in points])
    confidence = np.array([p.confidence for p in points])
    return t, xy, confidence


def sample_truth_at(t_query: np.ndarray, t_truth: np.ndarray, xy_truth: np.ndarray) -> np.ndarray:
    """
    Ground-truth position at query times (zero-order hold).

    Truth tracks advance in discrete strides, so the latest truth sample at
    or before each query time is used.
    """
    t_query = np.asarray(t_query, dtype=float)
    idx = np.searchsorted(np.asarray(t_truth), t_query, side="right") - 1
    return np.asarray(xy_truth)[np.clip(idx, 0, len(t_truth) - 1)]


def compute_step_count_error(detected: int, truth: int) -> Dict[str, float]:
    """Absolute and relative step count error."""
    if truth < 0 or detected < 0:
        raise ValueError("step counts must be non-negative")
    error = detected - truth
    relative = abs(error) / truth if truth > 0 else float(abs(error) > 0)
    return {"error": float(error), "relative": float(relative)}


def final_position_error(truth_xy: np.ndarray, estimated_xy: np.ndarray) -> float:
    """Distance between the last true and last estimated position."""
    truth_xy = np.asarray(truth_xy, dtype=float)
    estimated_xy = np.asarray(estimated_xy, dtype=float)
    return float(np.linalg.norm(estimated_xy[-1] - truth_xy[-1]))
