"""
Offline evaluation of PDR sessions.

Modules:
    metrics: Position, heading and step-count errors
    plots: Trajectory, step-signal and confidence figures
    offline_steps: Zero-phase reference step detector
"""

from .metrics import (
    compute_error_stats,
    compute_heading_errors,
    compute_position_errors,
    compute_rmse,
    compute_step_count_error,
    final_position_error,
    sample_truth_at,
    trajectory_to_arrays,
)
from .offline_steps import OfflineSteps, detect_steps_in_samples, detect_steps_offline
from .plots import plot_confidence, plot_step_signal, plot_trajectory, save_figure

__all__ = [
    # Metrics
    "compute_position_errors",
    "compute_heading_errors",
    "compute_rmse",
    "compute_error_stats",
    "compute_step_count_error",
    "final_position_error",
    "sample_truth_at",
    "trajectory_to_arrays",
    # Offline detection
    "OfflineSteps",
    "detect_steps_offline",
    "detect_steps_in_samples",
    # Plots
    "plot_trajectory",
    "plot_step_signal",
    "plot_confidence",
    "save_figure",
]
