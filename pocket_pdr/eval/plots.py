"""
Figures for PDR sessions.

All functions return matplotlib Figure objects; saving and showing are
left to the caller.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np

from pocket_pdr.sensors.types import TrajectoryPoint
from pocket_pdr.eval.metrics import trajectory_to_arrays


def plot_trajectory(
    points: Sequence[TrajectoryPoint],
    truth_xy: Optional[np.ndarray] = None,
    title: str = "PDR Trajectory",
) -> plt.Figure:
    """
    Plot the filtered trajectory, marking corrected points and segment starts.

    Args:
        points: Trajectory points from the session.
        truth_xy: Ground-truth track, shape (N, 2) (optional).
        title: Plot title.
    """
    fig, ax = plt.subplots(figsize=(8, 8))
    _, xy, _ = trajectory_to_arrays(points)

    if truth_xy is not None and len(truth_xy):
        ax.plot(truth_xy[:, 0], truth_xy[:, 1], "k-", linewidth=2, label="Ground Truth", zorder=10)
    if len(xy):
        ax.plot(xy[:, 0], xy[:, 1], "b.-", linewidth=1.5, alpha=0.7, label="PDR")
        ax.plot(xy[0, 0], xy[0, 1], "go", markersize=10, label="Start", zorder=11)
        ax.plot(xy[-1, 0], xy[-1, 1], "ro", markersize=10, label="End", zorder=11)

        corrected = np.array([[p.x, p.y] for p in points if p.corrected])
        if len(corrected):
            ax.plot(corrected[:, 0], corrected[:, 1], "x", color="orange", markersize=9,
                    label="Corrected")
        starts = np.array([[p.x, p.y] for p in points if p.segment_start])
        if len(starts):
            ax.plot(starts[:, 0], starts[:, 1], "s", color="purple", markersize=7,
                    label="Segment start")

    ax.set_xlabel("X north (m)", fontsize=12)
    ax.set_ylabel("Y west (m)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    ax.axis("equal")

    plt.tight_layout()
    return fig


def plot_step_signal(
    t: np.ndarray,
    signal_values: np.ndarray,
    online_step_times: Sequence[float] = (),
    offline_step_times: Sequence[float] = (),
    thresholds: Tuple[float, ...] = (0.6, 0.2, -0.3),
    title: str = "Step Detection",
) -> plt.Figure:
    """
    Plot a step signal with thresholds and detected steps.

    Args:
        t: Sample times (N,).
        signal_values: Vertical or dynamic-magnitude acceleration (N,).
        online_step_times: Steps emitted by the session.
        offline_step_times: Steps from detect_steps_offline.
        thresholds: Horizontal reference lines (rise, fall, trough).
    """
    fig, ax = plt.subplots(figsize=(12, 4))
    ax.plot(t, signal_values, "b-", linewidth=1, label="Signal")
    for level in thresholds:
        ax.axhline(level, color="gray", linestyle=":", linewidth=1)

    if len(online_step_times):
        online = np.asarray(online_step_times)
        ax.plot(online, np.interp(online, t, signal_values), "rv", markersize=8,
                label=f"Online ({len(online)})")
    if len(offline_step_times):
        offline = np.asarray(offline_step_times)
        ax.plot(offline, np.interp(offline, t, signal_values), "g^", markersize=8,
                label=f"Offline ({len(offline)})")

    ax.set_xlabel("Time (s)", fontsize=12)
    ax.set_ylabel("Acceleration (m/s²)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def plot_confidence(
    series: Dict[str, Tuple[np.ndarray, np.ndarray]],
    title: str = "Pose Confidence",
) -> plt.Figure:
    """
    Plot confidence traces.

    Args:
        series: {name: (t, confidence)} for each trace.
    """
    fig, ax = plt.subplots(figsize=(12, 4))
    colors = ["blue", "red", "green", "orange", "purple"]
    for i, (name, (t, values)) in enumerate(series.items()):
        ax.plot(t, values, color=colors[i % len(colors)], linewidth=1.5, label=name)

    ax.set_ylim(-0.05, 1.05)
    ax.set_xlabel("Time (s)", fontsize=12)
    ax.set_ylabel("Confidence", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def save_figure(
    fig: plt.Figure,
    out_dir: Union[str, Path],
    name: str,
    formats: Tuple[str, ...] = ("png",),
) -> List[Path]:
    """Save `fig` as out_dir/name.<fmt> for each format."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for fmt in formats:
        filepath = out_dir / f"{name}.{fmt}"
        fig.savefig(filepath, dpi=150, bbox_inches="tight")
        paths.append(filepath)
    return paths
