"""
Smoke tests for evaluation plots.

Run with: pytest tests/pocket_pdr/eval/test_eval_plots.py -v
"""

import tempfile
import unittest
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from pocket_pdr.eval.plots import (  # noqa: E402
    plot_confidence,
    plot_step_signal,
    plot_trajectory,
    save_figure,
)
from pocket_pdr.sensors.types import TrajectoryPoint  # noqa: E402


def sample_points():
    return [
        TrajectoryPoint(x=0.0, y=0.0, t=0.0, confidence=0.9),
        TrajectoryPoint(x=0.7, y=0.0, t=0.5, confidence=0.9),
        TrajectoryPoint(x=1.4, y=0.1, t=1.0, confidence=0.8, corrected=True),
        TrajectoryPoint(x=2.1, y=0.1, t=1.5, confidence=0.8, segment_start=True),
    ]


class TestPlots(unittest.TestCase):
    """Test figure construction and saving."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        plt.close("all")
        self._tmp.cleanup()

    def test_plot_trajectory(self):
        truth = np.array([[0.0, 0.0], [0.7, 0.0], [1.4, 0.0], [2.1, 0.0]])
        fig = plot_trajectory(sample_points(), truth_xy=truth, title="Walk")
        self.assertEqual(fig.axes[0].get_title(), "Walk")

    def test_plot_step_signal(self):
        t = np.arange(0, 5, 0.02)
        values = 1.2 * np.sin(4 * np.pi * t)
        fig = plot_step_signal(t, values, online_step_times=[0.12, 0.62],
                               offline_step_times=[0.125, 0.625])
        self.assertEqual(len(fig.axes), 1)

    def test_plot_confidence(self):
        t = np.linspace(0, 1, 10)
        fig = plot_confidence({"pose": (t, np.full(10, 0.9)), "steps": (t, np.full(10, 0.7))})
        self.assertEqual(len(fig.axes[0].get_lines()), 2)

    def test_save_figure(self):
        fig = plot_trajectory(sample_points())
        paths = save_figure(fig, self.tmp / "figs", "walk", formats=("png", "svg"))

        self.assertEqual([p.name for p in paths], ["walk.png", "walk.svg"])
        for path in paths:
            self.assertTrue(path.exists())


if __name__ == "__main__":
    unittest.main()
