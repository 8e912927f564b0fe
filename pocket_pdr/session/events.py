"""
Consumer-facing events.

Consumers subclass SessionListener and override the callbacks they need.
Callbacks run synchronously on the session's context and must not block.
"""

from dataclasses import dataclass
from typing import Tuple

from pocket_pdr.sensors.activity import Mode
from pocket_pdr.sensors.calibration import CalibrationProgress
from pocket_pdr.sensors.types import Pose, StepEvent, TrajectoryPoint


@dataclass(frozen=True)
class WarningEvent:
    """Recoverable anomaly reported to the consumer.

    `kind` is one of 'numerical_reset', 'calibration_degraded',
    'calibration_drift', 'outlier_rejected'.
    """

    kind: str
    message: str
    t: float


class SessionListener:
    """No-op base listener."""

    def on_pose(self, pose: Pose) -> None:
        pass

    def on_step(self, step: StepEvent) -> None:
        pass

    def on_mode_change(self, mode: Mode) -> None:
        pass

    def on_calibration_progress(self, progress: CalibrationProgress) -> None:
        pass

    def on_warning(self, event: WarningEvent) -> None:
        pass

    def on_trajectory(self, points: Tuple[TrajectoryPoint, ...]) -> None:
        pass


class RecordingListener(SessionListener):
    """Listener that keeps every event in lists (replay tools and tests)."""

    def __init__(self):
        self.poses = []
        self.steps = []
        self.modes = []
        self.progress = []
        self.warnings = []
        self.trajectories = []

    def on_pose(self, pose: Pose) -> None:
        self.poses.append(pose)

    def on_step(self, step: StepEvent) -> None:
        self.steps.append(step)

    def on_mode_change(self, mode: Mode) -> None:
        self.modes.append(mode)

    def on_calibration_progress(self, progress: CalibrationProgress) -> None:
        self.progress.append(progress)

    def on_warning(self, event: WarningEvent) -> None:
        self.warnings.append(event)

    def on_trajectory(self, points: Tuple[TrajectoryPoint, ...]) -> None:
        self.trajectories.append(points)
