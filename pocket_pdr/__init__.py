"""Pocket pedestrian dead reckoning.

Turns a raw smartphone IMU stream (accelerometer, gyroscope, magnetometer)
from a phone carried in a trouser pocket into a planar pose and a filtered
trajectory:
- sensors: intake, attitude, pocket calibration, step detection, stride model
- estimators: planar pose EKF
- fusion: trajectory filter
- session: PdrSession orchestrator, configuration, counters and events
- io: calibration records and session logs
- sim / eval: synthetic streams and offline analysis
"""

__version__ = "0.1.0"

from pocket_pdr.errors import (
    CalibrationInsufficientMotion,
    ConfigInvalid,
    LateSample,
    NumericalInstability,
    PdrError,
    PlatformStepDuplicate,
    SensorUnavailable,
    StaleSensor,
)
from pocket_pdr.sensors.types import (
    PlatformStepEvent,
    Pose,
    SensorSample,
    StepEvent,
    TrajectoryPoint,
    UserProfile,
)
from pocket_pdr.session import PdrSession, SessionConfig, SessionListener, SessionState

__all__ = [
    "PdrError",
    "SensorUnavailable",
    "StaleSensor",
    "CalibrationInsufficientMotion",
    "NumericalInstability",
    "LateSample",
    "PlatformStepDuplicate",
    "ConfigInvalid",
    "PlatformStepEvent",
    "Pose",
    "SensorSample",
    "StepEvent",
    "TrajectoryPoint",
    "UserProfile",
    "PdrSession",
    "SessionConfig",
    "SessionListener",
    "SessionState",
]
