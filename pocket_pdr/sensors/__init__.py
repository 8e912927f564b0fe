"""
Per-sample pipeline stages, from raw samples to stride displacements.

Modules:
    types: Samples, calibration snapshots, attitude, steps, poses
    intake: Multi-channel alignment, gap filling and staleness checks
    attitude: Gyro propagation with gravity and magnetic corrections
    calibration: Pocket calibration (biases and body-to-phone rotation)
    step_detector: Vertical-acceleration step state machine, native overlay
    stride: Height and cadence stride length model
    activity: Stationary / walking / degraded classification
"""

from pocket_pdr.sensors.activity import Mode, ModeClassifier, classify_mode
from pocket_pdr.sensors.attitude import AttitudeConfig, AttitudeTracker, initial_attitude
from pocket_pdr.sensors.calibration import (
    CalibrationConfig,
    CalibrationProgress,
    PocketCalibrator,
    apply_calibration,
    estimate_accel_bias,
    estimate_body_to_phone,
    estimate_gyro_bias,
    estimate_mag_bias,
    fit_sphere,
)
from pocket_pdr.sensors.intake import SensorIntake
from pocket_pdr.sensors.step_detector import (
    StepCandidate,
    StepDetector,
    StepDetectorConfig,
    magnitude_signal,
    vertical_acceleration,
)
from pocket_pdr.sensors.stride import K_STRIDE, StrideConfig, StrideModel, stride_length
from pocket_pdr.sensors.types import (
    GRAVITY,
    AttitudeState,
    CalibrationState,
    DegradedCalibration,
    DetectionMethod,
    PlatformStepEvent,
    Pose,
    SensorChannel,
    SensorSample,
    StepEvent,
    StepSource,
    StrideSample,
    TrajectoryPoint,
    UnifiedSample,
    UserProfile,
    ValidCalibration,
)

__all__ = [
    # Types
    "GRAVITY",
    "AttitudeState",
    "CalibrationState",
    "DegradedCalibration",
    "DetectionMethod",
    "PlatformStepEvent",
    "Pose",
    "SensorChannel",
    "SensorSample",
    "StepEvent",
    "StepSource",
    "StrideSample",
    "TrajectoryPoint",
    "UnifiedSample",
    "UserProfile",
    "ValidCalibration",
    # Stages
    "SensorIntake",
    "AttitudeConfig",
    "AttitudeTracker",
    "initial_attitude",
    "CalibrationConfig",
    "CalibrationProgress",
    "PocketCalibrator",
    "apply_calibration",
    "estimate_accel_bias",
    "estimate_body_to_phone",
    "estimate_gyro_bias",
    "estimate_mag_bias",
    "fit_sphere",
    "StepCandidate",
    "StepDetector",
    "StepDetectorConfig",
    "magnitude_signal",
    "vertical_acceleration",
    "K_STRIDE",
    "StrideConfig",
    "StrideModel",
    "stride_length",
    "Mode",
    "ModeClassifier",
    "classify_mode",
]
