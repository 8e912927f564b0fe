"""
Session configuration.

SessionConfig carries the externally visible knobs
(sample_rate_hz, max_cadence_bpm, min_point_distance_m,
outlier_threshold_m, trajectory_max_length) plus one frozen config per
pipeline component. Defaults reproduce the documented constants.

Example:
    >>> config = SessionConfig.from_dict({
    ...     "sample_rate_hz": 100,
    ...     "step_detector": {"rise_threshold": 0.8},
    ... })
    >>> config.validate()
    Traceback (most recent call last):
        ...
    pocket_pdr.errors.ConfigInvalid: invalid configuration: sample_rate_hz must be in [5, 75], got 100
"""

import json
import math
import warnings
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Union

from pocket_pdr.errors import ConfigInvalid
from pocket_pdr.estimators.pose_ekf import PoseEKFConfig
from pocket_pdr.sensors.attitude import AttitudeConfig
from pocket_pdr.sensors.calibration import CalibrationConfig
from pocket_pdr.sensors.intake import MAX_SAMPLE_RATE_HZ, MIN_SAMPLE_RATE_HZ
from pocket_pdr.sensors.step_detector import StepDetectorConfig
from pocket_pdr.sensors.stride import StrideConfig

LOW_SAMPLE_RATE_HZ = 20.0

_NESTED = {
    "attitude": AttitudeConfig,
    "calibration": CalibrationConfig,
    "step_detector": StepDetectorConfig,
    "stride": StrideConfig,
    "ekf": PoseEKFConfig,
}


@dataclass(frozen=True)
class SessionConfig:
    """
    Complete configuration of a PDR session.

    Attributes:
        sample_rate_hz: Nominal sensor rate, in [5, 75] Hz.
        max_cadence_bpm: Upper cadence bound; sets the detector refractory.
        min_point_distance_m: Trajectory distance gate.
        outlier_threshold_m: Trajectory outlier gate.
        trajectory_max_length: Retained trajectory points.
        stale_periods: Channel silence (in periods) that halts the session.
        walking_timeout_s: Step recency that still counts as walking.
        gravity_drift_deg: Body-frame gravity drift that expires the calibration.
        gravity_drift_stable_ms: Stillness required before checking drift.
        outlier_inflation_scale: P_xy grows by (scale * correction)² on a
            trajectory correction.
    """

    sample_rate_hz: float = 50.0
    max_cadence_bpm: float = 240.0
    min_point_distance_m: float = 0.10
    outlier_threshold_m: float = 2.0
    trajectory_max_length: int = 5000
    stale_periods: float = 4.0
    walking_timeout_s: float = 2.0
    gravity_drift_deg: float = 15.0
    gravity_drift_stable_ms: int = 2000
    outlier_inflation_scale: float = 0.5
    attitude: AttitudeConfig = field(default_factory=AttitudeConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    step_detector: StepDetectorConfig = field(default_factory=StepDetectorConfig)
    stride: StrideConfig = field(default_factory=StrideConfig)
    ekf: PoseEKFConfig = field(default_factory=PoseEKFConfig)

    def __post_init__(self) -> None:
        if MIN_SAMPLE_RATE_HZ <= self.sample_rate_hz < LOW_SAMPLE_RATE_HZ:
            warnings.warn(
                f"sample_rate_hz={self.sample_rate_hz} is below {LOW_SAMPLE_RATE_HZ} Hz; "
                "step detection will miss fast steps",
                UserWarning,
            )

    def problems(self) -> List[str]:
        """List every constraint violation (empty when valid)."""
        problems = []
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, float) and not math.isfinite(value):
                problems.append(f"{f.name} must be finite, got {value}")
        if not MIN_SAMPLE_RATE_HZ <= self.sample_rate_hz <= MAX_SAMPLE_RATE_HZ:
            problems.append(
                f"sample_rate_hz must be in [{MIN_SAMPLE_RATE_HZ:g}, {MAX_SAMPLE_RATE_HZ:g}], "
                f"got {self.sample_rate_hz:g}"
            )
        if not 30.0 <= self.max_cadence_bpm <= 400.0:
            problems.append(f"max_cadence_bpm must be in [30, 400], got {self.max_cadence_bpm:g}")
        if not 0.0 < self.min_point_distance_m < self.outlier_threshold_m:
            problems.append(
                "min_point_distance_m must be positive and below outlier_threshold_m"
            )
        if self.trajectory_max_length < 2:
            problems.append(f"trajectory_max_length must be >= 2, got {self.trajectory_max_length}")
        if self.stale_periods <= 1.0:
            problems.append(f"stale_periods must exceed 1, got {self.stale_periods:g}")
        if self.walking_timeout_s <= 0 or self.gravity_drift_deg <= 0:
            problems.append("walking_timeout_s and gravity_drift_deg must be positive")
        if self.outlier_inflation_scale < 0:
            problems.append("outlier_inflation_scale must be >= 0")
        for name in _NESTED:
            problems.extend(getattr(self, name).validate())
        problems.extend(
            p for p in self.detector_config().validate() if p not in problems
        )
        return problems

    def validate(self) -> None:
        """
        Raises:
            ConfigInvalid: listing every violated constraint.
        """
        problems = self.problems()
        if problems:
            raise ConfigInvalid(problems)

    def detector_config(self) -> StepDetectorConfig:
        """Step detector config with the session cadence bound applied."""
        return replace(self.step_detector, max_cadence_bpm=self.max_cadence_bpm)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionConfig":
        """
        Build a config from a (possibly partial) nested dictionary.

        Raises:
            ConfigInvalid: On unknown keys or values of the wrong type.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigInvalid([f"unknown configuration key '{key}'" for key in unknown])

        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _NESTED:
                if not isinstance(value, dict):
                    raise ConfigInvalid([f"'{key}' must be a mapping"])
                sub_cls = _NESTED[key]
                sub_known = {f.name for f in fields(sub_cls)}
                sub_unknown = sorted(set(value) - sub_known)
                if sub_unknown:
                    raise ConfigInvalid([f"unknown configuration key '{key}.{k}'" for k in sub_unknown])
                kwargs[key] = sub_cls(**value)
            else:
                kwargs[key] = value
        try:
            return cls(**kwargs)
        except TypeError as exc:
            raise ConfigInvalid([str(exc)]) from exc

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "SessionConfig":
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))

    def to_json(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
