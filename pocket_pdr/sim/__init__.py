"""Synthetic pocket IMU streams with ground truth."""

from pocket_pdr.sim.walk_synth import (
    DEFAULT_MAG_FIELD,
    MagneticInterference,
    StationarySegment,
    SyntheticSession,
    TurnSegment,
    WalkSegment,
    step_profile,
    synthesize_session,
)

__all__ = [
    "DEFAULT_MAG_FIELD",
    "MagneticInterference",
    "StationarySegment",
    "SyntheticSession",
    "TurnSegment",
    "WalkSegment",
    "step_profile",
    "synthesize_session",
]
