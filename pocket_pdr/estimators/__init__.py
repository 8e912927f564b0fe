"""State estimators for the planar pose."""

from pocket_pdr.estimators.base import StateEstimator
from pocket_pdr.estimators.pose_ekf import PoseEKF, PoseEKFConfig

__all__ = ["StateEstimator", "PoseEKF", "PoseEKFConfig"]
