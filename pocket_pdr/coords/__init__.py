"""Rotation algebra for the attitude tracker and pocket calibrator."""

from pocket_pdr.coords.rotations import (
    align_vectors,
    axis_angle_to_quat,
    is_rotation_matrix,
    omega_matrix,
    orthonormalize,
    quat_integrate,
    quat_multiply,
    quat_normalize,
    quat_to_rotation_matrix,
    rotation_about_z,
    rotation_matrix_to_quat,
    skew,
    yaw_from_rotation_matrix,
)

__all__ = [
    "quat_multiply",
    "quat_normalize",
    "omega_matrix",
    "quat_integrate",
    "quat_to_rotation_matrix",
    "rotation_matrix_to_quat",
    "axis_angle_to_quat",
    "rotation_about_z",
    "align_vectors",
    "skew",
    "orthonormalize",
    "is_rotation_matrix",
    "yaw_from_rotation_matrix",
]
