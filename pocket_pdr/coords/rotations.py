"""Rotation representations and conversions.

This module provides the rotation algebra used by the attitude tracker and
the pocket calibrator:
- Quaternions (unit quaternions, q = [qw, qx, qy, qz], body -> world)
- Rotation matrices (3x3 orthogonal matrices, SO(3))
- Small corrective rotations (axis-angle) and vector alignment

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part
- Rotation matrices: v_world = R @ v_body
- Quaternion kinematics use body-frame angular rates: dq/dt = 0.5 q ⊗ (0, ω)
"""

import warnings

import numpy as np
from numpy.typing import NDArray


def quat_multiply(p: NDArray[np.float64], q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Hamilton product p ⊗ q of two scalar-first quaternions."""
    pw, px, py, pz = p
    qw, qx, qy, qz = q
    return np.array(
        [
            pw * qw - px * qx - py * qy - pz * qz,
            pw * qx + px * qw + py * qz - pz * qy,
            pw * qy - px * qz + py * qw + pz * qx,
            pw * qz + px * qy - py * qx + pz * qw,
        ],
        dtype=np.float64,
    )


def quat_normalize(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Normalize a quaternion to unit norm.

    Args:
        q: Quaternion [qw, qx, qy, qz].

    Returns:
        Unit quaternion with non-negative scalar part.

    Raises:
        ValueError: If q has zero or non-finite norm.
    """
    norm = np.linalg.norm(q)
    if not np.isfinite(norm) or norm < 1e-12:
        raise ValueError(f"Cannot normalize quaternion with norm {norm}")
    q = q / norm
    # q and -q are the same rotation; keep the scalar part non-negative
    if q[0] < 0:
        q = -q
    return q


def omega_matrix(omega_b: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Build the Ω(ω) matrix used in quaternion kinematics.

        Ω(ω) = [  0    -ωx   -ωy   -ωz ]
               [ ωx     0     ωz   -ωy ]
               [ ωy    -ωz    0     ωx ]
               [ ωz     ωy   -ωx    0  ]

    so that dq/dt = 0.5 * Ω(ω) * q for body-frame rates ω.

    Args:
        omega_b: Angular velocity in body frame. Shape: (3,). Units: rad/s.

    Returns:
        Ω matrix. Shape: (4, 4), skew-symmetric.
    """
    if omega_b.shape != (3,):
        raise ValueError(f"omega_b must have shape (3,), got {omega_b.shape}")

    wx, wy, wz = omega_b
    return np.array(
        [
            [0.0, -wx, -wy, -wz],
            [wx, 0.0, wz, -wy],
            [wy, -wz, 0.0, wx],
            [wz, wy, -wx, 0.0],
        ]
    )


def quat_integrate(
    q_prev: NDArray[np.float64],
    omega_b: NDArray[np.float64],
    dt: float,
) -> NDArray[np.float64]:
    """
    Discrete quaternion integration step.

    First-order Euler integration of q_k = q_{k-1} + 0.5 * Ω(ω) * q_{k-1} * Δt,
    followed by renormalization. The renormalization runs on every call, so
    the unit-norm invariant never depends on the caller.

    Args:
        q_prev: Previous quaternion (body -> world). Shape: (4,).
        omega_b: Angular velocity in body frame. Shape: (3,). Units: rad/s.
        dt: Time step in seconds. Must be positive.

    Returns:
        Updated unit quaternion. Shape: (4,).
    """
    if q_prev.shape != (4,):
        raise ValueError(f"q_prev must have shape (4,), got {q_prev.shape}")
    if dt <= 0:
        raise ValueError(f"dt must be positive, got {dt}")

    q_dot = 0.5 * omega_matrix(omega_b) @ q_prev
    return quat_normalize(q_prev + q_dot * dt)


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion to rotation matrix.

    Args:
        q: Unit quaternion as numpy array [qw, qx, qy, qz].

    Returns:
        3x3 rotation matrix R such that v_world = R @ v_body.

    Raises:
        ValueError: If q is not a 4-element array.
    """
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")
    if abs(np.linalg.norm(q) - 1.0) > 1e-3:
        warnings.warn(
            f"Quaternion norm {np.linalg.norm(q):.6f} is not unit; result is not a rotation",
            UserWarning,
        )

    qw, qx, qy, qz = q
    return np.array(
        [
            [
                1.0 - 2.0 * (qy * qy + qz * qz),
                2.0 * (qx * qy - qw * qz),
                2.0 * (qx * qz + qw * qy),
            ],
            [
                2.0 * (qx * qy + qw * qz),
                1.0 - 2.0 * (qx * qx + qz * qz),
                2.0 * (qy * qz - qw * qx),
            ],
            [
                2.0 * (qx * qz - qw * qy),
                2.0 * (qy * qz + qw * qx),
                1.0 - 2.0 * (qx * qx + qy * qy),
            ],
        ],
        dtype=np.float64,
    )


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert rotation matrix to quaternion.

    Extracts a unit quaternion from a 3x3 rotation matrix using
    Shepperd's method for numerical stability.

    Args:
        R: 3x3 rotation matrix (orthogonal matrix in SO(3)).

    Returns:
        Unit quaternion as numpy array [qw, qx, qy, qz].
    """
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    return quat_normalize(np.array([qw, qx, qy, qz], dtype=np.float64))


def axis_angle_to_quat(axis: NDArray[np.float64], angle: float) -> NDArray[np.float64]:
    """Quaternion for a rotation of `angle` radians about `axis`.

    A zero-length axis yields the identity quaternion.
    """
    norm = np.linalg.norm(axis)
    if norm < 1e-12 or angle == 0.0:
        return np.array([1.0, 0.0, 0.0, 0.0])
    half = 0.5 * angle
    return np.concatenate(([np.cos(half)], np.sin(half) * axis / norm))


def rotation_about_z(angle: float) -> NDArray[np.float64]:
    """3x3 rotation matrix for a counter-clockwise rotation about +z."""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def align_vectors(
    v_from: NDArray[np.float64],
    v_to: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Smallest rotation matrix R with R @ v̂_from = v̂_to (Rodrigues formula).

    Args:
        v_from: Source direction, any non-zero length. Shape: (3,).
        v_to: Target direction, any non-zero length. Shape: (3,).

    Returns:
        3x3 rotation matrix.

    Notes:
        For anti-parallel inputs the rotation is π about any axis
        perpendicular to v_from; the one closest to the x-axis is chosen.
    """
    if v_from.shape != (3,) or v_to.shape != (3,):
        raise ValueError(
            f"vectors must have shape (3,), got {v_from.shape} and {v_to.shape}"
        )
    a = v_from / np.linalg.norm(v_from)
    b = v_to / np.linalg.norm(v_to)

    axis = np.cross(a, b)
    s = np.linalg.norm(axis)
    c = float(np.dot(a, b))

    if s < 1e-9:
        if c > 0:
            return np.eye(3)
        # Anti-parallel: rotate π about an axis perpendicular to a
        helper = np.array([1.0, 0.0, 0.0]) if abs(a[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
        k = np.cross(a, helper)
        k = k / np.linalg.norm(k)
        return 2.0 * np.outer(k, k) - np.eye(3)

    k = axis / s
    K = skew(k)
    return np.eye(3) + s * K + (1.0 - c) * (K @ K)


def skew(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Skew-symmetric cross-product matrix [v]x."""
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ]
    )


def orthonormalize(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Project a near-rotation matrix onto SO(3) via SVD.

    Args:
        R: 3x3 matrix close to a rotation.

    Returns:
        Closest proper rotation matrix (det = +1) in the Frobenius sense.
    """
    U, _, Vt = np.linalg.svd(R)
    D = np.diag([1.0, 1.0, np.sign(np.linalg.det(U @ Vt))])
    return U @ D @ Vt


def is_rotation_matrix(R: NDArray[np.float64], tol: float = 1e-3) -> bool:
    """True if R is orthonormal within `tol` (Frobenius) and right-handed."""
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    return bool(
        np.linalg.norm(R @ R.T - np.eye(3), ord="fro") < tol and np.linalg.det(R) > 0
    )


def yaw_from_rotation_matrix(R: NDArray[np.float64]) -> float:
    """Heading of the body x-axis projected on the world horizontal plane."""
    return float(np.arctan2(R[1, 0], R[0, 0]))
