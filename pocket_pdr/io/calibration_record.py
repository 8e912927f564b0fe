"""
Fixed-size binary record for calibration snapshots.

Layout (little-endian, 92 bytes):
    biases          float32 (3, 3)   rows: accel, gyro, mag
    rotation        float32 (3, 3)   R_body_to_phone, row-major
    gravity         float32 (3,)     avg_gravity_body
    valid_until_ns  int64
"""

from pathlib import Path
from typing import Union

import numpy as np

from pocket_pdr.coords.rotations import orthonormalize
from pocket_pdr.sensors.types import CalibrationState, ValidCalibration

CALIBRATION_DTYPE = np.dtype(
    [
        ("biases", "<f4", (3, 3)),
        ("rotation", "<f4", (3, 3)),
        ("gravity", "<f4", (3,)),
        ("valid_until_ns", "<i8"),
    ]
)
CALIBRATION_RECORD_SIZE = CALIBRATION_DTYPE.itemsize


def calibration_to_bytes(calibration: CalibrationState) -> bytes:
    """
    Serialize a calibration snapshot.

    Raises:
        ValueError: For degraded snapshots, which are never persisted.
    """
    if calibration.is_degraded:
        raise ValueError("degraded calibrations are not persisted")
    record = np.zeros((), dtype=CALIBRATION_DTYPE)
    record["biases"] = np.vstack([calibration.accel_bias, calibration.gyro_bias, calibration.mag_bias])
    record["rotation"] = calibration.R_body_to_phone
    record["gravity"] = calibration.avg_gravity_body
    record["valid_until_ns"] = calibration.valid_until_ns
    return record.tobytes()


def calibration_from_bytes(data: bytes) -> ValidCalibration:
    """
    Deserialize a calibration snapshot.

    The rotation is re-orthonormalized since float32 storage loses a few
    bits of orthogonality.

    Raises:
        ValueError: If `data` is not exactly one record long.
    """
    if len(data) != CALIBRATION_RECORD_SIZE:
        raise ValueError(
            f"calibration record must be {CALIBRATION_RECORD_SIZE} bytes, got {len(data)}"
        )
    record = np.frombuffer(data, dtype=CALIBRATION_DTYPE)[0]
    biases = record["biases"].astype(float)
    return ValidCalibration(
        accel_bias=biases[0],
        gyro_bias=biases[1],
        mag_bias=biases[2],
        R_body_to_phone=orthonormalize(record["rotation"].astype(float)),
        avg_gravity_body=record["gravity"].astype(float),
        valid_until_ns=int(record["valid_until_ns"]),
    )


def save_calibration(calibration: CalibrationState, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(calibration_to_bytes(calibration))
    return path


def load_calibration(path: Union[str, Path]) -> ValidCalibration:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Calibration record not found: {path}")
    return calibration_from_bytes(path.read_bytes())
