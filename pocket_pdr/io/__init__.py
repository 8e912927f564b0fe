"""Persistence: calibration records and NDJSON session logs."""

from pocket_pdr.io.calibration_record import (
    CALIBRATION_DTYPE,
    CALIBRATION_RECORD_SIZE,
    calibration_from_bytes,
    calibration_to_bytes,
    load_calibration,
    save_calibration,
)
from pocket_pdr.io.session_log import SessionLogWriter, read_session_log, samples_from_log

__all__ = [
    "CALIBRATION_DTYPE",
    "CALIBRATION_RECORD_SIZE",
    "calibration_from_bytes",
    "calibration_to_bytes",
    "load_calibration",
    "save_calibration",
    "SessionLogWriter",
    "read_session_log",
    "samples_from_log",
]
