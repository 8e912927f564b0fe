"""
Session log: one JSON record per unified sample (NDJSON).

Each record carries the time relative to the first sample, the raw
sensor triplets with their validity and fill flags, the attitude
quaternion, any steps released on that sample and the latest pose. Logs
can be replayed through a new session with samples_from_log().

Record layout:
    {"relative_time": 0.02, "t_ns": 20000000, "state": "tracking",
     "accel": [..], "gyro": [..], "mag": [..] or null,
     "valid": 7, "filled": 0,
     "quaternion": [w, x, y, z] or null,
     "steps": [{"t": .., "confidence": .., "cadence_hz": .., "source": "detected",
                "method": "vertical"}],
     "pose": {"x": .., "y": .., "theta": .., "confidence": ..} or null}
"""

import json
import logging
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence, Union

import numpy as np

from pocket_pdr.sensors.types import (
    AttitudeState,
    Pose,
    SensorChannel,
    SensorSample,
    StepEvent,
    UnifiedSample,
)

logger = logging.getLogger(__name__)


def _vector(value: Optional[np.ndarray]) -> Optional[List[float]]:
    return None if value is None else [float(v) for v in value]


class SessionLogWriter:
    """
    Append session records to a newline-delimited JSON file.

    Args:
        target: Output path or an open text stream.

    Example:
        >>> with SessionLogWriter("walk.ndjson") as log:
        ...     session = PdrSession(profile, session_log=log)
    """

    def __init__(self, target: Union[str, Path, IO[str]]):
        if isinstance(target, (str, Path)):
            self.path: Optional[Path] = Path(target)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._stream = open(self.path, "w", encoding="utf-8")
            self._owns_stream = True
        else:
            self.path = None
            self._stream = target
            self._owns_stream = False
        self.records_written = 0

    def write_record(
        self,
        relative_time: float,
        sample: UnifiedSample,
        attitude: Optional[AttitudeState] = None,
        steps: Sequence[StepEvent] = (),
        pose: Optional[Pose] = None,
        state: str = "",
    ) -> None:
        record = {
            "relative_time": float(relative_time),
            "t_ns": int(sample.t_ns),
            "state": state,
            "accel": _vector(sample.accel),
            "gyro": _vector(sample.gyro),
            "mag": _vector(sample.mag),
            "valid": int(sample.valid_flags),
            "filled": int(sample.filled_flags),
            "quaternion": None if attitude is None else _vector(attitude.q_bw),
            "steps": [
                {
                    "t": step.t,
                    "confidence": step.confidence,
                    "cadence_hz": step.cadence_hz,
                    "source": step.source.value,
                    "method": step.method.value,
                }
                for step in steps
            ],
            "pose": None
            if pose is None
            else {"x": pose.x, "y": pose.y, "theta": pose.theta, "confidence": pose.confidence},
        }
        self._stream.write(json.dumps(record) + "\n")
        self.records_written += 1

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        if self._owns_stream and not self._stream.closed:
            self._stream.close()
            logger.info(f"Wrote {self.records_written} session records to {self.path}")

    def __enter__(self) -> "SessionLogWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_session_log(path: Union[str, Path]) -> List[Dict]:
    """
    Load every record of a session log.

    Raises:
        FileNotFoundError: If the log does not exist.
        ValueError: If a line is not valid JSON.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Session log not found: {path}")

    records = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{line_no}: invalid record ({exc.msg})") from exc
    return records


def samples_from_log(records: Sequence[Dict]) -> List[SensorSample]:
    """
    Rebuild raw samples from log records for replay.

    Only channels that were valid and not filled are restored, so a
    replay sees the same gaps the original session saw.
    """
    samples = []
    for record in records:
        real = int(record["valid"]) & ~int(record["filled"])
        values = {}
        for channel, name in ((SensorChannel.ACCEL, "accel"), (SensorChannel.GYRO, "gyro"),
                              (SensorChannel.MAG, "mag")):
            if real & channel and record[name] is not None:
                values[name] = np.array(record[name])
        if values:
            samples.append(SensorSample(t_ns=record["t_ns"], **values))
    return samples
