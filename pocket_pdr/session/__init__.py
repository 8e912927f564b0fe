"""Session orchestration: configuration, counters, listener events and PdrSession."""

from pocket_pdr.session.config import SessionConfig
from pocket_pdr.session.counters import STANDARD_COUNTERS, CounterSnapshot, SessionCounters
from pocket_pdr.session.events import (
    CalibrationProgress,
    Mode,
    RecordingListener,
    SessionListener,
    WarningEvent,
)
from pocket_pdr.session.orchestrator import PdrSession, SessionSnapshot, SessionState

__all__ = [
    "SessionConfig",
    "STANDARD_COUNTERS",
    "CounterSnapshot",
    "SessionCounters",
    "CalibrationProgress",
    "Mode",
    "RecordingListener",
    "SessionListener",
    "WarningEvent",
    "PdrSession",
    "SessionSnapshot",
    "SessionState",
]
