from __future__ import annotations
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

class EventType(str, Enum):
    REP = "rep"
    GESTURE = "gesture"
    EXERCISE = "exercise"
    CALIBRATION = "calibration"
    TRACE = "trace"
    ERROR = "error"

@dataclass
class RepEvent:
    type: EventType
    ts: float
    count: int
    state: str
    exercise: str
    hand: Optional[str] = None

@dataclass
class GestureFired:
    type: EventType
    ts: float
    gesture: str

@dataclass
class ExerciseChanged:
    type: EventType
    ts: float
    exercise: str
    reason: str  # e.g., "gesture", "manual"

@dataclass
class CalibrationEvent:
    type: EventType
    ts: float
    state: str   # "started" | "finished" | "set"
    samples: int = 0
    calibration: dict = field(default_factory=dict)

@dataclass
class TraceEvent:
    type: EventType
    msg: str


def to_payload(ev) -> dict:
    """Plain dict for sinks and websocket clients."""
    out = asdict(ev)
    out["type"] = ev.type.value
    return out
