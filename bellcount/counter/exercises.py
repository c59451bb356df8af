from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Optional

from bellcount.counter.calibration import DerivedThresholds
from bellcount.counter.rep_counter import (
    HalfSnatchRepCounter,
    JerkRepCounter,
    LongCycleRepCounter,
    RepCounter,
    SnatchRepCounter,
    SwingRepCounter,
)
from bellcount.counter.signals import HandMode

ExerciseId = Literal["swing", "lockout", "snatch", "half_snatch", "long_cycle", "jerk"]
MovementType = Literal["swing", "lockout"]


@dataclass(frozen=True)
class ExerciseOption:
    id: ExerciseId
    label: str
    description: str
    hand_mode: HandMode
    type: MovementType
    variant: str


EXERCISE_OPTIONS: List[ExerciseOption] = [
    ExerciseOption("swing", "Swing mode", "Hinge-driven swing", "auto", "swing", "swing"),
    ExerciseOption("lockout", "Lockout mode", "Overhead lockout (snatch-style count)", "lockout", "lockout", "snatch"),
    ExerciseOption("snatch", "Snatch", "Single-arm snatch to lockout", "lockout", "lockout", "snatch"),
    ExerciseOption("half_snatch", "Half snatch", "Snatch up, drop to the rack", "lockout", "lockout", "half_snatch"),
    ExerciseOption("long_cycle", "Long cycle", "Clean and jerk from the swing", "lockout", "lockout", "long_cycle"),
    ExerciseOption("jerk", "Jerk", "Jerk from the rack", "lockout", "lockout", "jerk"),
]

_BY_ID: Dict[str, ExerciseOption] = {opt.id: opt for opt in EXERCISE_OPTIONS}

_LOCKOUT_COUNTERS: Dict[str, Callable[..., RepCounter]] = {
    "snatch": SnatchRepCounter,
    "half_snatch": HalfSnatchRepCounter,
    "long_cycle": LongCycleRepCounter,
    "jerk": JerkRepCounter,
}


def get_exercise_option(exercise_id: str) -> ExerciseOption:
    return _BY_ID.get(exercise_id, EXERCISE_OPTIONS[0])


def create_counter_for_exercise(
    exercise_id: str,
    swing_thresholds: DerivedThresholds,
    debug_cb: Optional[Callable[[str], None]] = None,
) -> RepCounter:
    opt = get_exercise_option(exercise_id)
    if opt.type == "lockout":
        return _LOCKOUT_COUNTERS[opt.variant](debug_cb=debug_cb)
    return SwingRepCounter(swing_thresholds, debug_cb=debug_cb)
