from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Optional

from bellcount.counter.calibration import DerivedThresholds
from bellcount.counter.pose_core import is_finite
from bellcount.counter.signals import FrameSignals, HandSignal
from bellcount.counter.timing import now_ms

GestureId = Literal["reset", "swing_mode", "lockout_mode"]

MIN_CONF = 0.25
MAX_VEL = 0.006  # torso-normalized units per ms

Velocities = Dict[str, float]
GestureCheck = Callable[[FrameSignals, DerivedThresholds, Velocities], bool]


@dataclass
class GestureEvent:
    id: GestureId
    ts: float


@dataclass
class GestureConfig:
    id: GestureId
    hold_ms: float
    cooldown_ms: float
    check: GestureCheck


@dataclass
class HoldState:
    hold_start: Optional[float] = None
    last_trigger: Optional[float] = None


def _slow(hand: HandSignal, velocities: Velocities) -> bool:
    return velocities.get(hand.side, 0.0) <= MAX_VEL


def _all_hands(frame: FrameSignals, ok: Callable[[HandSignal], bool]) -> bool:
    if len(frame.hands) < 2:
        return False
    return all(hand.confidence >= MIN_CONF and ok(hand) for hand in frame.hands)


def is_t_pose_reset(frame: FrameSignals, thresholds: DerivedThresholds, velocities: Velocities) -> bool:
    """Arms out at shoulder height, elbows straight, standing tall, still."""
    upright = frame.hip_angle > thresholds.hinge_exit - 12

    def ok(hand: HandSignal) -> bool:
        if not (is_finite(hand.hand_above_shoulder) and is_finite(hand.hand_above_head) and is_finite(hand.elbow_angle)):
            return False
        return (
            -0.16 < hand.hand_above_shoulder < 0.16
            and hand.hand_above_head < 0.08
            and hand.elbow_angle > 150
            and _slow(hand, velocities)
        )

    return upright and _all_hands(frame, ok)


def is_swing_park(frame: FrameSignals, thresholds: DerivedThresholds, velocities: Velocities) -> bool:
    """Hinged over with both hands parked well below the hips."""
    hinged = frame.hip_angle < thresholds.hinge_exit - 15

    def ok(hand: HandSignal) -> bool:
        if not (is_finite(hand.hand_height_hip) and is_finite(hand.elbow_angle)):
            return False
        return hand.hand_height_hip < -0.35 and hand.elbow_angle > 140 and _slow(hand, velocities)

    return hinged and _all_hands(frame, ok)


def is_lockout_hold(frame: FrameSignals, thresholds: DerivedThresholds, velocities: Velocities) -> bool:
    """Both arms locked out overhead, standing tall, still."""
    upright = frame.hip_angle > thresholds.hinge_exit - 5

    def ok(hand: HandSignal) -> bool:
        if not (is_finite(hand.hand_above_head) and is_finite(hand.elbow_angle)):
            return False
        return hand.hand_above_head > 0.45 and hand.elbow_angle > 150 and _slow(hand, velocities)

    return upright and _all_hands(frame, ok)


def default_gestures() -> List[GestureConfig]:
    return [
        GestureConfig(id="reset", hold_ms=900, cooldown_ms=2000, check=is_t_pose_reset),
        GestureConfig(id="swing_mode", hold_ms=1000, cooldown_ms=2000, check=is_swing_park),
        GestureConfig(id="lockout_mode", hold_ms=1000, cooldown_ms=2000, check=is_lockout_hold),
    ]


class GestureEngine:
    """
    Hold-to-confirm posture detector. Each gesture must hold for `hold_ms`,
    fires once, then sits out `cooldown_ms`. Frames without a usable body are
    neutral: they neither advance nor break a hold.
    """

    def __init__(self, gestures: Optional[List[GestureConfig]] = None):
        self.gestures = gestures or default_gestures()
        self._state: Dict[str, HoldState] = {g.id: HoldState() for g in self.gestures}
        self._last_heights: Dict[str, Optional[float]] = {"left": None, "right": None}
        self._last_ts: Optional[float] = None

    def reset(self):
        self._state = {g.id: HoldState() for g in self.gestures}
        self._last_heights = {"left": None, "right": None}
        self._last_ts = None

    def update(self, frame: FrameSignals, thresholds: DerivedThresholds, now: Optional[float] = None) -> List[GestureEvent]:
        now = now_ms() if now is None else now
        if not is_finite(frame.hip_angle) or frame.confidence < MIN_CONF:
            self._update_history(frame, now)
            return []

        velocities = self._velocities(frame, now)
        events: List[GestureEvent] = []

        for cfg in self.gestures:
            state = self._state[cfg.id]
            if state.last_trigger is not None and now - state.last_trigger < cfg.cooldown_ms:
                continue

            if not cfg.check(frame, thresholds, velocities):
                state.hold_start = None
                continue

            if state.hold_start is None:
                state.hold_start = now
            if now - state.hold_start >= cfg.hold_ms:
                events.append(GestureEvent(id=cfg.id, ts=now))
                state.last_trigger = now
                state.hold_start = None

        self._update_history(frame, now)
        return events

    def _update_history(self, frame: FrameSignals, now: float):
        for hand in frame.hands:
            if is_finite(hand.hand_height_hip):
                self._last_heights[hand.side] = hand.hand_height_hip
        self._last_ts = now

    def _velocities(self, frame: FrameSignals, now: float) -> Velocities:
        velocities = {"left": 0.0, "right": 0.0}
        if self._last_ts is None:
            return velocities
        dt = now - self._last_ts
        if dt <= 0:
            return velocities
        for hand in frame.hands:
            prev = self._last_heights.get(hand.side)
            if prev is None or not is_finite(hand.hand_height_hip):
                continue
            velocities[hand.side] = abs(hand.hand_height_hip - prev) / dt
        return velocities
