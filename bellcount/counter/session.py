from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from bellcount.common.events import (
    CalibrationEvent,
    EventType,
    ExerciseChanged,
    GestureFired,
    RepEvent,
    TraceEvent,
    to_payload,
)
from bellcount.counter.calibration import (
    Calibration,
    CalibrationRecorder,
    DerivedThresholds,
    default_calibration,
    thresholds_from_calibration,
)
from bellcount.counter.exercises import ExerciseOption, create_counter_for_exercise, get_exercise_option
from bellcount.counter.gestures import GestureEngine, GestureEvent
from bellcount.counter.hand_tracker import HandSelection, HandTracker
from bellcount.counter.pose_core import Pose
from bellcount.counter.rep_counter import CounterUpdate, RepCounter
from bellcount.counter.signals import FrameSignals, Hand, HandMode, extract_frame_signals
from bellcount.counter.timing import now_ms

logger = logging.getLogger(__name__)

# gesture -> exercise it switches to
GESTURE_EXERCISE = {"swing_mode": "swing", "lockout_mode": "lockout"}


@dataclass
class FrameResult:
    update: Optional[CounterUpdate]
    gestures: List[GestureEvent] = field(default_factory=list)
    hands: Optional[HandSelection] = None
    signals: Optional[FrameSignals] = None


class CounterSession:
    """
    Owns one athlete's counting pipeline and runs it per pose:
    signals -> hand tracker -> gestures -> rep counter.
    """

    def __init__(
        self,
        exercise: str = "swing",
        calibration: Optional[Calibration] = None,
        hand_mode: Optional[HandMode] = None,
        tracker: Optional[HandTracker] = None,
        gestures: Optional[GestureEngine] = None,
    ):
        self.calibration = calibration or default_calibration()
        self.thresholds: DerivedThresholds = thresholds_from_calibration(self.calibration)
        self.tracker = tracker or HandTracker()
        self.gestures = gestures or GestureEngine()
        self.recorder = CalibrationRecorder()
        self.locked_hand: Optional[Hand] = None
        self._hand_mode_override = hand_mode
        self._event_sink: Optional[Callable[[dict], None]] = None
        self.option: ExerciseOption = get_exercise_option(exercise)
        self.counter: RepCounter = self._build_counter()
        self.last_update: Optional[CounterUpdate] = None

    # --- wiring -------------------------------------------------------------

    def set_event_sink(self, sink: Optional[Callable[[dict], None]]):
        self._event_sink = sink

    def _emit(self, ev):
        if self._event_sink is None:
            return
        try:
            self._event_sink(to_payload(ev))
        except Exception:
            logger.exception("event sink failed")

    def _emit_debug(self, msg: str):
        self._emit(TraceEvent(type=EventType.TRACE, msg=f"{self.counter_name}: {msg}"))

    def _build_counter(self) -> RepCounter:
        return create_counter_for_exercise(self.option.id, self.thresholds, debug_cb=self._emit_debug)

    @property
    def counter_name(self) -> str:
        return self.option.variant

    @property
    def exercise(self) -> str:
        return self.option.id

    @property
    def hand_mode(self) -> HandMode:
        return self._hand_mode_override or self.option.hand_mode

    @property
    def count(self) -> int:
        return self.counter.count

    # --- control ------------------------------------------------------------

    def reset(self):
        self.counter.reset()
        self.tracker.reset()
        self.gestures.reset()
        self.last_update = None

    def set_exercise(self, exercise: str, reason: str = "manual", now: Optional[float] = None):
        self.option = get_exercise_option(exercise)
        self.counter = self._build_counter()
        self.tracker.reset()
        self.gestures.reset()
        self.last_update = None
        logger.info("exercise set to %s (%s)", self.option.id, reason)
        self._emit(ExerciseChanged(type=EventType.EXERCISE, ts=self._ts(now), exercise=self.option.id, reason=reason))

    def set_hand_mode(self, mode: Optional[HandMode]):
        self._hand_mode_override = mode
        self.tracker.reset()

    def set_locked_hand(self, hand: Optional[Hand]):
        """Pin the tracker to one hand (or both) regardless of scores; None unlocks."""
        self.locked_hand = hand
        self.tracker.reset()

    def set_calibration(self, calibration: Calibration, now: Optional[float] = None):
        self.calibration = calibration
        self.thresholds = thresholds_from_calibration(calibration)
        self.counter.set_thresholds(self.thresholds)
        self._emit(CalibrationEvent(
            type=EventType.CALIBRATION, ts=self._ts(now), state="set", calibration=calibration.to_dict(),
        ))

    def start_calibration(self, now: Optional[float] = None):
        self.recorder.start()
        self._emit(CalibrationEvent(type=EventType.CALIBRATION, ts=self._ts(now), state="started"))

    def finish_calibration(self, now: Optional[float] = None) -> Calibration:
        samples = self.recorder.sample_count
        cal = self.recorder.finish(fallback=self.calibration)
        logger.info("calibration finished with %d samples: %s", samples, cal)
        self.set_calibration(cal, now)
        self._emit(CalibrationEvent(
            type=EventType.CALIBRATION, ts=self._ts(now), state="finished", samples=samples, calibration=cal.to_dict(),
        ))
        return cal

    # --- per frame ----------------------------------------------------------

    def process_poses(self, poses: Sequence[Pose], ts: Optional[float] = None) -> Optional[FrameResult]:
        """Single-person: only the first pose is used."""
        if not poses:
            return None
        return self.process_pose(poses[0], ts)

    def process_pose(self, pose: Pose, now: Optional[float] = None) -> FrameResult:
        now = self._ts(now)
        signals = extract_frame_signals(pose)
        hands = self.tracker.update(pose, self.hand_mode, self.locked_hand, now)

        if self.recorder.active:
            self.recorder.add(signals)
            return FrameResult(update=None, hands=hands, signals=signals)

        events = self.gestures.update(signals, self.thresholds, now)
        for ev in events:
            self._emit(GestureFired(type=EventType.GESTURE, ts=ev.ts, gesture=ev.id))
            self._apply_gesture(ev, now)

        counted = self._counter_view(signals)
        before = self.counter.count
        update = self.counter.update(counted, now)
        if update is not None:
            self.last_update = update
            if update.count > before:
                self._emit(RepEvent(
                    type=EventType.REP, ts=now, count=update.count, state=update.state,
                    exercise=self.option.id, hand=self.counter.active_hand(),
                ))
        return FrameResult(update=update, gestures=events, hands=hands, signals=signals)

    def _counter_view(self, signals: FrameSignals) -> FrameSignals:
        # a fixed hand mode hides the other arm from the counter
        mode = self.hand_mode
        if mode not in ("left", "right"):
            return signals
        return FrameSignals(
            hip_angle=signals.hip_angle,
            confidence=signals.confidence,
            hands=[h for h in signals.hands if h.side == mode],
        )

    def _apply_gesture(self, ev: GestureEvent, now: float):
        if ev.id == "reset":
            self.counter.reset()
            self.tracker.reset()
            self.last_update = None
            logger.info("reset gesture: counter cleared")
            return
        target = GESTURE_EXERCISE.get(ev.id)
        if target is None:
            return
        if get_exercise_option(target).type == self.option.type:
            return
        # keep the gesture engine's cooldowns so the pose does not re-fire
        self.option = get_exercise_option(target)
        self.counter = self._build_counter()
        self.tracker.reset()
        self.last_update = None
        logger.info("exercise set to %s (gesture)", self.option.id)
        self._emit(ExerciseChanged(type=EventType.EXERCISE, ts=now, exercise=self.option.id, reason="gesture"))

    @staticmethod
    def _ts(now: Optional[float]) -> float:
        return now_ms() if now is None else now
