from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from bellcount.counter.calibration import DerivedThresholds
from bellcount.counter.pose_core import is_finite
from bellcount.counter.signals import FrameSignals, HandSignal, Side
from bellcount.counter.timing import HoldTimer, now_ms

MIN_CONF = 0.25
REARM_MS = 65.0  # three frames at 30 fps
REARM_FRAMES = 3  # re-arm after this many low frames even on a fast camera
SIDES = ("left", "right")


@dataclass
class CounterUpdate:
    count: int
    state: str
    feedback: Optional[str] = None


def _usable(frame: FrameSignals) -> bool:
    return is_finite(frame.hip_angle) and frame.confidence >= MIN_CONF


class RepCounter:
    """Common contract: `update` returns None for unusable frames, count never goes down."""

    name = "counter"

    def __init__(self, debug_cb: Optional[Callable[[str], None]] = None):
        self._dbg = debug_cb or (lambda *_: None)

    def reset(self):
        raise NotImplementedError

    def update(self, frame: FrameSignals, now: Optional[float] = None) -> Optional[CounterUpdate]:
        raise NotImplementedError

    def active_hand(self) -> Optional[Side]:
        return None

    def set_thresholds(self, thresholds: DerivedThresholds):
        """Swap in new calibration without losing the count. Lockout counters ignore it."""

    @property
    def count(self) -> int:
        return self.state.count

    def _debounced(self, last_rep_ts: Optional[float], now: float, min_rep_ms: float) -> bool:
        return last_rep_ts is None or now - last_rep_ts >= min_rep_ms


# --- Swing ------------------------------------------------------------------

@dataclass
class SwingConfig:
    ema_alpha: float = 0.35
    vel_enter: float = 0.004        # minimum per-frame rise of the smoothed height
    apex_margin: float = 0.1        # count band sits this far below the apex height
    bottom_band: float = 0.1
    stood_up_margin: float = 10.0   # degrees below hinge_exit still counted as standing
    hinge_reset: float = 150.0
    rearm_ms: float = REARM_MS
    rearm_frames: int = REARM_FRAMES
    active_timeout_ms: float = 1500.0
    idle_vel: float = 0.0005        # units per ms


@dataclass
class SwingState:
    count: int = 0
    phase: str = "backswing"  # backswing | upswing | top
    last_rep_ts: Optional[float] = None
    last_ts: Optional[float] = None
    hip_angle: Optional[float] = None
    heights: Dict[str, Optional[float]] = field(default_factory=lambda: {"left": None, "right": None})
    active_hand: Optional[Side] = None
    ready: Dict[str, bool] = field(default_factory=lambda: {"left": True, "right": True})
    rearm: Dict[str, HoldTimer] = field(default_factory=dict)
    release: Dict[str, HoldTimer] = field(default_factory=dict)


class SwingRepCounter(RepCounter):
    """
    Two-handed hinge swing. A rep is the smoothed hand height crossing up through
    the apex band while standing tall. One hand at a time owns the rep, so a
    two-handed swing counts once; the owner is released when it drops back,
    the hips re-hinge, or it goes idle past the timeout.
    """

    name = "swing"

    def __init__(
        self,
        thresholds: DerivedThresholds,
        cfg: Optional[SwingConfig] = None,
        debug_cb: Optional[Callable[[str], None]] = None,
    ):
        super().__init__(debug_cb)
        self.thresholds = thresholds
        self.cfg = cfg or SwingConfig()
        self.state = self._fresh_state()

    def _fresh_state(self) -> SwingState:
        return SwingState(
            rearm={s: HoldTimer(self.cfg.rearm_ms, self.cfg.rearm_frames) for s in SIDES},
            release={s: HoldTimer(self.cfg.rearm_ms, self.cfg.rearm_frames) for s in SIDES},
        )

    def reset(self):
        self.state = self._fresh_state()

    def set_thresholds(self, thresholds: DerivedThresholds):
        self.thresholds = thresholds

    def active_hand(self) -> Optional[Side]:
        return self.state.active_hand

    def _smooth(self, prev: Optional[float], value: float) -> float:
        if prev is None:
            return value
        a = self.cfg.ema_alpha
        return prev * (1 - a) + value * a

    def _set_phase(self, phase: str):
        if phase != self.state.phase:
            self.state.phase = phase
            self._dbg(f"state→{phase}")

    def update(self, frame: FrameSignals, now: Optional[float] = None) -> Optional[CounterUpdate]:
        if not _usable(frame):
            return None
        now = now_ms() if now is None else now
        st, cfg, th = self.state, self.cfg, self.thresholds
        feedback = None

        st.hip_angle = self._smooth(st.hip_angle, frame.hip_angle)
        dt = now - st.last_ts if st.last_ts is not None else 0.0
        st.last_ts = now

        apex_band = th.apex_height - cfg.apex_margin
        reset_band = max(cfg.bottom_band, th.reset_height)
        stood_up = st.hip_angle > th.hinge_exit - cfg.stood_up_margin

        for hand in frame.hands:
            if not is_finite(hand.hand_height_hip):
                continue
            side = hand.side
            prev = st.heights[side]
            smoothed = self._smooth(prev, hand.hand_height_hip)
            st.heights[side] = smoothed
            if prev is None:
                prev = smoothed
            rise = smoothed - prev
            velocity = rise / dt if dt > 0 else 0.0

            # re-arm once the hand has sat below the reset band for a moment
            if st.rearm[side].step(smoothed < reset_band, now):
                st.ready[side] = True

            crossed_apex = prev < apex_band <= smoothed
            can_count = (
                st.ready[side]
                and crossed_apex
                and rise > cfg.vel_enter
                and stood_up
                and hand.confidence > MIN_CONF
                and self._debounced(st.last_rep_ts, now, th.min_rep_ms)
            )
            active_stale = (
                st.active_hand is not None
                and st.last_rep_ts is not None
                and now - st.last_rep_ts > cfg.active_timeout_ms
            )

            if st.active_hand is None or (active_stale and side != st.active_hand):
                if can_count:
                    st.count += 1
                    st.last_rep_ts = now
                    feedback = "Rep counted"
                    st.active_hand = side
                    st.ready[side] = False
                    st.rearm[side].clear()
                    st.release[side].clear()
                    self._set_phase("top")
                    self._dbg(f"rep {st.count} ({side})")
                elif smoothed < cfg.bottom_band:
                    self._set_phase("backswing")
                else:
                    self._set_phase("upswing")
            elif side == st.active_hand:
                hand_reset = smoothed < reset_band
                hinge_reset = st.hip_angle < cfg.hinge_reset
                idle = abs(velocity) < cfg.idle_vel and active_stale
                releasing = hand_reset or hinge_reset or idle
                if st.release[side].step(releasing, now):
                    st.active_hand = None
                    st.release[side].clear()
                    st.ready[side] = smoothed < reset_band
                    self._set_phase("backswing")
                elif not releasing:
                    self._set_phase("top")

        return CounterUpdate(count=st.count, state=st.phase, feedback=feedback)


# --- Lockout family (snatch, half snatch, long cycle, jerk) -----------------

@dataclass(frozen=True)
class LockoutConfig:
    low_band: float
    head_thresh: float
    hold_ms: float
    min_rep_ms: float
    name: str
    rearm_ms: float = REARM_MS
    rearm_frames: int = REARM_FRAMES


SNATCH = LockoutConfig(low_band=0.28, head_thresh=0.5, hold_ms=100, min_rep_ms=400, name="snatch")
HALF_SNATCH = LockoutConfig(low_band=0.25, head_thresh=0.5, hold_ms=100, min_rep_ms=400, name="half-snatch")
LONG_CYCLE = LockoutConfig(low_band=0.3, head_thresh=0.5, hold_ms=100, min_rep_ms=500, name="long-cycle")
JERK = LockoutConfig(low_band=0.15, head_thresh=0.5, hold_ms=100, min_rep_ms=400, name="jerk")


@dataclass
class LockoutState:
    count: int = 0
    phase: str = "ready"  # ready | lockout | counted
    last_rep_ts: Optional[float] = None
    active_hand: Optional[Side] = None
    lockout: Dict[str, HoldTimer] = field(default_factory=dict)
    rearm: Dict[str, HoldTimer] = field(default_factory=dict)


class LockoutRepCounter(RepCounter):
    """
    Overhead lockout counter. A hand held above the head for `hold_ms` counts;
    that hand then owns the count and the other hand is ignored until the owner
    has sat in its low band for `rearm_frames` frames or `rearm_ms`, whichever
    comes first. Variants only change the config and what "low" means.
    """

    preset: LockoutConfig = SNATCH

    def __init__(self, config: Optional[LockoutConfig] = None, debug_cb: Optional[Callable[[str], None]] = None, **overrides):
        super().__init__(debug_cb)
        self.config = replace(config or self.preset, **overrides)
        self.name = self.config.name
        self.state = self._fresh_state()

    def _fresh_state(self) -> LockoutState:
        return LockoutState(
            lockout={s: HoldTimer(self.config.hold_ms) for s in SIDES},
            rearm={s: HoldTimer(self.config.rearm_ms, self.config.rearm_frames) for s in SIDES},
        )

    def reset(self):
        self.state = self._fresh_state()

    def active_hand(self) -> Optional[Side]:
        return self.state.active_hand

    def is_low(self, hand: HandSignal) -> bool:
        return hand.hand_above_shoulder < self.config.low_band

    def is_lockout(self, hand: HandSignal, hip_angle: float) -> bool:
        return hand.hand_above_head > self.config.head_thresh

    def _set_phase(self, phase: str):
        if phase != self.state.phase:
            self.state.phase = phase
            self._dbg(f"state→{phase}")

    def update(self, frame: FrameSignals, now: Optional[float] = None) -> Optional[CounterUpdate]:
        if not _usable(frame):
            return None
        now = now_ms() if now is None else now
        st, cfg = self.state, self.config
        feedback = None

        hands: List[HandSignal] = [
            h for h in frame.hands
            if is_finite(h.hand_height_hip) and is_finite(h.elbow_angle)
            and is_finite(h.hand_above_head) and is_finite(h.hand_above_shoulder)
        ]

        for hand in hands:
            side = hand.side

            if st.active_hand is None:
                locked_out = self.is_lockout(hand, frame.hip_angle) and hand.confidence > MIN_CONF
                held = st.lockout[side].step(locked_out, now)
                if not locked_out:
                    continue
                if held and self._debounced(st.last_rep_ts, now, cfg.min_rep_ms):
                    st.count += 1
                    st.last_rep_ts = now
                    feedback = "Rep counted"
                    st.active_hand = side
                    st.lockout[side].clear()
                    st.rearm[side].clear()
                    self._set_phase("counted")
                    self._dbg(f"rep {st.count} ({side})")
                else:
                    self._set_phase("lockout")
            elif side == st.active_hand:
                # wait for the working hand to come back down before re-arming
                if st.rearm[side].step(self.is_low(hand), now):
                    st.active_hand = None
                    st.rearm[side].clear()
                    self._set_phase("ready")
            else:
                # the other hand's lockouts are ignored until the owner re-arms
                st.lockout[side].clear()

        return CounterUpdate(count=st.count, state=st.phase, feedback=feedback)


class SnatchRepCounter(LockoutRepCounter):
    preset = SNATCH


class HalfSnatchRepCounter(LockoutRepCounter):
    preset = HALF_SNATCH


class LongCycleRepCounter(LockoutRepCounter):
    preset = LONG_CYCLE


class JerkRepCounter(LockoutRepCounter):
    preset = JERK

    # Jerks re-arm in the rack: hand just above the shoulder line.
    def is_low(self, hand: HandSignal) -> bool:
        return 0.05 < hand.hand_above_shoulder < 0.9
