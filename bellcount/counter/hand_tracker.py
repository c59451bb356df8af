from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Literal, Mapping, Optional

from bellcount.counter.pose_core import Keypoint, Pose, clamp01, score_of
from bellcount.counter.signals import Hand, HandMode, Side
from bellcount.counter.timing import HoldTimer, now_ms

PART_WEIGHTS = (("wrist", 1.0), ("elbow", 0.75), ("shoulder", 0.6))

TrackerPhase = Literal["idle", "tracking", "locked", "both"]


@dataclass
class TrackerConfig:
    enter: float = 0.45
    exit: float = 0.25
    # hold times in ms; roughly 6/12/10/24/20 frames at 30 fps
    switch_hold_ms: float = 200.0
    lockout_switch_hold_ms: float = 400.0
    switch_lead: float = 0.07
    lockout_switch_lead: float = 0.14
    drop_hold_ms: float = 330.0
    rest_hold_ms: float = 800.0
    rest_thresh: float = 0.2
    stick_ms: float = 660.0
    height_bias: float = 0.12


@dataclass
class HandSelection:
    active: Optional[Hand]
    scores: Dict[str, float] = field(default_factory=dict)


def score_side(named: Mapping[str, Keypoint], side: Side, height_bias: float) -> float:
    """0..1 visibility score of one arm, nudged up when the hand is above the shoulder."""
    total = 0.0
    weights = 0.0
    for part, weight in PART_WEIGHTS:
        kp = named.get(f"{side}_{part}")
        if kp is not None:
            total += score_of(kp) * weight
            weights += weight
    base = total / weights if weights else 0.0

    shoulder = named.get(f"{side}_shoulder")
    hand = named.get(f"{side}_wrist") or named.get(f"{side}_elbow") or shoulder
    bias = height_bias if shoulder is not None and hand is not None and hand.y < shoulder.y else 0.0
    return clamp01(base + bias)


class HandTracker:
    """
    Picks the working hand with hysteresis: acquire above `enter`, stick for a
    while after each change, switch only on a sustained lead, drop only when
    both sides stay low. All holds are wall-clock so a slow camera does not
    stretch them.
    """

    def __init__(self, cfg: Optional[TrackerConfig] = None):
        self.cfg = cfg or TrackerConfig()
        self.active: Optional[Side] = None
        self.phase: TrackerPhase = "idle"
        self._stick_until: Optional[float] = None
        self._switch = HoldTimer(self.cfg.switch_hold_ms)
        self._drop = HoldTimer(self.cfg.drop_hold_ms)
        self._rest = HoldTimer(self.cfg.rest_hold_ms)

    def reset(self):
        self.active = None
        self.phase = "idle"
        self._stick_until = None
        self._switch.clear()
        self._drop.clear()
        self._rest.clear()

    def _take(self, side: Side, now: float):
        if side != self.active:
            self._switch.clear()
        self.active = side
        self._stick_until = now + self.cfg.stick_ms

    def update(
        self,
        pose: Pose,
        mode: HandMode = "auto",
        locked: Optional[Hand] = None,
        now: Optional[float] = None,
    ) -> HandSelection:
        now = now_ms() if now is None else now
        named = pose.named()
        scores = {
            "left": score_side(named, "left", self.cfg.height_bias),
            "right": score_side(named, "right", self.cfg.height_bias),
        }

        # Two-arm modes just use both hands.
        if mode == "both" or locked == "both":
            self.reset()
            self.phase = "both"
            return HandSelection(active="both", scores=scores)

        if locked is None and mode in ("left", "right"):
            locked = mode

        best: Side = "left" if scores["left"] >= scores["right"] else "right"
        best_score = scores[best]

        if locked in ("left", "right"):
            self._take(locked, now)

        if self.active is None and best_score >= self.cfg.enter:
            self._take(best, now)

        if self.active is not None and locked is None and now >= self._stick_until:
            self._consider_switch(scores, mode, now)

        # Drop to neutral only if both hands stay low.
        both_low = scores["left"] < self.cfg.exit and scores["right"] < self.cfg.exit
        if self._drop.step(both_low, now) and locked is None:
            self.active = None
            self._switch.clear()
            self._stick_until = None

        if self.active is None and best_score >= self.cfg.enter:
            self._take(best, now)

        # Nothing visible for a long stretch: the athlete is resting.
        resting = scores["left"] < self.cfg.rest_thresh and scores["right"] < self.cfg.rest_thresh
        if self._rest.step(resting, now) and locked is None:
            self.reset()

        if locked in ("left", "right"):
            self.phase = "locked"
        else:
            self.phase = "tracking" if self.active is not None else "idle"
        return HandSelection(active=self.active, scores=scores)

    def _consider_switch(self, scores: Dict[str, float], mode: HandMode, now: float):
        current = self.active
        other: Side = "right" if current == "left" else "left"
        lockout = mode == "lockout"
        self._switch.hold_ms = self.cfg.lockout_switch_hold_ms if lockout else self.cfg.switch_hold_ms
        lead = self.cfg.lockout_switch_lead if lockout else self.cfg.switch_lead

        ahead_by = scores[other] - scores[current]
        leading = ahead_by > lead and scores[other] >= self.cfg.enter
        if self._switch.step(leading, now):
            self._take(other, now)
            self._drop.clear()
