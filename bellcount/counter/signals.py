from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Tuple

from bellcount.counter.pose_core import (
    Keypoint,
    Pose,
    angle_3pt,
    average_point,
    average_score,
    distance,
    is_finite,
    score_of,
)

HandMode = Literal["left", "right", "auto", "both", "highest", "lockout"]
Hand = Literal["left", "right", "both"]
Side = Literal["left", "right"]

MIN_TORSO_PX = 10.0


@dataclass
class HandSignal:
    side: Side
    hand_height_hip: float
    hand_above_shoulder: float
    hand_above_head: float
    elbow_angle: float
    confidence: float


@dataclass
class FrameSignals:
    hip_angle: float
    confidence: float
    hands: List[HandSignal] = field(default_factory=list)

    def hand(self, side: Side) -> Optional[HandSignal]:
        for h in self.hands:
            if h.side == side:
                return h
        return None


@dataclass
class MotionSignals:
    """Single-hand view of a frame, used where one scalar stream is enough."""
    hip_angle: float
    hand_height_hip: float
    hand_above_shoulder: float
    hand_above_head: float
    elbow_angle: float
    confidence: float
    hand_used: Hand


class _Body:
    """Shared torso geometry for one pose."""

    def __init__(self, pose: Pose):
        self.kp: Dict[str, Keypoint] = pose.named()
        g = self.kp.get
        torso = (distance(g("left_shoulder"), g("left_hip")) + distance(g("right_shoulder"), g("right_hip"))) / 2
        self.torso = max(MIN_TORSO_PX, torso)  # pixels; floor keeps degenerate poses finite

        self.hips = average_point(g("left_hip"), g("right_hip"))
        self.shoulders = average_point(g("left_shoulder"), g("right_shoulder"))
        self.head = average_point(g("nose"), average_point(g("left_eye"), g("right_eye")))
        self.shoulder_score = average_score(g("left_shoulder"), g("right_shoulder"))
        self.hip_score = average_score(g("left_hip"), g("right_hip"))

        angles = [
            angle_3pt(g("left_shoulder"), g("left_hip"), g("left_knee")),
            angle_3pt(g("right_shoulder"), g("right_hip"), g("right_knee")),
        ]
        angles = [a for a in angles if is_finite(a)]
        self.hip_angle = sum(angles) / len(angles) if angles else math.nan

    def heights(self, point: Optional[Keypoint]) -> Tuple[float, float, float]:
        """(above hips, above shoulders, above head), torso-normalized, up is positive."""
        if point is None:
            return math.nan, math.nan, math.nan
        hip = (self.hips.y - point.y) / self.torso if self.hips is not None else math.nan
        shoulder = (self.shoulders.y - point.y) / self.torso if self.shoulders is not None else math.nan
        head = (self.head.y - point.y) / self.torso if self.head is not None else math.nan
        return hip, shoulder, head


def extract_frame_signals(pose: Pose) -> FrameSignals:
    """Per-hand signals for one frame. Never raises; missing geometry shows up as nan."""
    body = _Body(pose)

    def make_hand(side: Side) -> HandSignal:
        wrist = body.kp.get(f"{side}_wrist")
        elbow = body.kp.get(f"{side}_elbow")
        shoulder = body.kp.get(f"{side}_shoulder")
        # Fall back to elbow/shoulder if the wrist is occluded so height is still tracked.
        point = wrist or elbow or shoulder
        height_hip, above_shoulder, above_head = body.heights(point)

        elbow_angle = angle_3pt(shoulder, elbow, wrist)
        # Wrist missing but arm visible: read it as extended, not bent.
        if not is_finite(elbow_angle) and shoulder is not None and elbow is not None:
            elbow_angle = 180.0

        hand_score = max(score_of(p) for p in (wrist, elbow, shoulder))
        return HandSignal(
            side=side,
            hand_height_hip=height_hip,
            hand_above_shoulder=above_shoulder,
            hand_above_head=above_head,
            elbow_angle=elbow_angle,
            confidence=min(hand_score, body.shoulder_score),
        )

    return FrameSignals(
        hip_angle=body.hip_angle,
        confidence=min(body.hip_score, body.shoulder_score),
        hands=[make_hand("left"), make_hand("right")],
    )


def _choose_hand(
    left: Optional[Keypoint],
    right: Optional[Keypoint],
    mode: HandMode,
    forced: Optional[Hand] = None,
) -> Tuple[Optional[Keypoint], Hand]:
    if forced == "both":
        if left is not None and right is not None:
            return average_point(left, right), "both"
        if left is not None:
            return left, "left"
        if right is not None:
            return right, "right"
    if forced in ("left", "right"):
        return (left if forced == "left" else right), forced
    if mode in ("left", "right"):
        return (left if mode == "left" else right), mode

    left_score = score_of(left)
    right_score = score_of(right)

    if mode == "both":
        if left is not None and right is not None:
            return average_point(left, right), "both"
        return (left, "left") if left_score >= right_score else (right, "right")

    if mode == "highest":
        if left is None and right is None:
            return None, "left"
        left_y = left.y if left is not None else math.inf
        right_y = right.y if right is not None else math.inf
        # smaller y is higher in the image
        return (left, "left") if left_y <= right_y else (right, "right")

    # auto / lockout: trust the better-seen hand
    return (left, "left") if left_score >= right_score else (right, "right")


def extract_motion_signals(pose: Pose, hand_mode: HandMode = "auto", forced_hand: Optional[Hand] = None) -> MotionSignals:
    body = _Body(pose)
    g = body.kp.get

    wrist, hand_used = _choose_hand(g("left_wrist"), g("right_wrist"), hand_mode, forced_hand)
    follow = forced_hand or hand_used
    elbow, _ = _choose_hand(g("left_elbow"), g("right_elbow"), hand_mode, follow)
    shoulder, _ = _choose_hand(g("left_shoulder"), g("right_shoulder"), hand_mode, follow)

    point = wrist or elbow or shoulder
    height_hip, above_shoulder, above_head = body.heights(point)
    wrist_score = score_of(wrist)

    return MotionSignals(
        hip_angle=body.hip_angle,
        hand_height_hip=height_hip,
        hand_above_shoulder=above_shoulder,
        hand_above_head=above_head,
        elbow_angle=angle_3pt(shoulder, elbow, wrist),
        confidence=min(body.hip_score, body.shoulder_score, wrist_score),
        hand_used=follow,
    )
