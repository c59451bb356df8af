from __future__ import annotations
from typing import List, Optional

import pytest

from bellcount.counter.calibration import default_calibration, thresholds_from_calibration
from bellcount.counter.pose_core import Keypoint, Pose
from bellcount.counter.signals import FrameSignals, HandSignal

FRAME_MS = 35.0

# Body layout in pixels: shoulders y=100, hips y=200 (torso 100px), head ~y=47.5
SHOULDER_Y = 100.0
HIP_Y = 200.0
LEFT_X = 100.0
RIGHT_X = 160.0


def hand(
    side: str,
    height: float = -0.3,
    above_shoulder: Optional[float] = None,
    above_head: Optional[float] = None,
    elbow: float = 175.0,
    conf: float = 0.9,
) -> HandSignal:
    # keep the three heights consistent with the body layout unless overridden
    if above_shoulder is None:
        above_shoulder = height - 1.0
    if above_head is None:
        above_head = above_shoulder - 0.525
    return HandSignal(
        side=side,
        hand_height_hip=height,
        hand_above_shoulder=above_shoulder,
        hand_above_head=above_head,
        elbow_angle=elbow,
        confidence=conf,
    )


def frame(hip: float = 170.0, conf: float = 0.9, left: Optional[HandSignal] = None, right: Optional[HandSignal] = None) -> FrameSignals:
    return FrameSignals(
        hip_angle=hip,
        confidence=conf,
        hands=[left or hand("left"), right or hand("right")],
    )


def _arm(side: str, wrist_x: float, wrist_y: float, score: float) -> List[Keypoint]:
    sx = LEFT_X if side == "left" else RIGHT_X
    return [
        Keypoint(f"{side}_shoulder", sx, SHOULDER_Y, score),
        Keypoint(f"{side}_elbow", (sx + wrist_x) / 2, (SHOULDER_Y + wrist_y) / 2, score),
        Keypoint(f"{side}_wrist", wrist_x, wrist_y, score),
    ]


def make_pose(
    left_height: float = -0.3,
    right_height: float = -0.3,
    hinge: bool = False,
    score: float = 0.9,
    left_score: Optional[float] = None,
    right_score: Optional[float] = None,
    t_pose: bool = False,
    drop: tuple = (),
) -> Pose:
    """Synthetic front-facing pose; hand heights are torso lengths above the hips."""
    ls = score if left_score is None else left_score
    rs = score if right_score is None else right_score
    kps = [
        Keypoint("nose", 130.0, 50.0, score),
        Keypoint("left_eye", 120.0, 45.0, score),
        Keypoint("right_eye", 140.0, 45.0, score),
        Keypoint("left_hip", LEFT_X, HIP_Y, score),
        Keypoint("right_hip", RIGHT_X, HIP_Y, score),
    ]
    if hinge:
        # knees forward of the hips: 90 degree hip angle
        kps += [Keypoint("left_knee", LEFT_X + 100, HIP_Y, score), Keypoint("right_knee", RIGHT_X + 100, HIP_Y, score)]
    else:
        kps += [Keypoint("left_knee", LEFT_X, HIP_Y + 100, score), Keypoint("right_knee", RIGHT_X, HIP_Y + 100, score)]
    if t_pose:
        kps += _arm("left", LEFT_X - 100, SHOULDER_Y, ls)
        kps += _arm("right", RIGHT_X + 100, SHOULDER_Y, rs)
    else:
        kps += _arm("left", LEFT_X, HIP_Y - 100 * left_height, ls)
        kps += _arm("right", RIGHT_X, HIP_Y - 100 * right_height, rs)
    kps = [kp for kp in kps if kp.name not in drop]
    return Pose(keypoints=kps, score=score)


class Clock:
    def __init__(self, start: float = 0.0, step: float = FRAME_MS):
        self.t = start
        self.step = step

    def tick(self) -> float:
        self.t += self.step
        return self.t


@pytest.fixture
def thresholds():
    return thresholds_from_calibration(default_calibration())


@pytest.fixture
def clock():
    return Clock()
