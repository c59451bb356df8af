from __future__ import annotations
import math

import pytest

from bellcount.counter.pose_core import Keypoint, Pose, angle_3pt, pose_from_landmarks, pose_from_payload
from bellcount.counter.signals import extract_frame_signals, extract_motion_signals
from conftest import make_pose


def test_angle_3pt():
    a, b, c = Keypoint("a", 0, 1), Keypoint("b", 0, 0), Keypoint("c", 1, 0)
    assert angle_3pt(a, b, c) == pytest.approx(90.0)
    assert angle_3pt(Keypoint("a", -1, 0), b, c) == pytest.approx(180.0)
    assert math.isnan(angle_3pt(None, b, c))
    assert math.isnan(angle_3pt(b, b, c))  # zero-length arm


def test_standing_pose_signals():
    sig = extract_frame_signals(make_pose(left_height=0.5, right_height=1.5))
    assert sig.hip_angle == pytest.approx(180.0)
    assert sig.confidence == pytest.approx(0.9)
    left, right = sig.hand("left"), sig.hand("right")
    assert left.hand_height_hip == pytest.approx(0.5)
    assert left.hand_above_shoulder == pytest.approx(-0.5)
    assert left.hand_above_head == pytest.approx(-1.025)
    assert left.elbow_angle == pytest.approx(180.0)
    assert right.hand_height_hip == pytest.approx(1.5)
    assert right.hand_above_head == pytest.approx(-0.025)
    assert right.confidence == pytest.approx(0.9)


def test_hinged_hip_angle():
    sig = extract_frame_signals(make_pose(hinge=True))
    assert sig.hip_angle == pytest.approx(90.0)


def test_scale_invariance():
    near = make_pose(left_height=0.8)
    far = Pose(keypoints=[Keypoint(kp.name, kp.x * 0.5, kp.y * 0.5, kp.score) for kp in near.keypoints])
    a, b = extract_frame_signals(near), extract_frame_signals(far)
    assert a.hand("left").hand_height_hip == pytest.approx(b.hand("left").hand_height_hip)
    assert a.hip_angle == pytest.approx(b.hip_angle)


def test_missing_wrist_falls_back_to_elbow_and_reads_extended():
    sig = extract_frame_signals(make_pose(left_height=1.0, drop=("left_wrist",)))
    left = sig.hand("left")
    # elbow sits halfway between shoulder (y=100) and wrist (y=100): height 1.0
    assert left.hand_height_hip == pytest.approx(1.0)
    assert left.elbow_angle == 180.0


def test_missing_joints_give_nan_not_errors():
    sig = extract_frame_signals(Pose(keypoints=[Keypoint("nose", 10, 10, 0.9)]))
    assert math.isnan(sig.hip_angle)
    assert sig.confidence == 0.0


def test_nan_shoulder_scores_are_not_trusted():
    pose = make_pose()
    for kp in pose.keypoints:
        if kp.name.endswith("_shoulder"):
            kp.score = math.nan
    sig = extract_frame_signals(pose)
    assert sig.confidence == 0.0
    assert all(h.confidence == 0.0 for h in sig.hands)
    for h in sig.hands:
        assert math.isnan(h.hand_height_hip)
        assert math.isnan(h.elbow_angle)
        assert h.confidence == 0.0


def test_hand_confidence_needs_shoulders():
    sig = extract_frame_signals(make_pose(drop=("left_shoulder", "right_shoulder")))
    assert all(h.confidence == 0.0 for h in sig.hands)
    assert sig.confidence == 0.0


def test_motion_signals_modes():
    pose = make_pose(left_height=0.2, right_height=1.2, left_score=0.6, right_score=0.8)
    assert extract_motion_signals(pose, "auto").hand_used == "right"
    assert extract_motion_signals(pose, "left").hand_height_hip == pytest.approx(0.2)
    highest = extract_motion_signals(pose, "highest")
    assert highest.hand_used == "right"
    assert highest.hand_height_hip == pytest.approx(1.2)
    both = extract_motion_signals(pose, "both")
    assert both.hand_used == "both"
    assert both.hand_height_hip == pytest.approx(0.7)
    forced = extract_motion_signals(pose, "auto", forced_hand="left")
    assert forced.hand_used == "left"
    assert forced.confidence == pytest.approx(0.6)


class _Landmark:
    def __init__(self, x, y, visibility):
        self.x, self.y, self.visibility = x, y, visibility


def test_pose_from_landmarks_maps_mediapipe_indices():
    lms = [_Landmark(i / 100.0, i / 100.0, 0.5) for i in range(33)]
    pose = pose_from_landmarks(lms, width=200, height=100)
    named = pose.named()
    assert named["left_wrist"].x == pytest.approx(30.0)
    assert named["left_wrist"].y == pytest.approx(15.0)
    assert named["right_hip"].x == pytest.approx(48.0)
    assert len(named) == 15


def test_pose_from_payload_skips_bad_entries():
    pose = pose_from_payload([
        {"name": "nose", "x": 1, "y": 2, "score": 0.9},
        {"name": "left_wrist", "x": "bad", "y": 2},
        {"name": "tail", "x": 1, "y": 1},
        {"x": 1, "y": 1},
        {"name": "left_hip", "x": 3, "y": 4},
    ])
    assert [kp.name for kp in pose.keypoints] == ["nose", "left_hip"]
    assert pose.named()["left_hip"].score == 0.0


def test_pose_from_payload_drops_non_finite_scores():
    pose = pose_from_payload([
        {"name": "left_shoulder", "x": 1, "y": 2, "score": float("nan")},
        {"name": "right_shoulder", "x": 1, "y": 2, "score": float("inf")},
        {"name": "left_hip", "x": 1, "y": 2, "score": 10 ** 400},
        {"name": "right_hip", "x": 3, "y": 4, "score": 0.9},
    ])
    assert [kp.name for kp in pose.keypoints] == ["right_hip"]
