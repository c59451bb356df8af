from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

# Keypoint vocabulary shared by every pose source (MoveNet-style names)
KEYPOINT_NAMES = (
    "nose", "left_eye", "right_eye",
    "left_shoulder", "right_shoulder",
    "left_elbow", "right_elbow",
    "left_wrist", "right_wrist",
    "left_hip", "right_hip",
    "left_knee", "right_knee",
    "left_ankle", "right_ankle",
)

# MediaPipe Pose landmark index -> vocabulary name
MEDIAPIPE_INDEX = {
    "nose": 0,
    "left_eye": 2,
    "right_eye": 5,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
}


@dataclass
class Keypoint:
    name: str
    x: float
    y: float
    score: float = 0.0


@dataclass
class Pose:
    keypoints: List[Keypoint] = field(default_factory=list)
    score: float = 0.0

    def named(self) -> Dict[str, Keypoint]:
        return {kp.name: kp for kp in self.keypoints if kp.name}


# Utility math

def is_finite(v: Optional[float]) -> bool:
    return v is not None and math.isfinite(v)


def clamp01(v: float) -> float:
    return max(0.0, min(1.0, v))


def distance(a: Optional[Keypoint], b: Optional[Keypoint]) -> float:
    if a is None or b is None:
        return 0.0
    return math.hypot(a.x - b.x, a.y - b.y)


def angle_3pt(a: Optional[Keypoint], b: Optional[Keypoint], c: Optional[Keypoint]) -> float:
    """Return angle ABC in degrees with B as vertex, or nan if it is undefined."""
    if a is None or b is None or c is None:
        return math.nan
    abx, aby = a.x - b.x, a.y - b.y
    cbx, cby = c.x - b.x, c.y - b.y
    mag = math.sqrt((abx * abx + aby * aby) * (cbx * cbx + cby * cby))
    if not mag:
        return math.nan
    cos = max(-1.0, min(1.0, (abx * cbx + aby * cby) / mag))
    return math.degrees(math.acos(cos))


def average_point(a: Optional[Keypoint], b: Optional[Keypoint]) -> Optional[Keypoint]:
    if a is None:
        return b
    if b is None:
        return a
    return Keypoint(name="", x=(a.x + b.x) / 2, y=(a.y + b.y) / 2, score=(score_of(a) + score_of(b)) / 2)


def score_of(point: Optional[Keypoint]) -> float:
    """Keypoint score, 0 when missing or not a number."""
    if point is None or not math.isfinite(point.score):
        return 0.0
    return point.score


def average_score(*points: Optional[Keypoint]) -> float:
    scores = [score_of(p) for p in points if p is not None]
    return sum(scores) / len(scores) if scores else 0.0


# Pose sources

def pose_from_landmarks(landmarks: Sequence, width: int, height: int) -> Pose:
    """Map MediaPipe's 33 normalized landmarks onto the shared vocabulary (pixels)."""
    keypoints = []
    for name, idx in MEDIAPIPE_INDEX.items():
        if idx >= len(landmarks):
            continue
        lm = landmarks[idx]
        vis = getattr(lm, "visibility", None)
        score = float(vis) if vis is not None else 0.0
        keypoints.append(Keypoint(name=name, x=float(lm.x) * width, y=float(lm.y) * height, score=score))
    overall = sum(score_of(kp) for kp in keypoints) / len(keypoints) if keypoints else 0.0
    return Pose(keypoints=keypoints, score=overall)


def pose_from_payload(items: Iterable[dict]) -> Pose:
    """Build a Pose from browser keypoints; entries that do not parse are skipped."""
    keypoints = []
    for item in items:
        try:
            name = str(item["name"])
            x = float(item["x"])
            y = float(item["y"])
            score = float(item.get("score") or 0.0)
        except (KeyError, TypeError, ValueError, OverflowError):
            continue
        if name not in KEYPOINT_NAMES or not (math.isfinite(x) and math.isfinite(y) and math.isfinite(score)):
            continue
        keypoints.append(Keypoint(name=name, x=x, y=y, score=score))
    overall = sum(kp.score for kp in keypoints) / len(keypoints) if keypoints else 0.0
    return Pose(keypoints=keypoints, score=overall)
