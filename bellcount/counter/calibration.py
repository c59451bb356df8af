from __future__ import annotations
import math
from dataclasses import asdict, dataclass, fields
from typing import Iterable, List, Optional, Union

from bellcount.counter.pose_core import is_finite
from bellcount.counter.signals import FrameSignals, MotionSignals

MIN_HIP_RANGE = 10.0     # degrees
MIN_HAND_RANGE = 0.3     # torso lengths
MIN_REP_MS = 400.0       # floor against double counts from bounces
MIN_SAMPLE_CONF = 0.25


@dataclass
class Calibration:
    hip_angle_min: float = 95.0     # deepest hinge observed
    hip_angle_max: float = 175.0    # upright
    hand_height_min: float = 0.05   # hands near hips
    hand_height_max: float = 1.6    # hands overhead

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Optional[dict], fallback: Optional["Calibration"] = None) -> "Calibration":
        """Tolerant load of a stored calibration: bad or missing fields come from the fallback."""
        base = fallback or default_calibration()
        if not isinstance(raw, dict):
            return base
        values = {}
        for f in fields(cls):
            v = raw.get(f.name)
            try:
                v = float(v)
            except (TypeError, ValueError, OverflowError):
                v = math.nan
            values[f.name] = v if math.isfinite(v) else getattr(base, f.name)
        return cls(**values)


@dataclass(frozen=True)
class DerivedThresholds:
    apex_height: float
    reset_height: float
    hinge_exit: float
    min_rep_ms: float


def default_calibration() -> Calibration:
    return Calibration()


def thresholds_from_calibration(cal: Calibration) -> DerivedThresholds:
    hip_range = max(MIN_HIP_RANGE, cal.hip_angle_max - cal.hip_angle_min)
    hand_range = max(MIN_HAND_RANGE, cal.hand_height_max - cal.hand_height_min)
    return DerivedThresholds(
        apex_height=cal.hand_height_min + hand_range * 0.8,    # count at 80% of observed apex
        reset_height=cal.hand_height_min + hand_range * 0.35,  # re-arm below this
        hinge_exit=cal.hip_angle_min + hip_range * 0.65,       # "stood up" past this angle
        min_rep_ms=MIN_REP_MS,
    )


Sample = Union[FrameSignals, MotionSignals]


def _sample_height(sample: Sample) -> float:
    if isinstance(sample, FrameSignals):
        heights = [h.hand_height_hip for h in sample.hands if is_finite(h.hand_height_hip)]
        return max(heights) if heights else math.nan
    return sample.hand_height_hip


def calibration_from_samples(samples: Iterable[Sample], fallback: Optional[Calibration] = None) -> Calibration:
    """Min/max envelope of the samples; the fallback when nothing finite was seen."""
    fallback = fallback or default_calibration()
    hips: List[float] = []
    hands: List[float] = []
    for s in samples:
        if is_finite(s.hip_angle):
            hips.append(s.hip_angle)
        h = _sample_height(s)
        if is_finite(h):
            hands.append(h)
    if not hips or not hands:
        return fallback
    return Calibration(
        hip_angle_min=min(hips),
        hip_angle_max=max(hips),
        hand_height_min=min(hands),
        hand_height_max=max(hands),
    )


class CalibrationRecorder:
    """Collects frames during a guided calibration routine."""

    def __init__(self, min_confidence: float = MIN_SAMPLE_CONF):
        self.min_confidence = min_confidence
        self.active = False
        self._samples: List[Sample] = []

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    def start(self):
        self._samples = []
        self.active = True

    def add(self, sample: Sample) -> bool:
        if not self.active or sample.confidence < self.min_confidence:
            return False
        self._samples.append(sample)
        return True

    def finish(self, fallback: Optional[Calibration] = None) -> Calibration:
        self.active = False
        cal = calibration_from_samples(self._samples, fallback)
        self._samples = []
        return cal
