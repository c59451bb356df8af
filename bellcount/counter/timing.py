from __future__ import annotations
import time
from typing import Optional

# Frame-count tunings are expressed in ms at this nominal camera rate.
NOMINAL_FRAME_MS = 1000.0 / 30


def now_ms() -> float:
    return time.time() * 1000.0


class HoldTimer:
    """
    How long a condition has held without a break, measured in ms from the
    first frame it was true. With `frames` set it also fires after that many
    consecutive true frames, whichever comes first.
    """

    def __init__(self, hold_ms: float, frames: Optional[int] = None):
        self.hold_ms = hold_ms
        self.frames = frames
        self.since: Optional[float] = None
        self.seen = 0

    @property
    def running(self) -> bool:
        return self.since is not None

    def step(self, condition: bool, now: float) -> bool:
        if not condition:
            self.clear()
            return False
        if self.since is None:
            self.since = now
        self.seen += 1
        if self.frames is not None and self.seen >= self.frames:
            return True
        return now - self.since >= self.hold_ms

    def clear(self):
        self.since = None
        self.seen = 0
