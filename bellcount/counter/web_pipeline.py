# bellcount/counter/web_pipeline.py
from __future__ import annotations
import time
from typing import Callable, Iterable, Optional

from bellcount.counter.pose_core import pose_from_payload
from bellcount.counter.session import CounterSession, FrameResult


class WebPosePipeline:
    """
    Counts from keypoints the browser already estimated. No camera and no
    worker thread: every push_pose(keypoints, ts) runs the session inline.
    """

    def __init__(
        self,
        session: CounterSession,
        on_result: Optional[Callable[[FrameResult], None]] = None,
        debug_cb: Optional[Callable[[dict], None]] = None,
    ):
        self.session = session
        self.on_result = on_result
        self.debug_cb = debug_cb
        self._running = True
        self._last_count = session.count

    # same controls as the camera runner
    def start(self):
        self._running = True

    def stop(self):
        self._running = False

    def pause(self):
        self._running = False

    def resume(self):
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    def push_pose(self, keypoints: Iterable[dict], ts: Optional[float] = None) -> Optional[FrameResult]:
        """Feed one pose ({name, x, y, score} items) captured at ts (ms)."""
        if not self._running:
            return None
        t = float(ts) if ts is not None else time.time() * 1000.0
        pose = pose_from_payload(keypoints)
        if not pose.keypoints and self.debug_cb:
            self.debug_cb({"type": "trace", "msg": "web: empty pose"})
        res = self.session.process_pose(pose, t)
        count = self.session.count
        if count > self._last_count and self.debug_cb:
            self.debug_cb({"type": "trace", "msg": f"rep++ ({count}, {self.session.counter.active_hand() or '-'})"})
        self._last_count = count
        if self.on_result:
            self.on_result(res)
        return res
