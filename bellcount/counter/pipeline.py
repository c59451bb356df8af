from __future__ import annotations
import asyncio
import logging
import queue
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from bellcount.common import settings
from bellcount.counter.pose_core import Pose, pose_from_landmarks

logger = logging.getLogger(__name__)

Emit = Callable[[dict], None]


class Frame:
    """
    One image handed to the pose worker. The worker owns it until `release()`,
    which runs exactly once however inference ends.
    """

    def __init__(self, image: np.ndarray, ts: Optional[float] = None, on_release: Optional[Callable[[], None]] = None):
        self.image: Optional[np.ndarray] = image
        self.ts = time.time() * 1000.0 if ts is None else ts
        self._on_release = on_release
        self._lock = threading.Lock()
        self.released = False

    def release(self):
        with self._lock:
            if self.released:
                return
            self.released = True
            self.image = None
            cb, self._on_release = self._on_release, None
        if cb is not None:
            cb()

    def __enter__(self) -> "Frame":
        return self

    def __exit__(self, *exc):
        self.release()
        return False


# --- Estimators -------------------------------------------------------------

class TasksEstimator:
    """MediaPipe Tasks PoseLandmarker on the GPU or CPU delegate."""

    def __init__(self, model_path: str, delegate: str = "cpu"):
        import mediapipe as mp  # lazy import
        from mediapipe.tasks import python as mp_python
        from mediapipe.tasks.python import vision

        self._mp = mp
        self.name = delegate
        base = mp_python.BaseOptions(
            model_asset_path=model_path,
            delegate=mp_python.BaseOptions.Delegate.GPU if delegate == "gpu" else mp_python.BaseOptions.Delegate.CPU,
        )
        options = vision.PoseLandmarkerOptions(
            base_options=base,
            running_mode=vision.RunningMode.VIDEO,
            num_poses=1,
            min_pose_detection_confidence=0.5,
            min_tracking_confidence=0.5,
        )
        self._landmarker = vision.PoseLandmarker.create_from_options(options)
        self._last_ts = -1

    def estimate(self, image: np.ndarray, ts: float) -> List[Pose]:
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=image)
        # VIDEO mode rejects non-increasing timestamps
        ts_ms = max(int(ts), self._last_ts + 1)
        self._last_ts = ts_ms
        result = self._landmarker.detect_for_video(mp_image, ts_ms)
        h, w = image.shape[:2]
        return [pose_from_landmarks(lms, w, h) for lms in result.pose_landmarks]

    def close(self):
        self._landmarker.close()


class SolutionsEstimator:
    """Legacy mp.solutions.pose graph, CPU only."""

    name = "legacy"

    def __init__(self, model_complexity: int = 1):
        import mediapipe as mp  # lazy import
        self._pose = mp.solutions.pose.Pose(
            model_complexity=model_complexity,
            smooth_landmarks=True,
            min_detection_confidence=0.5,
            min_tracking_confidence=0.5,
        )

    def estimate(self, image: np.ndarray, ts: float) -> List[Pose]:
        res = self._pose.process(image)
        if not res.pose_landmarks:
            return []
        h, w = image.shape[:2]
        return [pose_from_landmarks(res.pose_landmarks.landmark, w, h)]

    def close(self):
        self._pose.close()


DEFAULT_FACTORIES: Dict[str, Callable[[], object]] = {
    "gpu": lambda: TasksEstimator(settings.POSE_MODEL_PATH, "gpu"),
    "cpu": lambda: TasksEstimator(settings.POSE_MODEL_PATH, "cpu"),
    "legacy": lambda: SolutionsEstimator(settings.MODEL_COMPLEXITY),
}


def choose_backend(order: Sequence[str], factories: Dict[str, Callable[[], object]]):
    """First backend in `order` that initialises; failures are logged and skipped."""
    for name in order:
        factory = factories.get(name)
        if factory is None:
            logger.warning("unknown pose backend %r", name)
            continue
        try:
            return name, factory()
        except Exception as e:
            # continue to next backend
            logger.warning("pose backend %s failed: %s", name, e)
    raise RuntimeError(f"no pose backend available (tried {', '.join(order)})")


# --- Worker -----------------------------------------------------------------

class PoseWorker(threading.Thread):
    """
    Runs pose estimation off the consumer's thread. Messages in: init, frame,
    stop. Messages out through `emit`: ready, poses, error.
    """

    def __init__(
        self,
        emit: Emit,
        backends: Optional[Sequence[str]] = None,
        factories: Optional[Dict[str, Callable[[], object]]] = None,
    ):
        super().__init__(daemon=True, name="pose-worker")
        self._emit = emit
        self.backends = list(backends or settings.POSE_BACKENDS)
        self.factories = factories or DEFAULT_FACTORIES
        self._inbox: "queue.Queue[dict]" = queue.Queue()
        self._stopping = threading.Event()
        self._closed = False
        self._lock = threading.Lock()
        self.estimator = None
        self.backend = ""

    def post(self, msg: dict):
        with self._lock:
            if not self._closed:
                self._inbox.put(msg)
                return
        frame = msg.get("frame")
        if frame is not None:
            frame.release()

    def terminate(self):
        self._stopping.set()
        self._inbox.put({"type": "stop"})

    def run(self):
        try:
            while not self._stopping.is_set():
                try:
                    msg = self._inbox.get(timeout=0.1)
                except queue.Empty:
                    continue
                kind = msg.get("type")
                if kind == "stop":
                    break
                if kind == "init":
                    if self.estimator is None:
                        self._init_estimator()
                elif kind == "frame":
                    self._handle_frame(msg["frame"])
        finally:
            with self._lock:
                self._closed = True
            self._drain()
            if self.estimator is not None and hasattr(self.estimator, "close"):
                try:
                    self.estimator.close()
                except Exception as e:
                    logger.warning("pose estimator close failed: %s", e)

    def _init_estimator(self):
        try:
            self.backend, self.estimator = choose_backend(self.backends, self.factories)
        except Exception as e:
            logger.error("pose worker init failed: %s", e)
            self._emit({"type": "error", "message": str(e)})
            return
        logger.info("pose backend ready: %s", self.backend)
        self._emit({"type": "ready", "backend": self.backend})

    def _handle_frame(self, frame: Frame):
        # the frame goes back to its owner before the result is announced
        with frame:
            if self.estimator is None or self._stopping.is_set():
                return
            try:
                poses = self.estimator.estimate(frame.image, frame.ts)
            except Exception as e:
                logger.warning("pose inference failed: %s", e)
                msg = {"type": "error", "message": str(e)}
            else:
                msg = {"type": "poses", "poses": poses, "ts": time.time() * 1000.0}
        self._emit(msg)

    def _drain(self):
        # abandoned frames still give their buffers back
        while True:
            try:
                msg = self._inbox.get_nowait()
            except queue.Empty:
                return
            frame = msg.get("frame")
            if frame is not None:
                frame.release()


# --- Client -----------------------------------------------------------------

class PoseClient:
    """
    Consumer-side proxy for the pose worker. Callbacks run on the consumer's
    context: scheduled on `loop` when one is given, otherwise queued until
    `dispatch()` is called.
    """

    def __init__(
        self,
        on_ready: Optional[Callable[[str], None]] = None,
        on_poses: Optional[Callable[[List[Pose], float], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        worker_factory: Optional[Callable[[Emit], PoseWorker]] = None,
    ):
        self.on_ready = on_ready
        self.on_poses = on_poses
        self.on_error = on_error
        self._loop = loop
        self._outbox: "queue.Queue[dict]" = queue.Queue()
        self.initialized = False
        self.destroyed = False
        self.worker = (worker_factory or PoseWorker)(self._on_message)
        self.worker.start()

    def _on_message(self, msg: dict):
        # worker thread
        if self.destroyed:
            return
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._deliver, msg)
        else:
            self._outbox.put(msg)

    def dispatch(self, timeout: Optional[float] = None) -> int:
        """Deliver queued worker messages on the calling thread. Returns how many ran."""
        n = 0
        try:
            if timeout:
                self._deliver(self._outbox.get(timeout=timeout))
                n += 1
            while True:
                self._deliver(self._outbox.get_nowait())
                n += 1
        except queue.Empty:
            pass
        return n

    def _deliver(self, msg: dict):
        if self.destroyed:
            return
        kind = msg.get("type")
        try:
            if kind == "ready" and self.on_ready:
                self.on_ready(msg["backend"])
            elif kind == "poses" and self.on_poses:
                self.on_poses(msg["poses"], msg["ts"])
            elif kind == "error" and self.on_error:
                self.on_error(msg["message"])
        except Exception:
            logger.exception("pose client callback failed (%s)", kind)

    def init(self):
        if self.initialized:
            return
        self.worker.post({"type": "init"})
        self.initialized = True

    def send_frame(self, frame: Frame) -> bool:
        """Hand a frame to the worker. Not queued if the client is not live."""
        if not self.initialized or self.destroyed:
            frame.release()
            return False
        self.worker.post({"type": "frame", "frame": frame})
        return True

    def destroy(self):
        self.destroyed = True
        self.worker.terminate()


class FrameBudget:
    """Consumer-side rate limit: target fps and at most one frame in flight."""

    def __init__(self, fps: float = 30.0):
        self.interval_ms = 1000.0 / max(1.0, fps)
        self._last_sent: Optional[float] = None
        self.pending = False

    def ready(self, now: Optional[float] = None) -> bool:
        now = time.time() * 1000.0 if now is None else now
        if self.pending:
            return False
        return self._last_sent is None or now - self._last_sent >= self.interval_ms

    def sent(self, now: Optional[float] = None):
        self._last_sent = time.time() * 1000.0 if now is None else now
        self.pending = True

    def done(self):
        self.pending = False
