# bellcount/runtime/cli.py
from __future__ import annotations
import argparse
import logging
import sys
import time

import cv2

from bellcount.common import settings
from bellcount.counter.exercises import EXERCISE_OPTIONS
from bellcount.counter.pipeline import Frame, FrameBudget, PoseClient
from bellcount.counter.session import CounterSession


def _printer(ev: dict):
    kind = ev.get("type")
    if kind == "rep":
        print(f"rep {ev['count']} ({ev.get('hand') or '-'})", flush=True)
    elif kind == "gesture":
        print(f"gesture: {ev['gesture']}", flush=True)
    elif kind == "exercise":
        print(f"exercise → {ev['exercise']} ({ev['reason']})", flush=True)
    elif kind == "calibration" and ev.get("state") == "finished":
        print(f"calibrated from {ev['samples']} frames: {ev['calibration']}", flush=True)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Count kettlebell reps from the webcam.")
    parser.add_argument("--exercise", default=settings.DEFAULT_EXERCISE, choices=[o.id for o in EXERCISE_OPTIONS])
    parser.add_argument("--camera", type=int, default=settings.CAMERA_INDEX)
    parser.add_argument("--fps", type=int, default=settings.TARGET_FPS)
    parser.add_argument("--calibrate", type=float, default=0.0, help="Seconds of calibration before counting")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.LOG_LEVEL)

    session = CounterSession(exercise=args.exercise)
    session.set_event_sink(_printer)
    budget = FrameBudget(args.fps)

    def on_poses(poses, ts):
        budget.done()
        session.process_poses(poses, ts)

    backend = {}
    failed = []

    def on_error(msg):
        budget.done()
        print("pose error:", msg, file=sys.stderr, flush=True)
        if not backend:
            failed.append(msg)

    def on_ready(name):
        backend["name"] = name
        print(f"pose backend: {name}", flush=True)

    client = PoseClient(
        on_ready=on_ready,
        on_poses=on_poses,
        on_error=on_error,
    )
    client.init()

    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        client.destroy()
        print("Webcam not available", file=sys.stderr)
        return 1

    calibrate_until = None
    if args.calibrate > 0:
        session.start_calibration()
        calibrate_until = time.time() + args.calibrate
        print(f"calibrating for {args.calibrate:.0f}s: swing through your full range…", flush=True)

    print(f"counting {session.exercise}. Press Ctrl+C to exit.", flush=True)
    status = 0
    try:
        while True:
            client.dispatch(timeout=0.005)
            if failed:
                # no backend came up; nothing will ever be counted
                status = 1
                break
            if calibrate_until is not None and time.time() >= calibrate_until:
                session.finish_calibration()
                calibrate_until = None

            ok, frame = cap.read()
            if not ok:
                time.sleep(0.01)
                continue
            now = time.time() * 1000.0
            if not backend or not budget.ready(now):
                continue
            image = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            if client.send_frame(Frame(image, ts=now)):
                budget.sent(now)
    except KeyboardInterrupt:
        print("\nExiting…", flush=True)
    finally:
        client.destroy()
        cap.release()
    print(f"total reps: {session.count}", flush=True)
    return status


if __name__ == "__main__":
    sys.exit(main())
