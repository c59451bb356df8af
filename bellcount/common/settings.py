from __future__ import annotations
import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [p.strip().lower() for p in raw.split(",") if p.strip()]


CAMERA_INDEX = _int("BELLCOUNT_CAMERA_INDEX", 0)
# Tried in order until one initialises: gpu, cpu (MediaPipe Tasks), legacy (solutions API)
POSE_BACKENDS = _list("BELLCOUNT_POSE_BACKENDS", "gpu,cpu,legacy")
POSE_MODEL_PATH = os.getenv("BELLCOUNT_POSE_MODEL_PATH", "pose_landmarker_lite.task")
MODEL_COMPLEXITY = _int("BELLCOUNT_MODEL_COMPLEXITY", 1)
TARGET_FPS = _int("BELLCOUNT_TARGET_FPS", 30)
DEFAULT_EXERCISE = os.getenv("BELLCOUNT_EXERCISE", "swing")
LOG_LEVEL = os.getenv("BELLCOUNT_LOG_LEVEL", "INFO").upper()
HOST = os.getenv("BELLCOUNT_HOST", "127.0.0.1")
PORT = _int("BELLCOUNT_PORT", 8000)
