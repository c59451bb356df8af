from __future__ import annotations
import asyncio
import json
import logging
from typing import List, Literal, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError

from bellcount.common import settings
from bellcount.counter.calibration import Calibration
from bellcount.counter.exercises import EXERCISE_OPTIONS, ExerciseId
from bellcount.counter.session import CounterSession
from bellcount.counter.web_pipeline import WebPosePipeline

logger = logging.getLogger(__name__)

app = FastAPI()


class KeypointIn(BaseModel):
    name: str
    x: float
    y: float
    score: float = 0.0


class PoseMessage(BaseModel):
    type: Literal["pose"]
    keypoints: List[KeypointIn] = Field(default_factory=list)
    ts: Optional[float] = Field(None, description="Capture time in ms")


class CalibrationIn(BaseModel):
    hip_angle_min: float
    hip_angle_max: float
    hand_height_min: float
    hand_height_max: float


SESSION = CounterSession(exercise=settings.DEFAULT_EXERCISE)
WS_CLIENTS: Set[WebSocket] = set()
_BROADCASTS: Set[asyncio.Task] = set()


def ACTIVE_SESSION() -> CounterSession:
    return SESSION


# let the session emit events to all WS clients
def _sink(ev: dict):
    try:
        task = asyncio.get_running_loop().create_task(broadcast(ev))
    except RuntimeError:
        # no loop (e.g. called from a plain thread); nothing to broadcast to
        logger.debug("dropped event outside event loop: %s", ev.get("type"))
        return
    # the loop only keeps weak references to tasks
    _BROADCASTS.add(task)
    task.add_done_callback(_BROADCASTS.discard)


SESSION.set_event_sink(_sink)
PIPELINE = WebPosePipeline(SESSION, debug_cb=_sink)


@app.get("/favicon.ico")
async def favicon():
    return Response(status_code=204)


@app.get("/exercises")
async def exercises():
    return [{"id": o.id, "label": o.label, "description": o.description, "type": o.type} for o in EXERCISE_OPTIONS]


@app.get("/sessions/current")
async def current():
    s = ACTIVE_SESSION()
    last = s.last_update
    return JSONResponse({
        "state": "running" if PIPELINE.running else "idle",
        "count": s.count,
        "phase": last.state if last else None,
        "exercise": s.exercise,
        "hand_mode": s.hand_mode,
        "active_hand": s.counter.active_hand(),
        "calibrating": s.recorder.active,
        "ws_clients": len(WS_CLIENTS),
    })


@app.post("/counter/start")
async def start(exercise: ExerciseId = "swing"):
    s = ACTIVE_SESSION()
    s.set_exercise(exercise, reason="manual")
    PIPELINE.start()
    return {"exercise": s.exercise, "status": f"started {s.exercise}"}


@app.post("/counter/stop")
async def stop():
    PIPELINE.stop()
    return {"stopped": True, "count": ACTIVE_SESSION().count}


@app.post("/counter/reset")
async def reset():
    s = ACTIVE_SESSION()
    s.reset()
    return {"count": s.count}


@app.get("/calibration")
async def get_calibration():
    return ACTIVE_SESSION().calibration.to_dict()


@app.put("/calibration")
async def put_calibration(body: CalibrationIn):
    cal = Calibration.from_dict(body.model_dump(), fallback=ACTIVE_SESSION().calibration)
    ACTIVE_SESSION().set_calibration(cal)
    return cal.to_dict()


@app.post("/calibration/start")
async def start_calibration():
    ACTIVE_SESSION().start_calibration()
    return {"calibrating": True}


@app.post("/calibration/finish")
async def finish_calibration():
    cal = ACTIVE_SESSION().finish_calibration()
    return cal.to_dict()


@app.websocket("/ws/pose")
async def ws_pose(ws: WebSocket):
    await ws.accept()
    WS_CLIENTS.add(ws)
    await broadcast({"type": "trace", "msg": "ws: client connected"})
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = PoseMessage.model_validate_json(raw)
            except ValidationError as e:
                await ws.send_text(json.dumps({"type": "trace", "msg": f"ignored message: {e.error_count()} error(s)"}))
                continue
            res = PIPELINE.push_pose([kp.model_dump() for kp in msg.keypoints], msg.ts)
            if res is None:
                continue
            await ws.send_text(json.dumps({
                "type": "frame",
                "count": ACTIVE_SESSION().count,
                "phase": res.update.state if res.update else None,
                "active_hand": res.hands.active if res.hands else None,
                "scores": res.hands.scores if res.hands else {},
            }))
    except WebSocketDisconnect:
        pass
    finally:
        WS_CLIENTS.discard(ws)
        await broadcast({"type": "trace", "msg": "ws closed"})


async def broadcast(obj: dict):
    dead = []
    for ws in list(WS_CLIENTS):
        try:
            await ws.send_text(json.dumps(obj))
        except Exception:
            dead.append(ws)
    for d in dead:
        WS_CLIENTS.discard(d)


def main():
    import uvicorn

    logging.basicConfig(level=settings.LOG_LEVEL)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
