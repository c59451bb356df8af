from __future__ import annotations
from types import SimpleNamespace

from bellcount.runtime import cli


class DeadClient:
    """Pose client whose backends all fail to start."""

    def __init__(self, on_ready=None, on_poses=None, on_error=None):
        self.on_error = on_error
        self.destroyed = False
        self.sent = 0
        CLIENTS.append(self)

    def init(self):
        pass

    def dispatch(self, timeout=None):
        self.on_error("no pose backend available")

    def send_frame(self, frame):
        self.sent += 1
        return True

    def destroy(self):
        self.destroyed = True


class FakeCapture:
    def __init__(self, index):
        self.released = False

    def isOpened(self):
        return True

    def read(self):
        return True, None

    def release(self):
        self.released = True


CLIENTS = []


def test_exits_when_no_backend_starts(monkeypatch, capsys):
    CLIENTS.clear()
    monkeypatch.setattr(cli, "PoseClient", DeadClient)
    monkeypatch.setattr(cli, "cv2", SimpleNamespace(VideoCapture=FakeCapture, cvtColor=lambda f, c: f, COLOR_BGR2RGB=4))
    assert cli.main(["--exercise", "swing"]) == 1
    client = CLIENTS[0]
    assert client.destroyed
    assert client.sent == 0
    assert "no pose backend available" in capsys.readouterr().err
