from __future__ import annotations

from bellcount.counter.hand_tracker import HandTracker, TrackerConfig, score_side
from conftest import Clock, make_pose

STEP_MS = 40.0


def _feed(tracker, clock, n, mode="auto", locked=None, **pose_kw):
    sel = None
    for _ in range(n):
        sel = tracker.update(make_pose(**pose_kw), mode, locked, clock.tick())
    return sel


def test_score_side_weights_and_height_bias():
    low = make_pose(left_score=0.5, left_height=-0.3).named()
    assert abs(score_side(low, "left", 0.12) - 0.5) < 1e-9
    high = make_pose(left_score=0.5, left_height=1.8).named()  # wrist above shoulder
    assert abs(score_side(high, "left", 0.12) - 0.62) < 1e-9
    assert score_side({}, "left", 0.12) == 0.0


def test_both_mode_bypasses_tracking():
    t = HandTracker()
    sel = t.update(make_pose(left_score=0.9, right_score=0.1), "both", now=0.0)
    assert sel.active == "both"
    assert t.phase == "both"
    assert set(sel.scores) == {"left", "right"}


def test_acquires_best_hand_above_enter():
    t = HandTracker()
    assert t.update(make_pose(left_score=0.3, right_score=0.3), now=0.0).active is None
    assert t.phase == "idle"
    assert t.update(make_pose(left_score=0.3, right_score=0.8), now=40.0).active == "right"
    assert t.phase == "tracking"


def test_brief_lead_does_not_switch():
    t = HandTracker()
    clock = Clock(step=STEP_MS)
    _feed(t, clock, 25, left_score=0.9, right_score=0.5)
    # 200 ms switch hold at 40 ms per frame: the sixth leading frame switches
    assert _feed(t, clock, 5, left_score=0.6, right_score=0.9).active == "left"
    _feed(t, clock, 1, left_score=0.9, right_score=0.5)
    assert _feed(t, clock, 5, left_score=0.6, right_score=0.9).active == "left"
    assert _feed(t, clock, 1, left_score=0.6, right_score=0.9).active == "right"


def test_hold_is_wall_clock_not_frame_count():
    t = HandTracker()
    fast = Clock(step=10.0)
    _feed(t, fast, 80, left_score=0.9, right_score=0.5)
    # many frames at a high camera rate are still shorter than the hold
    assert _feed(t, fast, 15, left_score=0.6, right_score=0.9).active == "left"
    slow = Clock(start=fast.t, step=120.0)
    assert _feed(t, slow, 1, left_score=0.6, right_score=0.9).active == "right"


def test_stick_window_blocks_switching():
    t = HandTracker()
    clock = Clock(step=STEP_MS)
    _feed(t, clock, 1, left_score=0.9, right_score=0.1)
    assert _feed(t, clock, 15, left_score=0.5, right_score=0.95).active == "left"


def test_lockout_mode_needs_longer_lead():
    t = HandTracker()
    clock = Clock(step=STEP_MS)
    _feed(t, clock, 25, mode="lockout", left_score=0.9, right_score=0.5)
    # a lead that would switch in auto mode is too small for lockout
    assert _feed(t, clock, 14, mode="lockout", left_score=0.8, right_score=0.9).active == "left"
    # 400 ms hold: the eleventh leading frame switches
    assert _feed(t, clock, 10, mode="lockout", left_score=0.6, right_score=0.9).active == "left"
    assert _feed(t, clock, 1, mode="lockout", left_score=0.6, right_score=0.9).active == "right"


def test_drop_needs_sustained_low_scores():
    t = HandTracker(TrackerConfig())
    clock = Clock(step=STEP_MS)
    _feed(t, clock, 3, left_score=0.9, right_score=0.3)
    # one bad frame does not drop
    assert _feed(t, clock, 1, left_score=0.22, right_score=0.22).active == "left"
    assert _feed(t, clock, 1, left_score=0.9, right_score=0.3).active == "left"
    # 330 ms drop hold: the tenth low frame drops
    assert _feed(t, clock, 9, left_score=0.22, right_score=0.22).active == "left"
    assert _feed(t, clock, 1, left_score=0.22, right_score=0.22).active is None


def test_rest_resets_tracker():
    t = HandTracker()
    clock = Clock(step=STEP_MS)
    _feed(t, clock, 3, left_score=0.9, right_score=0.3)
    _feed(t, clock, 25, left_score=0.05, right_score=0.05)
    assert t.active is None
    assert t.phase == "idle"
    # re-acquires straight away once visible
    assert _feed(t, clock, 1, left_score=0.3, right_score=0.7).active == "right"


def test_external_lock_overrides_scores():
    t = HandTracker()
    clock = Clock(step=STEP_MS)
    assert _feed(t, clock, 30, locked="right", left_score=0.95, right_score=0.3).active == "right"
    assert t.phase == "locked"
    assert _feed(t, clock, 30, mode="left", left_score=0.1, right_score=0.9).active == "left"
