from __future__ import annotations

from bellcount.counter.timing import HoldTimer


def test_hold_timer_measures_unbroken_time():
    timer = HoldTimer(100)
    assert not timer.step(True, 0)
    assert timer.running
    assert not timer.step(True, 60)
    assert timer.step(True, 100)
    # a break restarts the clock
    assert not timer.step(False, 110)
    assert not timer.running
    assert not timer.step(True, 120)
    assert timer.step(True, 220)


def test_zero_hold_fires_immediately():
    assert HoldTimer(0).step(True, 5.0)


def test_frame_count_fires_before_the_time_hold():
    timer = HoldTimer(65, frames=3)
    assert not timer.step(True, 0)
    assert not timer.step(True, 16)
    assert timer.step(True, 33)
    timer.clear()
    assert not timer.step(True, 40)
    # a slow camera still fires on elapsed time
    slow = HoldTimer(65, frames=3)
    assert not slow.step(True, 0)
    assert slow.step(True, 100)
