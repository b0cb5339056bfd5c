"""Tests for accelerometer-based stillness tracking."""

from datetime import datetime, timedelta

from rem_engine.motion.stillness import StillnessTracker

T0 = datetime(2026, 1, 10, 23, 0)


def feed_quiet(tracker: StillnessTracker, minutes: int, start: datetime = T0):
    state = None
    for minute in range(minutes + 1):
        state = tracker.update(0.001, 0.002, 0.001, start + timedelta(minutes=minute))
    return state


def test_still_after_threshold_minutes():
    tracker = StillnessTracker(stillness_minutes=10)
    state = feed_quiet(tracker, 9)
    assert not state.is_still
    state = tracker.update(0.0, 0.0, 0.0, T0 + timedelta(minutes=10))
    assert state.is_still
    assert state.still_minutes == 10


def test_movement_resets_stillness():
    tracker = StillnessTracker(stillness_minutes=10)
    feed_quiet(tracker, 12)
    assert tracker.state.is_still

    state = tracker.update(0.02, 0.02, 0.0, T0 + timedelta(minutes=13))
    assert not state.is_still
    assert state.still_minutes == 0
    assert tracker.stillness_onset is None


def test_small_motion_below_threshold_ignored():
    tracker = StillnessTracker(stillness_minutes=5)
    tracker.update(0.0, 0.0, 0.0, T0)
    state = tracker.update(0.01, 0.01, 0.005, T0 + timedelta(minutes=6))
    assert state.is_still


def test_stillness_onset_is_last_movement():
    tracker = StillnessTracker(stillness_minutes=5)
    tracker.update(0.5, 0.0, 0.0, T0)
    feed_quiet(tracker, 8, start=T0 + timedelta(minutes=1))
    assert tracker.stillness_onset == T0


def test_moving_minutes_tracks_bout():
    tracker = StillnessTracker()
    tracker.update(0.2, 0.0, 0.0, T0)
    tracker.update(0.2, 0.0, 0.0, T0 + timedelta(seconds=30))
    state = tracker.update(0.2, 0.0, 0.0, T0 + timedelta(seconds=60))
    assert state.moving_minutes == 1


def test_minimum_stillness_minutes():
    assert StillnessTracker(stillness_minutes=0).stillness_minutes == 1
