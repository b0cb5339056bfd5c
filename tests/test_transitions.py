"""Tests for REM detected / ended event emission."""

from datetime import datetime, timedelta

from rem_engine.inference.transitions import TransitionLogger, window_identity
from rem_engine.models import HistoryKind, REMEvaluationResult

START = datetime(2026, 1, 11, 1, 30)
END = datetime(2026, 1, 11, 1, 50)


def result(is_rem: bool, start: datetime | None = START, end: datetime | None = END) -> REMEvaluationResult:
    return REMEvaluationResult(
        is_rem=is_rem,
        description="test",
        window_start=start,
        window_end=end,
    )


def test_one_detected_and_one_ended_per_window():
    logger = TransitionLogger()
    entries = []
    for _ in range(10):
        entries += logger.observe(result(True))
    for _ in range(5):
        entries += logger.observe(result(False))

    assert [e.kind for e in entries] == [HistoryKind.REM_DETECTED, HistoryKind.REM_ENDED]
    assert entries[0].note == "REM detected: 1:30 AM – 1:50 AM"
    assert entries[1].note == "REM ended: 1:30 AM – 1:50 AM"


def test_entries_stamped_with_window_bounds():
    logger = TransitionLogger()
    detected = logger.observe(result(True))
    ended = logger.observe(result(False, None, None))
    assert detected[0].timestamp == START
    assert ended[0].timestamp == END


def test_flapping_within_same_window_does_not_repeat():
    logger = TransitionLogger()
    entries = []
    for is_rem in (True, False, True, False, True):
        entries += logger.observe(result(is_rem))
    assert len(entries) == 2
    assert logger.detected_count == 1


def test_new_window_closes_previous():
    logger = TransitionLogger()
    later_start = START + timedelta(minutes=90)
    later_end = END + timedelta(minutes=90)

    logger.observe(result(True))
    entries = logger.observe(result(True, later_start, later_end))

    assert [e.kind for e in entries] == [HistoryKind.REM_ENDED, HistoryKind.REM_DETECTED]
    assert entries[0].timestamp == END
    assert entries[1].timestamp == later_start


def test_sub_minute_jitter_is_same_window():
    logger = TransitionLogger()
    logger.observe(result(True))
    entries = logger.observe(result(True, START + timedelta(seconds=20), END + timedelta(seconds=40)))
    assert entries == []


def test_no_window_results_are_ignored():
    logger = TransitionLogger()
    assert logger.observe(result(False, None, None)) == []
    assert logger.observe(result(True, None, None)) == []


def test_reset_forgets_windows():
    logger = TransitionLogger()
    logger.observe(result(True))
    logger.reset()
    assert logger.detected_count == 0
    assert len(logger.observe(result(True))) == 1


def test_growing_window_is_one_period():
    logger = TransitionLogger()
    entries = []
    for minutes in (5, 10, 15, 20):
        entries += logger.observe(result(True, START, START + timedelta(minutes=minutes)))
    entries += logger.observe(result(False, None, None))

    assert [e.kind for e in entries] == [HistoryKind.REM_DETECTED, HistoryKind.REM_ENDED]
    assert entries[0].note == "REM detected: 1:30 AM – 1:35 AM"
    assert entries[1].note == "REM ended: 1:30 AM – 1:50 AM"
    assert entries[1].timestamp == END
    assert logger.detected_count == 1


def test_ended_period_is_not_reopened_by_growth():
    logger = TransitionLogger()
    logger.observe(result(True))
    logger.observe(result(False))
    assert logger.observe(result(True, START, END + timedelta(minutes=5))) == []
    assert logger.observe(result(False)) == []


def test_window_identity_is_minute_resolution():
    assert window_identity(START.replace(second=59)) == START
