"""Tests for HRV / respiratory-rate support scoring."""

from datetime import datetime, timedelta

import pytest

from rem_engine.inference.support import SupportSignalEvaluator
from rem_engine.models import DetectionSettings, SupportKind, SupportSample

NOW = datetime(2026, 1, 11, 2, 0)


def support(value: float, kind: SupportKind, ended_minutes_ago: float = 2) -> SupportSample:
    end = NOW - timedelta(minutes=ended_minutes_ago)
    return SupportSample(start=end - timedelta(minutes=1), end=end, value=value, kind=kind)


@pytest.fixture
def evaluator() -> SupportSignalEvaluator:
    return SupportSignalEvaluator()


def test_nothing_available(evaluator):
    result = evaluator.evaluate([], [], DetectionSettings(), NOW)
    assert not result.support_available
    assert not result.support_ok


def test_plausible_hrv(evaluator):
    result = evaluator.evaluate([support(50, SupportKind.HRV_MS)], [], DetectionSettings(), NOW)
    assert result.hrv_available and result.hrv_support
    assert result.support_available and result.support_ok


def test_implausible_hrv_available_but_not_ok(evaluator):
    result = evaluator.evaluate([support(150, SupportKind.HRV_MS)], [], DetectionSettings(), NOW)
    assert result.support_available
    assert not result.support_ok


@pytest.mark.parametrize("value,expected", [(8.0, True), (14.0, True), (20.0, True), (7.5, False), (24.0, False)])
def test_respiratory_band(evaluator, value, expected):
    result = evaluator.evaluate([], [support(value, SupportKind.RESP_BPM)], DetectionSettings(), NOW)
    assert result.resp_available
    assert result.resp_support is expected


def test_stale_sample_not_available(evaluator):
    result = evaluator.evaluate(
        [support(50, SupportKind.HRV_MS, ended_minutes_ago=40)], [], DetectionSettings(), NOW
    )
    assert not result.support_available


def test_disabled_signal_ignored(evaluator):
    settings = DetectionSettings(use_hrv=False, use_respiratory_rate=False)
    result = evaluator.evaluate(
        [support(50, SupportKind.HRV_MS)], [support(14, SupportKind.RESP_BPM)], settings, NOW
    )
    assert not result.support_available


def test_latest_sample_decides(evaluator):
    samples = [
        support(50, SupportKind.HRV_MS, ended_minutes_ago=10),
        support(140, SupportKind.HRV_MS, ended_minutes_ago=1),
    ]
    result = evaluator.evaluate(samples, [], DetectionSettings(), NOW)
    assert result.hrv_available
    assert not result.hrv_support


def test_either_signal_supports(evaluator):
    result = evaluator.evaluate(
        [support(150, SupportKind.HRV_MS)], [support(14, SupportKind.RESP_BPM)], DetectionSettings(), NOW
    )
    assert result.support_ok
