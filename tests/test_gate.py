"""Tests for the detection gate — every table cell, one case each."""

import pytest

from rem_engine.inference.gate import DetectionGate, GatePath
from rem_engine.models import DetectionSettings, DetectionStrictness, StillnessState

L, B, S = DetectionStrictness.LENIENT, DetectionStrictness.BALANCED, DetectionStrictness.STRICT

# (strictness, hr_in_range, support_available, support_ok, expected)
EXPLICIT_CASES = [
    (L, False, False, False, True),
    (L, False, False, True, True),
    (L, True, False, False, True),
    (L, True, False, True, True),
    (L, False, True, False, True),
    (L, False, True, True, True),
    (L, True, True, False, True),
    (L, True, True, True, True),
    (B, False, False, False, True),
    (B, False, False, True, True),
    (B, True, False, False, True),
    (B, True, False, True, True),
    (B, False, True, False, False),
    (B, False, True, True, True),
    (B, True, True, False, True),
    (B, True, True, True, True),
    (S, False, False, False, False),
    (S, False, False, True, False),
    (S, True, False, False, True),
    (S, True, False, True, True),
    (S, False, True, False, False),
    (S, False, True, True, False),
    (S, True, True, False, False),
    (S, True, True, True, True),
]

INFERRED_CASES = [
    (L, False, False, False, False),
    (L, False, False, True, False),
    (L, True, False, False, True),
    (L, True, False, True, True),
    (L, False, True, False, False),
    (L, False, True, True, True),
    (L, True, True, False, True),
    (L, True, True, True, True),
    (B, False, False, False, False),
    (B, False, False, True, False),
    (B, True, False, False, True),
    (B, True, False, True, True),
    (B, False, True, False, False),
    (B, False, True, True, False),
    (B, True, True, False, False),
    (B, True, True, True, True),
    (S, False, False, False, False),
    (S, False, False, True, False),
    (S, True, False, False, False),
    (S, True, False, True, False),
    (S, False, True, False, False),
    (S, False, True, True, False),
    (S, True, True, False, False),
    (S, True, True, True, True),
]


def _case_id(case: tuple) -> str:
    strictness, hr, available, ok, _ = case
    return f"{strictness.value}-hr_{hr}-avail_{available}-ok_{ok}"


@pytest.mark.parametrize("case", EXPLICIT_CASES, ids=[_case_id(c) for c in EXPLICIT_CASES])
def test_explicit_table(case):
    strictness, hr, available, ok, expected = case
    decision = DetectionGate.decide(
        GatePath.EXPLICIT,
        strictness,
        hr_in_range=hr,
        support_available=available,
        support_ok=ok,
    )
    assert decision.passed is expected
    assert decision.path is GatePath.EXPLICIT


@pytest.mark.parametrize("case", INFERRED_CASES, ids=[_case_id(c) for c in INFERRED_CASES])
def test_inferred_table(case):
    strictness, hr, available, ok, expected = case
    decision = DetectionGate.decide(
        GatePath.INFERRED,
        strictness,
        hr_in_range=hr,
        support_available=available,
        support_ok=ok,
    )
    assert decision.passed is expected
    assert decision.path is GatePath.INFERRED


def test_passes_matches_decide():
    gate = DetectionGate()
    assert gate.passes(
        GatePath.INFERRED, B, hr_in_range=True, support_available=True, support_ok=True
    )
    assert not gate.passes(
        GatePath.INFERRED, S, hr_in_range=True, support_available=False, support_ok=False
    )


def test_decision_names_rule():
    decision = DetectionGate.decide(
        GatePath.EXPLICIT, B, hr_in_range=False, support_available=True, support_ok=True
    )
    assert decision.rule == "hr_or_support"


class TestStillness:
    def test_not_required(self):
        settings = DetectionSettings(require_stillness=False)
        assert DetectionGate.stillness_satisfied(settings, None)
        assert DetectionGate.stillness_satisfied(settings, StillnessState(is_still=False))

    def test_required_and_still(self):
        assert DetectionGate.stillness_satisfied(
            DetectionSettings(), StillnessState(is_still=True, still_minutes=12)
        )

    def test_required_and_moving(self):
        assert not DetectionGate.stillness_satisfied(
            DetectionSettings(), StillnessState(is_still=False, moving_minutes=3)
        )

    def test_required_and_unknown(self):
        assert not DetectionGate.stillness_satisfied(DetectionSettings(), None)
