"""Detection gate — strictness-parameterized REM/no-REM fusion.

Two declarative tables map ``(strictness, support_available)`` to a rule
over ``(hr_in_range, support_ok)``.  The explicit table applies when the
platform reported a current REM stage; the inferred table applies to a
cycle-predicted window and is stricter.

=========  ===================  ======================
Explicit   support unavailable  support available
=========  ===================  ======================
lenient    pass                 pass
balanced   pass                 hr or support
strict     hr                   hr and support
=========  ===================  ======================

=========  ===================  ======================
Inferred   support unavailable  support available
=========  ===================  ======================
lenient    hr                   hr or support
balanced   hr                   hr and support
strict     fail                 hr and support
=========  ===================  ======================

Stillness is checked separately and before either table.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

from rem_engine.models import DetectionSettings, DetectionStrictness, StillnessState

logger = structlog.get_logger(__name__)


class GatePath(str, Enum):
    EXPLICIT = "explicit"
    INFERRED = "inferred"


Rule = Callable[[bool, bool], bool]


def _always(hr_in_range: bool, support_ok: bool) -> bool:
    return True


def _never(hr_in_range: bool, support_ok: bool) -> bool:
    return False


def _hr_only(hr_in_range: bool, support_ok: bool) -> bool:
    return hr_in_range


def _hr_or_support(hr_in_range: bool, support_ok: bool) -> bool:
    return hr_in_range or support_ok


def _hr_and_support(hr_in_range: bool, support_ok: bool) -> bool:
    return hr_in_range and support_ok


_L, _B, _S = DetectionStrictness.LENIENT, DetectionStrictness.BALANCED, DetectionStrictness.STRICT

_TABLES: dict[GatePath, dict[tuple[DetectionStrictness, bool], Rule]] = {
    GatePath.EXPLICIT: {
        (_L, False): _always,
        (_L, True): _always,
        (_B, False): _always,
        (_B, True): _hr_or_support,
        (_S, False): _hr_only,
        (_S, True): _hr_and_support,
    },
    GatePath.INFERRED: {
        (_L, False): _hr_only,
        (_L, True): _hr_or_support,
        (_B, False): _hr_only,
        (_B, True): _hr_and_support,
        # Strict inferred windows require corroboration; none is available.
        (_S, False): _never,
        (_S, True): _hr_and_support,
    },
}


@dataclass(frozen=True, slots=True)
class GateDecision:
    passed: bool
    path: GatePath
    rule: str


class DetectionGate:
    """Evaluate the stillness precondition and the strictness tables."""

    @staticmethod
    def stillness_satisfied(
        settings: DetectionSettings, stillness: StillnessState | None
    ) -> bool:
        """Hard precondition: required stillness must currently hold.

        An unknown stillness state counts as not still.
        """
        if not settings.require_stillness:
            return True
        return stillness is not None and stillness.is_still

    @staticmethod
    def decide(
        path: GatePath,
        strictness: DetectionStrictness,
        *,
        hr_in_range: bool,
        support_available: bool,
        support_ok: bool,
    ) -> GateDecision:
        rule = _TABLES[path][(strictness, support_available)]
        passed = rule(hr_in_range, support_ok)
        logger.debug(
            "gate.decided",
            path=path.value,
            strictness=strictness.value,
            hr_in_range=hr_in_range,
            support_available=support_available,
            support_ok=support_ok,
            rule=rule.__name__.lstrip("_"),
            passed=passed,
        )
        return GateDecision(passed=passed, path=path, rule=rule.__name__.lstrip("_"))

    def passes(
        self,
        path: GatePath,
        strictness: DetectionStrictness,
        *,
        hr_in_range: bool,
        support_available: bool,
        support_ok: bool,
    ) -> bool:
        return self.decide(
            path,
            strictness,
            hr_in_range=hr_in_range,
            support_available=support_available,
            support_ok=support_ok,
        ).passed
