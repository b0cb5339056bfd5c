"""Session windowing — resolve the canonical "currently asleep" window.

Resolution is an ordered list of strategies; the first strategy that
returns a window wins:

1. the most recent stage-derived session, if it is still fresh;
2. the fallback window (session start / stillness onset until now), if
   there is no stage session or the fallback is a newer sleep attempt;
3. the most recent stage-derived session, even if stale.

No window at all means "cannot evaluate yet", not an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence

import structlog

from rem_engine.inference.intervals import merge_intervals
from rem_engine.models import SleepWindow, StageSample

logger = structlog.get_logger(__name__)

DEFAULT_MERGE_GAP = timedelta(minutes=30)
DEFAULT_FRESHNESS_HORIZON = timedelta(minutes=45)


def merge_sessions(
    samples: Sequence[StageSample],
    gap: timedelta = DEFAULT_MERGE_GAP,
) -> list[SleepWindow]:
    """Partition stage samples into sessions separated by more than ``gap``."""
    return [SleepWindow(start=s, end=e) for s, e in merge_intervals(samples, gap)]


@dataclass(frozen=True, slots=True)
class ResolutionContext:
    """Inputs shared by every resolution strategy."""

    now: datetime
    primary: SleepWindow | None
    fallback: SleepWindow | None
    freshness_horizon: timedelta

    @property
    def primary_is_fresh(self) -> bool:
        if self.primary is None:
            return False
        return self.now - self.primary.end <= self.freshness_horizon


Strategy = Callable[[ResolutionContext], SleepWindow | None]


def fresh_primary(ctx: ResolutionContext) -> SleepWindow | None:
    return ctx.primary if ctx.primary_is_fresh else None


def newer_fallback(ctx: ResolutionContext) -> SleepWindow | None:
    if ctx.fallback is None:
        return None
    if ctx.primary is None or ctx.fallback.start > ctx.primary.end:
        return ctx.fallback
    return None


def stale_primary(ctx: ResolutionContext) -> SleepWindow | None:
    return ctx.primary


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (fresh_primary, newer_fallback, stale_primary)


class SessionWindowResolver:
    """Derive the current :class:`SleepWindow` from stage data and fallbacks."""

    def __init__(
        self,
        merge_gap: timedelta = DEFAULT_MERGE_GAP,
        freshness_horizon: timedelta = DEFAULT_FRESHNESS_HORIZON,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.merge_gap = merge_gap
        self.freshness_horizon = freshness_horizon
        self._strategies = list(strategies)

    def primary_window(self, samples: Sequence[StageSample]) -> SleepWindow | None:
        """Return the most recent stage-derived session, if any."""
        sessions = merge_sessions(samples, self.merge_gap)
        return sessions[-1] if sessions else None

    @staticmethod
    def fallback_window(
        now: datetime,
        session_start: datetime | None = None,
        stillness_onset: datetime | None = None,
    ) -> SleepWindow | None:
        """Open-ended window from the later of the two fallback anchors."""
        anchors = [t for t in (session_start, stillness_onset) if t is not None and t <= now]
        if not anchors:
            return None
        return SleepWindow(start=max(anchors), end=now)

    def resolve(
        self,
        samples: Sequence[StageSample],
        now: datetime,
        *,
        session_start: datetime | None = None,
        stillness_onset: datetime | None = None,
    ) -> SleepWindow | None:
        ctx = ResolutionContext(
            now=now,
            primary=self.primary_window(samples),
            fallback=self.fallback_window(now, session_start, stillness_onset),
            freshness_horizon=self.freshness_horizon,
        )
        for strategy in self._strategies:
            window = strategy(ctx)
            if window is not None:
                logger.debug(
                    "session.resolved",
                    strategy=strategy.__name__,
                    start=window.start.isoformat(),
                    end=window.end.isoformat(),
                )
                return window
        return None
