"""REM window prediction with per-user self-calibration.

Calibration learns three timing parameters from recent nights of stage
history:

- **latency** — sleep-session start to the first REM window;
- **cycle** — start-to-start spacing of consecutive REM windows;
- **duration** — length of a REM window.

Each parameter is the median over all observed sessions/windows, clamped
to a plausible range.  When no history is usable the previous model (or
the built-in 90-minute-cycle default) is kept.

Projection places REM windows at ``start + latency + k * cycle`` and
returns the window bracketing *now*, or the most recent one when the next
has not opened yet.
"""

from __future__ import annotations

import statistics
from datetime import datetime, timedelta
from typing import Sequence

import structlog

from rem_engine.inference.intervals import merge_intervals
from rem_engine.inference.session import DEFAULT_MERGE_GAP, merge_sessions
from rem_engine.models import (
    PredictionModel,
    REMWindow,
    SleepStage,
    SleepWindow,
    StageSample,
    WindowSource,
)

logger = structlog.get_logger(__name__)

# ── Bounds & defaults ─────────────────────────────────────────

LATENCY_BOUNDS = (timedelta(minutes=40), timedelta(minutes=160))
CYCLE_BOUNDS = (timedelta(minutes=70), timedelta(minutes=120))
DURATION_BOUNDS = (timedelta(minutes=10), timedelta(minutes=40))

DEFAULT_REM_MERGE_GAP = timedelta(minutes=5)

_DEFAULT_CYCLE = timedelta(minutes=90)
_DEFAULT_DURATION = timedelta(minutes=20)
DEFAULT_MODEL = PredictionModel(
    rem_latency=_DEFAULT_CYCLE - _DEFAULT_DURATION,
    rem_cycle=_DEFAULT_CYCLE,
    rem_duration=_DEFAULT_DURATION,
)


def clamp(value: timedelta, bounds: tuple[timedelta, timedelta]) -> timedelta:
    low, high = bounds
    return min(max(value, low), high)


def _median(values: Sequence[timedelta]) -> timedelta:
    return timedelta(seconds=statistics.median(v.total_seconds() for v in values))


# ── Calibration ───────────────────────────────────────────────


def build_prediction_model(
    history: Sequence[StageSample],
    previous: PredictionModel | None = None,
    *,
    session_gap: timedelta = DEFAULT_MERGE_GAP,
    rem_gap: timedelta = DEFAULT_REM_MERGE_GAP,
    refreshed_at: datetime | None = None,
) -> PredictionModel:
    """Rebuild a :class:`PredictionModel` from historical stage samples.

    Pure function: identical inputs always produce an identical model.
    A metric with no observations (e.g. cycles when every night had a
    single REM window) keeps the previous model's value.
    """
    base = previous or DEFAULT_MODEL
    rem_samples = [s for s in history if s.stage == SleepStage.ASLEEP_REM]

    latencies: list[timedelta] = []
    durations: list[timedelta] = []
    cycles: list[timedelta] = []
    nights = 0

    for session in merge_sessions(history, session_gap):
        in_session = [s for s in rem_samples if session.start <= s.start <= session.end]
        windows = merge_intervals(in_session, rem_gap)
        if not windows:
            continue
        nights += 1
        latencies.append(windows[0][0] - session.start)
        durations.extend(end - start for start, end in windows)
        cycles.extend(later[0] - earlier[0] for earlier, later in zip(windows, windows[1:]))

    if not durations:
        logger.info("predictor.no_rem_history", samples=len(history))
        return base

    model = PredictionModel(
        rem_latency=clamp(_median(latencies), LATENCY_BOUNDS),
        rem_cycle=clamp(_median(cycles), CYCLE_BOUNDS) if cycles else base.rem_cycle,
        rem_duration=clamp(_median(durations), DURATION_BOUNDS),
        source_nights=nights,
        source_windows=len(durations),
        refreshed_at=refreshed_at,
    )
    logger.info(
        "predictor.model_rebuilt",
        latency_min=model.rem_latency.total_seconds() / 60,
        cycle_min=model.rem_cycle.total_seconds() / 60,
        duration_min=model.rem_duration.total_seconds() / 60,
        nights=nights,
        windows=model.source_windows,
    )
    return model


# ── Projection ────────────────────────────────────────────────


class REMWindowPredictor:
    """Hold the current :class:`PredictionModel` and project REM windows.

    The model is only ever replaced as a whole via :meth:`apply`, so a
    reader never observes a partially refreshed model.
    """

    def __init__(
        self,
        model: PredictionModel | None = None,
        *,
        refresh_interval: timedelta = timedelta(hours=6),
    ) -> None:
        self._model = model or DEFAULT_MODEL
        self.refresh_interval = refresh_interval
        self.last_refreshed: datetime | None = None

    @property
    def model(self) -> PredictionModel:
        return self._model

    def apply(self, model: PredictionModel, refreshed_at: datetime) -> None:
        self._model = model
        self.last_refreshed = refreshed_at

    def needs_refresh(self, now: datetime) -> bool:
        if self.last_refreshed is None:
            return True
        return now - self.last_refreshed >= self.refresh_interval

    def predict(self, window: SleepWindow, now: datetime) -> REMWindow | None:
        """Return the REM window bracketing *now*, the previous one, or the first upcoming one."""
        if now <= window.start:
            return None
        model = self._model
        first = window.start + model.rem_latency
        if now < first:
            start = first
        else:
            cycles_elapsed = (now - first) // model.rem_cycle
            start = first + cycles_elapsed * model.rem_cycle
        return REMWindow(
            start=start,
            end=start + model.rem_duration,
            source=WindowSource.INFERRED,
        )
