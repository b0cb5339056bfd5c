"""REM engine — owns the signal buffers, the prediction model and the refresh task.

One evaluation tick runs:

    samples → SleepWindow → REM candidate (explicit stage or predicted)
            → HR band + support signals → DetectionGate
            → REMEvaluationResult → history sink + result subscribers

``start()`` / ``stop()`` are synchronous and idempotent.  Every stop bumps
a generation counter; a calibration refresh only swaps in its model when
the generation it started under is still current.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Sequence

import structlog

from rem_engine.config import Settings, get_settings
from rem_engine.formatting import format_interval
from rem_engine.inference.gate import DetectionGate, GatePath
from rem_engine.inference.heart_rate import HeartRateRangeEstimator
from rem_engine.inference.intervals import merge_intervals
from rem_engine.inference.predictor import REMWindowPredictor, build_prediction_model
from rem_engine.inference.session import SessionWindowResolver
from rem_engine.inference.support import SupportSignalEvaluator
from rem_engine.inference.transitions import TransitionLogger
from rem_engine.models import (
    DetectionSettings,
    HeartRateSample,
    HistoryEntry,
    PredictionModel,
    REMEvaluationResult,
    REMWindow,
    SessionSummary,
    SleepStage,
    SleepWindow,
    StageSample,
    StillnessState,
    SupportSample,
    WindowSource,
)
from rem_engine.motion.stillness import StillnessTracker
from rem_engine.notifications.handlers import ResultDispatcher, ResultSubscriber
from rem_engine.scheduler.clock import Clock, SystemClock
from rem_engine.scheduler.service import EngineScheduler
from rem_engine.signals.aggregator import SignalAggregator
from rem_engine.storage.history import HistorySink, LogHistorySink, StageHistorySource
from rem_engine.storage.summary import SessionSummaryStore

logger = structlog.get_logger(__name__)

# ── Status strings ────────────────────────────────────────────

NOT_RUNNING = "Monitoring is not active"
NO_SLEEP_START = "No sleep start detected"
NOT_STILL = "Not still enough for sleep"
WAITING_FOR_CYCLE = "Waiting for the first sleep cycle"
EVALUATION_FAILED = "Unable to evaluate sleep right now"

# Minimum spacing between retries after a failed calibration refresh
REFRESH_RETRY = timedelta(minutes=10)


class REMEngine:
    """Sleep-phase inference engine for one wearer.

    Parameters
    ----------
    settings : DetectionSettings
        User-facing detection options; replace with :meth:`update_settings`.
    clock : Clock
        Source of *now*.  Tests and replays pass a ``ManualClock``.
    history_source : StageHistorySource
        Calibration history.  Without one the default model is used.
    history_sink : HistorySink
        Receives "REM detected" / "REM ended" entries.
    scheduler : EngineScheduler
        Optional periodic tick / calibration driver, started and stopped
        together with the engine.
    """

    def __init__(
        self,
        settings: DetectionSettings | None = None,
        *,
        clock: Clock | None = None,
        aggregator: SignalAggregator | None = None,
        resolver: SessionWindowResolver | None = None,
        hr_estimator: HeartRateRangeEstimator | None = None,
        support_evaluator: SupportSignalEvaluator | None = None,
        gate: DetectionGate | None = None,
        predictor: REMWindowPredictor | None = None,
        transitions: TransitionLogger | None = None,
        stillness_tracker: StillnessTracker | None = None,
        dispatcher: ResultDispatcher | None = None,
        history_sink: HistorySink | None = None,
        history_source: StageHistorySource | None = None,
        summary_store: SessionSummaryStore | None = None,
        scheduler: EngineScheduler | None = None,
        rem_merge_gap: timedelta = timedelta(minutes=5),
        explicit_grace: timedelta = timedelta(minutes=10),
        calibration_history: timedelta = timedelta(days=14),
        fetch_timeout: float = 15.0,
    ) -> None:
        self._settings = settings or DetectionSettings()
        self._clock = clock or SystemClock()
        self.aggregator = aggregator or SignalAggregator()
        self.resolver = resolver or SessionWindowResolver()
        self.hr_estimator = hr_estimator or HeartRateRangeEstimator()
        self.support_evaluator = support_evaluator or SupportSignalEvaluator()
        self.gate = gate or DetectionGate()
        self.predictor = predictor or REMWindowPredictor()
        self.transitions = transitions or TransitionLogger()
        self.stillness_tracker = stillness_tracker or StillnessTracker(
            self._settings.stillness_minutes
        )
        self.dispatcher = dispatcher or ResultDispatcher()
        self.history_sink = history_sink or LogHistorySink()
        self.history_source = history_source
        self.summary_store = summary_store
        self.scheduler = scheduler

        self.rem_merge_gap = rem_merge_gap
        self.explicit_grace = explicit_grace
        self.calibration_history = calibration_history
        self.fetch_timeout = fetch_timeout

        self._running = False
        self._generation = 0
        self._session_start: datetime | None = None
        self._stillness: StillnessState | None = None
        self._stillness_onset: datetime | None = None
        self._refresh_task: asyncio.Task | None = None
        self._next_refresh_attempt: datetime | None = None

        self._last_result: REMEvaluationResult | None = None
        self._last_sleep_window: SleepWindow | None = None
        self._last_rem_result: REMEvaluationResult | None = None

    # ── Properties ────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def settings(self) -> DetectionSettings:
        return self._settings

    @property
    def model(self) -> PredictionModel:
        return self.predictor.model

    @property
    def last_result(self) -> REMEvaluationResult | None:
        return self._last_result

    @property
    def stillness(self) -> StillnessState | None:
        return self._stillness

    @property
    def refresh_task(self) -> asyncio.Task | None:
        return self._refresh_task

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self, session_start: datetime | None = None) -> None:
        """Begin a monitoring session (no-op if already running)."""
        if self._running:
            return
        self._generation += 1
        self._running = True
        self._session_start = session_start or self._clock.now()
        self._stillness = None
        self._stillness_onset = None
        self._next_refresh_attempt = None
        self._last_result = None
        self._last_sleep_window = None
        self._last_rem_result = None
        self.aggregator.clear()
        self.transitions.reset()
        self.stillness_tracker.reset(self._clock.now())

        if self.scheduler is not None:
            try:
                self.scheduler.start(self.tick, self.request_refresh)
            except RuntimeError:
                logger.warning("engine.scheduler_unavailable", reason="no running event loop")

        logger.info(
            "engine.started",
            generation=self._generation,
            session_start=self._session_start.isoformat(),
            strictness=self._settings.strictness.value,
        )

    def stop(self) -> SessionSummary | None:
        """End the session, cancel pending work and persist a summary.

        Returns the summary, or ``None`` if the engine was not running.
        """
        if not self._running:
            return None
        self._generation += 1
        self._running = False

        if self.scheduler is not None:
            self.scheduler.stop()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

        summary = self.summary(session_end=self._clock.now())
        if self.summary_store is not None:
            try:
                self.summary_store.save(summary)
            except OSError:
                logger.exception("engine.summary_save_failed")

        self.aggregator.clear()
        self._stillness = None
        self._stillness_onset = None
        logger.info(
            "engine.stopped",
            generation=self._generation,
            rem_detections=summary.rem_detections,
        )
        return summary

    def update_settings(self, settings: DetectionSettings) -> None:
        """Replace detection settings; applies from the next tick."""
        self._settings = settings
        self.stillness_tracker.stillness_minutes = settings.stillness_minutes
        logger.info("engine.settings_updated", **settings.model_dump(mode="json"))

    def subscribe(self, subscriber: ResultSubscriber) -> None:
        self.dispatcher.add_subscriber(subscriber)

    # ── Ingest ────────────────────────────────────────────────

    async def ingest_stage(self, sample: StageSample) -> REMEvaluationResult | None:
        if not self._accepting("stage"):
            return None
        self.aggregator.ingest_stage(sample, self._clock.now())
        return await self.tick()

    async def ingest_heart_rate(self, sample: HeartRateSample) -> REMEvaluationResult | None:
        if not self._accepting("heart_rate"):
            return None
        self.aggregator.ingest_heart_rate(sample, self._clock.now())
        return await self.tick()

    async def ingest_support(self, sample: SupportSample) -> REMEvaluationResult | None:
        if not self._accepting("support"):
            return None
        self.aggregator.ingest_support(sample, self._clock.now())
        return await self.tick()

    async def update_stillness(
        self, state: StillnessState, onset: datetime | None = None
    ) -> REMEvaluationResult | None:
        """Record the latest motion state; a new still period anchors the fallback window.

        Without an explicit *onset* the period is taken to have begun
        ``still_minutes`` before now.
        """
        if not self._accepting("stillness"):
            return None
        was_still = self._stillness is not None and self._stillness.is_still
        if state.is_still and (not was_still or self._stillness_onset is None):
            self._stillness_onset = onset or self._clock.now() - timedelta(
                minutes=state.still_minutes
            )
        self._stillness = state
        return await self.tick()

    async def ingest_motion(
        self, x: float, y: float, z: float
    ) -> REMEvaluationResult | None:
        """Feed one accelerometer reading (user acceleration, g) to the stillness tracker.

        Only a change between still and moving triggers an evaluation.
        """
        if not self._accepting("motion"):
            return None
        state = self.stillness_tracker.update(x, y, z, self._clock.now())
        previous = self._stillness
        if previous is not None and previous.is_still == state.is_still:
            self._stillness = state
            return None
        return await self.update_stillness(state, self.stillness_tracker.stillness_onset)

    async def ingest(
        self, sample: StageSample | HeartRateSample | SupportSample | StillnessState
    ) -> REMEvaluationResult | None:
        """Route any sample type to its ingest method."""
        if isinstance(sample, StageSample):
            return await self.ingest_stage(sample)
        if isinstance(sample, HeartRateSample):
            return await self.ingest_heart_rate(sample)
        if isinstance(sample, SupportSample):
            return await self.ingest_support(sample)
        if isinstance(sample, StillnessState):
            return await self.update_stillness(sample)
        raise TypeError(f"Unsupported sample type: {type(sample).__name__}")

    def _accepting(self, signal: str) -> bool:
        if not self._running:
            logger.debug("engine.sample_ignored", signal=signal, reason="not running")
            return False
        return True

    # ── Evaluation ────────────────────────────────────────────

    async def tick(self) -> REMEvaluationResult:
        """Run one evaluation and fan out its outcome.  Never raises."""
        now = self._clock.now()
        if not self._running:
            return REMEvaluationResult(is_rem=False, description=NOT_RUNNING, evaluated_at=now)

        try:
            self.request_refresh()
            self.aggregator.prune(now)
            result = self.evaluate(now)
        except Exception:
            logger.exception("engine.evaluation_failed")
            result = REMEvaluationResult(
                is_rem=False, description=EVALUATION_FAILED, evaluated_at=now
            )

        self._last_result = result
        if result.is_rem:
            self._last_rem_result = result

        for entry in self.transitions.observe(result):
            await self._record(entry)
        await self.dispatcher.dispatch(result)
        return result

    def evaluate(self, now: datetime | None = None) -> REMEvaluationResult:
        """Decide REM / not-REM from the buffered signals, without side effects on subscribers."""
        now = now or self._clock.now()
        settings = self._settings

        if not self.gate.stillness_satisfied(settings, self._stillness):
            return REMEvaluationResult(is_rem=False, description=NOT_STILL, evaluated_at=now)

        window = self.resolver.resolve(
            self.aggregator.stages.samples,
            now,
            session_start=self._session_start,
            stillness_onset=self._stillness_onset,
        )
        if window is None:
            return REMEvaluationResult(is_rem=False, description=NO_SLEEP_START, evaluated_at=now)
        self._last_sleep_window = window

        heart_rate = self.aggregator.heart_rate.samples
        band = self.hr_estimator.estimate(heart_rate, window, now)
        support = self.support_evaluator.evaluate(
            self.aggregator.hrv.samples, self.aggregator.respiratory.samples, settings, now
        )

        candidate = self.explicit_rem_window(window, now)
        if candidate is not None:
            path = GatePath.EXPLICIT
        else:
            candidate = self.predictor.predict(window, now)
            path = GatePath.INFERRED
            if candidate is None:
                return REMEvaluationResult(
                    is_rem=False, description=WAITING_FOR_CYCLE, evaluated_at=now
                )
            interval = format_interval(candidate.start, candidate.end)
            if now < candidate.start:
                return self._result(False, f"Next REM window expected: {interval}", candidate, now)
            if now > candidate.end:
                return self._result(False, f"REM window passed: {interval}", candidate, now)

        hr_in_range = self.hr_estimator.window_in_range(heart_rate, candidate, band, now)
        decision = self.gate.decide(
            path,
            settings.strictness,
            hr_in_range=hr_in_range,
            support_available=support.support_available,
            support_ok=support.support_ok,
        )
        interval = format_interval(candidate.start, candidate.end)
        if path is GatePath.EXPLICIT:
            description = (
                f"Detected REM window: {interval}"
                if decision.passed
                else f"REM stage detected but signals did not confirm: {interval}"
            )
        else:
            description = (
                f"Approximated REM window: {interval}"
                if decision.passed
                else f"No REM detected in approximated window: {interval}"
            )
        return self._result(decision.passed, description, candidate, now)

    def explicit_rem_window(self, window: SleepWindow, now: datetime) -> REMWindow | None:
        """Return the current platform-reported REM window inside *window*, if any.

        REM samples are merged across short gaps; a merged window counts
        as current once it has started and until ``explicit_grace`` after
        it ended.
        """
        rem = [
            s
            for s in self.aggregator.stages.samples
            if s.stage == SleepStage.ASLEEP_REM and s.overlaps(window.start, window.end)
        ]
        for start, end in reversed(merge_intervals(rem, self.rem_merge_gap)):
            if start <= now and now - end <= self.explicit_grace:
                return REMWindow(start=start, end=end, source=WindowSource.EXPLICIT)
        return None

    @staticmethod
    def _result(
        is_rem: bool, description: str, window: REMWindow, now: datetime
    ) -> REMEvaluationResult:
        return REMEvaluationResult(
            is_rem=is_rem,
            description=description,
            window_start=window.start,
            window_end=window.end,
            evaluated_at=now,
        )

    async def _record(self, entry: HistoryEntry) -> None:
        try:
            await self.history_sink.record(entry)
        except Exception:
            logger.exception(
                "engine.history_sink_error",
                sink=self.history_sink.name,
                kind=entry.kind.value,
            )

    # ── Calibration ───────────────────────────────────────────

    def request_refresh(self, force: bool = False) -> asyncio.Task | None:
        """Start a background model refresh when one is due.

        Returns the in-flight task (new or existing), or ``None`` when no
        refresh is due, there is no history source, or no event loop runs.
        """
        if self.history_source is None or not self._running:
            return None
        if self._refresh_task is not None and not self._refresh_task.done():
            return self._refresh_task

        now = self._clock.now()
        if not force:
            if not self.predictor.needs_refresh(now):
                return None
            if self._next_refresh_attempt is not None and now < self._next_refresh_attempt:
                return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None

        self._next_refresh_attempt = now + REFRESH_RETRY
        self._refresh_task = loop.create_task(self._refresh(self._generation))
        return self._refresh_task

    async def refresh_model(self) -> PredictionModel:
        """Force a refresh and wait for it; returns the model in effect afterwards."""
        task = self.request_refresh(force=True)
        if task is not None:
            await task
        return self.predictor.model

    async def _refresh(self, generation: int) -> bool:
        now = self._clock.now()
        since = now - self.calibration_history
        try:
            history = await asyncio.wait_for(
                self.history_source.fetch_stage_samples(since, now),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "engine.refresh_failed", reason="timeout", timeout_seconds=self.fetch_timeout
            )
            return False
        except Exception as exc:
            logger.warning("engine.refresh_failed", reason="fetch_error", error=str(exc))
            return False
        return self._apply_history(history, generation, now)

    def _apply_history(
        self, history: Sequence[StageSample], generation: int, now: datetime
    ) -> bool:
        if generation != self._generation:
            logger.info(
                "engine.refresh_discarded",
                started_generation=generation,
                current_generation=self._generation,
            )
            return False
        model = build_prediction_model(
            history,
            previous=self.predictor.model,
            session_gap=self.resolver.merge_gap,
            rem_gap=self.rem_merge_gap,
            refreshed_at=now,
        )
        self.predictor.apply(model, now)
        self._next_refresh_attempt = None
        logger.info("engine.model_refreshed", generation=generation, samples=len(history))
        return True

    # ── Summary ───────────────────────────────────────────────

    def summary(self, session_end: datetime | None = None) -> SessionSummary:
        """Snapshot of the current (or just finished) session."""
        sleep = self._last_sleep_window
        rem = self._last_rem_result
        return SessionSummary(
            session_start=self._session_start or self._clock.now(),
            session_end=session_end,
            last_sleep_start=sleep.start if sleep else None,
            last_sleep_end=sleep.end if sleep else None,
            last_rem_window_start=rem.window_start if rem else None,
            last_rem_window_end=rem.window_end if rem else None,
            last_rem_description=rem.description if rem else "No REM window detected",
            rem_detections=self.transitions.detected_count,
            settings=self._settings,
            model=self.predictor.model,
        )


# ── Factory ───────────────────────────────────────────────────


def create_engine(
    settings: Settings | None = None,
    *,
    detection: DetectionSettings | None = None,
    clock: Clock | None = None,
    history_source: StageHistorySource | None = None,
    history_sink: HistorySink | None = None,
    subscribers: list[ResultSubscriber] | None = None,
    with_scheduler: bool | None = None,
    summary_store: SessionSummaryStore | None = None,
) -> REMEngine:
    """Build an engine whose tunables come from :class:`Settings`."""
    settings = settings or get_settings()
    if with_scheduler is None:
        with_scheduler = settings.scheduler_enabled

    dispatcher = ResultDispatcher()
    for subscriber in subscribers or []:
        dispatcher.add_subscriber(subscriber)

    return REMEngine(
        detection,
        clock=clock,
        aggregator=SignalAggregator(
            stage_lookback=timedelta(hours=settings.stage_lookback_hours),
            heart_rate_lookback=timedelta(hours=settings.heart_rate_lookback_hours),
            support_lookback=timedelta(minutes=settings.support_recency_minutes),
        ),
        resolver=SessionWindowResolver(
            merge_gap=timedelta(minutes=settings.session_merge_gap_minutes),
            freshness_horizon=timedelta(minutes=settings.freshness_horizon_minutes),
        ),
        hr_estimator=HeartRateRangeEstimator(
            lookback=timedelta(minutes=settings.hr_range_lookback_minutes),
            min_samples=settings.hr_min_samples,
        ),
        support_evaluator=SupportSignalEvaluator(
            recency=timedelta(minutes=settings.support_recency_minutes)
        ),
        predictor=REMWindowPredictor(
            refresh_interval=timedelta(hours=settings.calibration_interval_hours)
        ),
        dispatcher=dispatcher,
        history_sink=history_sink,
        history_source=history_source,
        summary_store=summary_store or SessionSummaryStore(settings.summary_path),
        scheduler=EngineScheduler.from_settings(settings) if with_scheduler else None,
        rem_merge_gap=timedelta(minutes=settings.rem_merge_gap_minutes),
        explicit_grace=timedelta(minutes=settings.explicit_grace_minutes),
        calibration_history=timedelta(days=settings.calibration_history_days),
        fetch_timeout=settings.calibration_fetch_timeout_seconds,
    )
