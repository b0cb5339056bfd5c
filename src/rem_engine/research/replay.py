"""Night replay — pandas-based loading of recorded nights and offline re-evaluation.

A recording is a CSV with columns ``kind,start,end,value``:

==============  =====================================================
kind            value
==============  =====================================================
``stage``       a :class:`SleepStage` value (e.g. ``asleep_rem``)
``heart_rate``  bpm
``hrv_ms``      HRV in milliseconds
``resp_bpm``    breaths per minute
``stillness``   minutes without movement at ``end``
==============  =====================================================

Each row is published to a :class:`SampleStream` and delivered to the
engine at its ``end`` time on a :class:`ManualClock`, in delivery order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import pandas as pd
import structlog

from rem_engine.engine import REMEngine
from rem_engine.models import (
    DetectionSettings,
    HeartRateSample,
    HistoryEntry,
    REMEvaluationResult,
    SessionSummary,
    SleepStage,
    StageSample,
    StillnessState,
    SupportKind,
    SupportSample,
)
from rem_engine.notifications.handlers import ResultDispatcher
from rem_engine.scheduler.clock import ManualClock
from rem_engine.storage.history import MemoryHistorySink, StageHistorySource
from rem_engine.streaming.pipeline import Delivery, Sample, SampleStream

logger = structlog.get_logger(__name__)

RECORDING_COLUMNS = ("kind", "start", "end", "value")


@dataclass
class ReplayReport:
    """Everything a replayed night produced."""

    results: list[REMEvaluationResult] = field(default_factory=list)
    entries: list[HistoryEntry] = field(default_factory=list)
    summary: SessionSummary | None = None

    @property
    def rem_results(self) -> list[REMEvaluationResult]:
        return [r for r in self.results if r.is_rem]


def load_recording(path: str | Path) -> pd.DataFrame:
    """Read a recording into a DataFrame sorted by delivery (``end``) time."""
    df = pd.read_csv(path, dtype={"kind": str, "value": str})
    missing = [c for c in RECORDING_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Recording {path} is missing columns: {', '.join(missing)}")
    df["start"] = pd.to_datetime(df["start"])
    df["end"] = pd.to_datetime(df["end"])
    return df.sort_values("end", kind="stable").reset_index(drop=True)


def row_to_sample(
    kind: str, start: datetime, end: datetime, value: str, stillness_minutes: float
) -> Sample:
    if kind == "stage":
        return StageSample(start=start, end=end, stage=SleepStage(value))
    if kind == "heart_rate":
        return HeartRateSample(start=start, end=end, bpm=float(value))
    if kind in (SupportKind.HRV_MS.value, SupportKind.RESP_BPM.value):
        return SupportSample(start=start, end=end, value=float(value), kind=SupportKind(kind))
    if kind == "stillness":
        still = float(value)
        return StillnessState(is_still=still >= stillness_minutes, still_minutes=still)
    raise ValueError(f"Unknown recording kind: {kind!r}")


def recording_to_samples(
    df: pd.DataFrame, stillness_minutes: float = 10.0
) -> list[tuple[datetime, Sample]]:
    """Convert recording rows to ``(delivery_time, sample)`` pairs."""
    samples: list[tuple[datetime, Sample]] = []
    for row in df.itertuples(index=False):
        start = row.start.to_pydatetime()
        end = row.end.to_pydatetime()
        samples.append((end, row_to_sample(row.kind, start, end, row.value, stillness_minutes)))
    return samples


async def replay_night(
    recording: pd.DataFrame | str | Path,
    settings: DetectionSettings | None = None,
    *,
    history_source: StageHistorySource | None = None,
    session_start: datetime | None = None,
    tick_every: timedelta | None = None,
) -> ReplayReport:
    """Run a recorded night through a fresh engine on a manual clock.

    With ``tick_every`` the engine is also ticked at that cadence between
    deliveries, as the periodic scheduler would.
    """
    df = recording if isinstance(recording, pd.DataFrame) else load_recording(recording)
    settings = settings or DetectionSettings()
    report = ReplayReport()
    if df.empty:
        return report

    deliveries = recording_to_samples(df, settings.stillness_minutes)
    first = session_start or df["start"].min().to_pydatetime()
    clock = ManualClock(first)
    sink = MemoryHistorySink()
    engine = REMEngine(
        settings,
        clock=clock,
        history_sink=sink,
        history_source=history_source,
        dispatcher=ResultDispatcher(subscribers=[]),
    )
    engine.start(session_start=first)
    if history_source is not None:
        await engine.refresh_model()

    async def pace(delivered_at: datetime) -> None:
        if tick_every is not None:
            while clock.now() + tick_every < delivered_at:
                clock.advance(tick_every)
                report.results.append(await engine.tick())
        clock.set(max(clock.now(), delivered_at))

    async def evaluate(sample: Sample) -> None:
        result = await engine.ingest(sample)
        if result is not None:
            report.results.append(result)

    stream = SampleStream(maxsize=0, pacer=pace)
    stream.add_consumer(evaluate)
    await stream.publish_batch(Delivery(sample, at) for at, sample in deliveries)
    await stream.drain()

    report.summary = engine.stop()
    report.entries = list(sink.entries)
    logger.info(
        "replay.finished",
        samples=len(deliveries),
        results=len(report.results),
        entries=len(report.entries),
    )
    return report


def results_to_dataframe(results: list[REMEvaluationResult]) -> pd.DataFrame:
    """Tabulate evaluation results, indexed by ``evaluated_at``."""
    df = pd.DataFrame([r.model_dump() for r in results])
    if not df.empty:
        df["evaluated_at"] = pd.to_datetime(df["evaluated_at"])
        df = df.set_index("evaluated_at").sort_index()
    return df
