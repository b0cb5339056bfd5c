"""Bounded, time-pruned buffers for every incoming signal type."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Generic, Iterable, TypeVar

import structlog

from rem_engine.models import (
    HeartRateSample,
    Interval,
    StageSample,
    SupportKind,
    SupportSample,
)

logger = structlog.get_logger(__name__)

SampleT = TypeVar("SampleT", bound=Interval)


class SignalBuffer(Generic[SampleT]):
    """Chronological buffer that forgets samples older than ``lookback``.

    Samples are kept sorted by start time.  Out-of-order delivery and
    duplicates are accepted as-is; downstream interval merging does not
    depend on uniqueness.
    """

    def __init__(self, name: str, lookback: timedelta) -> None:
        self.name = name
        self.lookback = lookback
        self._samples: list[SampleT] = []

    def ingest(self, sample: SampleT, now: datetime) -> None:
        self._samples.append(sample)
        self._samples.sort(key=lambda s: s.start)
        self.prune(now)

    def ingest_many(self, samples: Iterable[SampleT], now: datetime) -> None:
        self._samples.extend(samples)
        self._samples.sort(key=lambda s: s.start)
        self.prune(now)

    def prune(self, now: datetime) -> int:
        """Drop samples that ended before ``now - lookback``; return how many."""
        cutoff = now - self.lookback
        before = len(self._samples)
        self._samples = [s for s in self._samples if s.end >= cutoff]
        dropped = before - len(self._samples)
        if dropped:
            logger.debug("signal_buffer.pruned", buffer=self.name, dropped=dropped)
        return dropped

    def clear(self) -> None:
        self._samples = []

    def latest(self) -> SampleT | None:
        """Return the sample that ended most recently."""
        if not self._samples:
            return None
        return max(self._samples, key=lambda s: s.end)

    @property
    def samples(self) -> list[SampleT]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


class SignalAggregator:
    """One :class:`SignalBuffer` per signal, with per-signal lookbacks."""

    def __init__(
        self,
        *,
        stage_lookback: timedelta = timedelta(hours=12),
        heart_rate_lookback: timedelta = timedelta(hours=8),
        support_lookback: timedelta = timedelta(minutes=30),
    ) -> None:
        self.stages: SignalBuffer[StageSample] = SignalBuffer("stage", stage_lookback)
        self.heart_rate: SignalBuffer[HeartRateSample] = SignalBuffer(
            "heart_rate", heart_rate_lookback
        )
        self.hrv: SignalBuffer[SupportSample] = SignalBuffer("hrv", support_lookback)
        self.respiratory: SignalBuffer[SupportSample] = SignalBuffer(
            "respiratory", support_lookback
        )

    # ── Ingest ────────────────────────────────────────────────

    def ingest_stage(self, sample: StageSample, now: datetime) -> None:
        self.stages.ingest(sample, now)

    def ingest_heart_rate(self, sample: HeartRateSample, now: datetime) -> None:
        self.heart_rate.ingest(sample, now)

    def ingest_support(self, sample: SupportSample, now: datetime) -> None:
        """Route an HRV or respiratory sample to its buffer by ``kind``."""
        if sample.kind == SupportKind.HRV_MS:
            self.hrv.ingest(sample, now)
        else:
            self.respiratory.ingest(sample, now)

    # ── Housekeeping ──────────────────────────────────────────

    def prune(self, now: datetime) -> None:
        for buffer in self._buffers():
            buffer.prune(now)

    def clear(self) -> None:
        for buffer in self._buffers():
            buffer.clear()

    def counts(self) -> dict[str, int]:
        return {buffer.name: len(buffer) for buffer in self._buffers()}

    def _buffers(self) -> tuple[SignalBuffer, ...]:
        return (self.stages, self.heart_rate, self.hrv, self.respiratory)
