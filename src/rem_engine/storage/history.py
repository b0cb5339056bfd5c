"""History collaborators — where transition events go and calibration data comes from."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Protocol, Sequence

import structlog

from rem_engine.models import HistoryEntry, StageSample

logger = structlog.get_logger(__name__)


# ── Sinks ─────────────────────────────────────────────────────


class HistorySink(ABC):
    """Persists REM transition entries emitted by the engine."""

    name: str = "base"

    @abstractmethod
    async def record(self, entry: HistoryEntry) -> None:
        """Store one entry."""


class LogHistorySink(HistorySink):
    name = "log"

    async def record(self, entry: HistoryEntry) -> None:
        logger.info(
            "history.entry",
            kind=entry.kind.value,
            timestamp=entry.timestamp.isoformat(),
            note=entry.note,
        )


class MemoryHistorySink(HistorySink):
    """Keeps entries in a list; used by replays and tests."""

    name = "memory"

    def __init__(self) -> None:
        self.entries: list[HistoryEntry] = []

    async def record(self, entry: HistoryEntry) -> None:
        self.entries.append(entry)

    @property
    def notes(self) -> list[str]:
        return [e.note for e in self.entries]


# ── Sources ───────────────────────────────────────────────────


class StageHistorySource(Protocol):
    """Anything that can return historical stage samples for calibration."""

    async def fetch_stage_samples(
        self, start: datetime, end: datetime
    ) -> Sequence[StageSample]: ...


class InMemoryStageHistory:
    """Stage history held in memory (replays, tests, host apps without a DB)."""

    def __init__(self, samples: Iterable[StageSample] = ()) -> None:
        self._samples: list[StageSample] = list(samples)

    def add(self, samples: Iterable[StageSample]) -> None:
        self._samples.extend(samples)

    async def fetch_stage_samples(self, start: datetime, end: datetime) -> list[StageSample]:
        return sorted(
            (s for s in self._samples if s.start >= start and s.start <= end),
            key=lambda s: s.start,
        )
