"""Data-access layer — thin async wrappers around SQLAlchemy queries."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rem_engine.models import HistoryEntry, HistoryKind, SleepStage, StageSample
from rem_engine.storage.database import HistoryEntryRow, StageSampleRow, get_session_factory
from rem_engine.storage.history import HistorySink


class BaseRepository:
    """Shared base with session management for all repositories."""

    def __init__(self, session: AsyncSession | None = None) -> None:
        self._external_session = session

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._external_session is not None:
            yield self._external_session
            return
        async with get_session_factory()() as session:
            yield session


class StageSampleRepository(BaseRepository):
    """Stage-sample history; also serves as the calibration history source."""

    # ── Write ─────────────────────────────────────────────────

    async def save_batch(self, samples: Sequence[StageSample]) -> int:
        async with self._session() as session:
            session.add_all(
                [StageSampleRow(start=s.start, end=s.end, stage=s.stage.value) for s in samples]
            )
            await session.commit()
        return len(samples)

    async def delete_before(self, cutoff: datetime) -> int:
        """Delete samples that started before *cutoff*. Returns count deleted."""
        async with self._session() as session:
            result = await session.execute(
                delete(StageSampleRow).where(StageSampleRow.start < cutoff)
            )
            await session.commit()
        return result.rowcount or 0

    # ── Read ──────────────────────────────────────────────────

    async def count(self) -> int:
        async with self._session() as session:
            result = await session.execute(select(func.count()).select_from(StageSampleRow))
            return result.scalar() or 0

    async def fetch_stage_samples(self, start: datetime, end: datetime) -> list[StageSample]:
        """Return samples starting within ``[start, end]`` in chronological order."""
        async with self._session() as session:
            stmt = (
                select(StageSampleRow)
                .where(StageSampleRow.start >= start, StageSampleRow.start <= end)
                .order_by(StageSampleRow.start)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [
            StageSample(start=r.start, end=r.end, stage=SleepStage(r.stage)) for r in rows
        ]


class HistoryRepository(BaseRepository, HistorySink):
    """REM transition history backed by the ``history_entries`` table."""

    name = "database"

    async def record(self, entry: HistoryEntry) -> None:
        async with self._session() as session:
            session.add(
                HistoryEntryRow(timestamp=entry.timestamp, kind=entry.kind.value, note=entry.note)
            )
            await session.commit()

    async def get_range(self, start: datetime, end: datetime) -> list[HistoryEntry]:
        async with self._session() as session:
            stmt = (
                select(HistoryEntryRow)
                .where(HistoryEntryRow.timestamp >= start, HistoryEntryRow.timestamp <= end)
                .order_by(HistoryEntryRow.timestamp, HistoryEntryRow.id)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [
            HistoryEntry(timestamp=r.timestamp, note=r.note, kind=HistoryKind(r.kind))
            for r in rows
        ]
