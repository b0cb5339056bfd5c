"""Tests for persistence: SQL repositories and the session summary file."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from rem_engine.models import (
    DetectionSettings,
    DetectionStrictness,
    HistoryEntry,
    HistoryKind,
    PredictionModel,
    SessionSummary,
    SleepStage,
    StageSample,
)
from rem_engine.storage.database import init_db
from rem_engine.storage.history import InMemoryStageHistory
from rem_engine.storage.repository import HistoryRepository, StageSampleRepository
from rem_engine.storage.summary import SessionSummaryStore

NIGHT = datetime(2026, 1, 10, 23, 0)


@pytest.fixture
async def session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as s:
        yield s
    await engine.dispose()


def stage(offset_minutes: int, length: int, kind: SleepStage) -> StageSample:
    start = NIGHT + timedelta(minutes=offset_minutes)
    return StageSample(start=start, end=start + timedelta(minutes=length), stage=kind)


@pytest.mark.asyncio
async def test_stage_samples_round_trip(session):
    repo = StageSampleRepository(session)
    samples = [
        stage(90, 20, SleepStage.ASLEEP_REM),
        stage(0, 60, SleepStage.ASLEEP_CORE),
        stage(60, 30, SleepStage.ASLEEP_DEEP),
    ]
    assert await repo.save_batch(samples) == 3
    assert await repo.count() == 3

    fetched = await repo.fetch_stage_samples(NIGHT, NIGHT + timedelta(hours=8))
    assert [s.stage for s in fetched] == [
        SleepStage.ASLEEP_CORE,
        SleepStage.ASLEEP_DEEP,
        SleepStage.ASLEEP_REM,
    ]
    assert fetched[2].start == NIGHT + timedelta(minutes=90)


@pytest.mark.asyncio
async def test_stage_samples_range_and_delete(session):
    repo = StageSampleRepository(session)
    await repo.save_batch(
        [stage(-24 * 60, 60, SleepStage.IN_BED), stage(0, 60, SleepStage.IN_BED)]
    )

    recent = await repo.fetch_stage_samples(NIGHT - timedelta(hours=1), NIGHT + timedelta(hours=1))
    assert len(recent) == 1

    assert await repo.delete_before(NIGHT - timedelta(hours=12)) == 1
    assert await repo.count() == 1


@pytest.mark.asyncio
async def test_history_repository(session):
    repo = HistoryRepository(session)
    await repo.record(
        HistoryEntry(
            timestamp=NIGHT + timedelta(minutes=150),
            note="REM ended: 1:30 AM – 1:50 AM",
            kind=HistoryKind.REM_ENDED,
        )
    )
    await repo.record(
        HistoryEntry(
            timestamp=NIGHT + timedelta(minutes=150),
            note="REM detected: 1:30 AM – 1:50 AM",
            kind=HistoryKind.REM_DETECTED,
        )
    )

    entries = await repo.get_range(NIGHT, NIGHT + timedelta(hours=8))
    assert [e.kind for e in entries] == [HistoryKind.REM_ENDED, HistoryKind.REM_DETECTED]
    assert entries[0].note.startswith("REM ended")


@pytest.mark.asyncio
async def test_in_memory_history_filters_by_start():
    history = InMemoryStageHistory([stage(0, 60, SleepStage.IN_BED)])
    history.add([stage(-5 * 24 * 60, 60, SleepStage.IN_BED)])
    fetched = await history.fetch_stage_samples(NIGHT - timedelta(days=1), NIGHT + timedelta(days=1))
    assert len(fetched) == 1


class TestSessionSummaryStore:
    def test_save_and_load(self, tmp_path):
        store = SessionSummaryStore(tmp_path / "nested" / "summary.json")
        summary = SessionSummary(
            session_start=NIGHT,
            session_end=NIGHT + timedelta(hours=8),
            last_rem_window_start=NIGHT + timedelta(minutes=150),
            last_rem_window_end=NIGHT + timedelta(minutes=170),
            last_rem_description="Detected REM window: 1:30 AM – 1:50 AM",
            rem_detections=3,
            settings=DetectionSettings(strictness=DetectionStrictness.STRICT),
            model=PredictionModel(rem_cycle=timedelta(minutes=95)),
        )
        store.save(summary)

        loaded = SessionSummaryStore(store.path).load()
        assert loaded == summary

    def test_missing_file(self, tmp_path):
        assert SessionSummaryStore(tmp_path / "none.json").load() is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "summary.json"
        path.write_text("{not json", encoding="utf-8")
        assert SessionSummaryStore(path).load() is None
