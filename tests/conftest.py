"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime

import pytest

from rem_engine.engine import REMEngine
from rem_engine.models import DetectionSettings, DetectionStrictness
from rem_engine.notifications.handlers import ResultDispatcher
from rem_engine.scheduler.clock import ManualClock
from rem_engine.storage.history import MemoryHistorySink

# 23:00 on the evening the test night begins
NIGHT_START = datetime(2026, 1, 10, 23, 0)


@pytest.fixture
def night_start() -> datetime:
    return NIGHT_START


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(NIGHT_START)


@pytest.fixture
def sink() -> MemoryHistorySink:
    return MemoryHistorySink()


@pytest.fixture
def lenient_settings() -> DetectionSettings:
    return DetectionSettings(strictness=DetectionStrictness.LENIENT, require_stillness=False)


@pytest.fixture
def make_engine(clock: ManualClock, sink: MemoryHistorySink):
    """Build a started-ready engine on the manual clock with a memory sink."""

    def _make(settings: DetectionSettings | None = None, **kwargs) -> REMEngine:
        kwargs.setdefault("dispatcher", ResultDispatcher(subscribers=[]))
        return REMEngine(settings, clock=clock, history_sink=sink, **kwargs)

    return _make
