"""Clock abstraction so evaluation timing can be driven deterministically."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock local time (status strings render local times of day)."""

    def now(self) -> datetime:
        return datetime.now()


class ManualClock:
    """A clock that only moves when told to — for tests and replays."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move forward by ``delta`` or by ``timedelta(**kwargs)``."""
        self._now += delta if delta is not None else timedelta(**kwargs)
        return self._now
