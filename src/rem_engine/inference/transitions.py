"""Idempotent REM start/end event emission."""

from __future__ import annotations

from datetime import datetime

import structlog

from rem_engine.formatting import format_interval
from rem_engine.models import HistoryEntry, HistoryKind, REMEvaluationResult

logger = structlog.get_logger(__name__)


def window_identity(start: datetime) -> datetime:
    """Minute-resolution identity of a REM period: the minute it started."""
    return start.replace(second=0, microsecond=0)


class TransitionLogger:
    """Turn a stream of evaluation results into REM detected/ended entries.

    * "REM detected" is emitted once per REM period, the first time a
      result for it says ``is_rem``.
    * "REM ended" is emitted once per period, after ``is_rem`` went false
      (or a window with a different start replaced it).

    A window that keeps its start minute but grows its end (platform REM
    stages arriving in chunks) is the same period; only its end moves.
    Entries are stamped with the window's own start/end, never with the
    time the entry was produced.
    """

    def __init__(self) -> None:
        self._detected: set[datetime] = set()
        self._ended: set[datetime] = set()
        self._active: tuple[datetime, datetime, datetime] | None = None

    def observe(self, result: REMEvaluationResult) -> list[HistoryEntry]:
        entries: list[HistoryEntry] = []
        has_window = result.window_start is not None and result.window_end is not None

        if result.is_rem and has_window:
            identity = window_identity(result.window_start)
            if self._active is not None and self._active[0] != identity:
                entries.extend(self._close_active())
            if identity in self._ended:
                return entries

            if self._active is not None:
                _, start, end = self._active
                self._active = (identity, start, max(end, result.window_end))
                return entries

            self._active = (identity, result.window_start, result.window_end)
            if identity not in self._detected:
                self._detected.add(identity)
                entries.append(
                    HistoryEntry(
                        timestamp=result.window_start,
                        note=f"REM detected: {format_interval(result.window_start, result.window_end)}",
                        kind=HistoryKind.REM_DETECTED,
                    )
                )
                logger.info(
                    "transitions.rem_detected",
                    start=result.window_start.isoformat(),
                    end=result.window_end.isoformat(),
                )
        elif self._active is not None:
            entries.extend(self._close_active())

        return entries

    def reset(self) -> None:
        self._detected.clear()
        self._ended.clear()
        self._active = None

    @property
    def detected_count(self) -> int:
        return len(self._detected)

    def _close_active(self) -> list[HistoryEntry]:
        if self._active is None:
            return []
        identity, start, end = self._active
        self._active = None
        if identity in self._ended:
            return []
        self._ended.add(identity)
        logger.info("transitions.rem_ended", start=start.isoformat(), end=end.isoformat())
        return [
            HistoryEntry(
                timestamp=end,
                note=f"REM ended: {format_interval(start, end)}",
                kind=HistoryKind.REM_ENDED,
            )
        ]
