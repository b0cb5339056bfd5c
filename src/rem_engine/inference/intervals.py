"""Gap-tolerant interval merging shared by session and REM windowing."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from rem_engine.models import Interval


def merge_intervals(
    intervals: Iterable[Interval],
    gap: timedelta,
) -> list[tuple[datetime, datetime]]:
    """Union intervals whose separation does not exceed ``gap``.

    Intervals are processed in start order.  A new group begins when an
    interval starts more than ``gap`` after the running group's end;
    otherwise the group end is extended.  The result does not depend on
    input order or duplicates.
    """
    merged: list[tuple[datetime, datetime]] = []
    for item in sorted(intervals, key=lambda i: (i.start, i.end)):
        if merged and item.start - merged[-1][1] <= gap:
            start, end = merged[-1]
            merged[-1] = (start, max(end, item.end))
        else:
            merged.append((item.start, item.end))
    return merged
