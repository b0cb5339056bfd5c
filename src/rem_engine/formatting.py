"""Human-readable rendering of times and intervals for status strings."""

from __future__ import annotations

from datetime import datetime, timedelta


def format_clock_time(moment: datetime) -> str:
    """Render a time of day in short 12-hour form, e.g. ``"1:30 AM"``."""
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {suffix}"


def format_interval(start: datetime, end: datetime) -> str:
    """Render a start–end interval, e.g. ``"1:30 AM – 1:50 AM"``."""
    return f"{format_clock_time(start)} – {format_clock_time(end)}"


def format_minutes(span: timedelta) -> str:
    """Format a duration as whole minutes (e.g. ``"90 min"``)."""
    return f"{round(span.total_seconds() / 60)} min"
