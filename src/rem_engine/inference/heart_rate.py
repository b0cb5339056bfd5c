"""Dynamic heart-rate band for REM plausibility checks."""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

import structlog

from rem_engine.models import HeartRateSample, Interval, SleepWindow

logger = structlog.get_logger(__name__)

# Static band used until enough recent samples exist
DEFAULT_LOWER_BPM = 45.0
DEFAULT_UPPER_BPM = 70.0

# Plausible human limits for the dynamic band
FLOOR_BPM = 40.0
CEILING_BPM = 90.0

# REM tachycardia skews upward more than downward
BELOW_MEDIAN_BPM = 10.0
ABOVE_MEDIAN_BPM = 15.0


@dataclass(frozen=True, slots=True)
class HeartRateRange:
    """Inclusive bpm band; ``median`` is ``None`` for the static default."""

    lower: float
    upper: float
    median: float | None = None
    sample_count: int = 0

    @property
    def is_dynamic(self) -> bool:
        return self.median is not None

    def contains(self, bpm: float) -> bool:
        return self.lower <= bpm <= self.upper


DEFAULT_RANGE = HeartRateRange(lower=DEFAULT_LOWER_BPM, upper=DEFAULT_UPPER_BPM)


def _overlapping(
    samples: Sequence[HeartRateSample], start: datetime, end: datetime
) -> list[HeartRateSample]:
    return [s for s in samples if s.overlaps(start, end)]


class HeartRateRangeEstimator:
    """Median-anchored, asymmetric bpm band over the recent part of a sleep window.

    Parameters
    ----------
    lookback : timedelta
        How far back from *now* samples count (intersected with the
        sleep window).  Default 2 h.
    min_samples : int
        Below this many qualifying samples the static default band
        ``[45, 70]`` is returned.
    """

    def __init__(
        self,
        lookback: timedelta = timedelta(hours=2),
        min_samples: int = 10,
    ) -> None:
        self.lookback = lookback
        self.min_samples = min_samples

    def estimate(
        self,
        samples: Sequence[HeartRateSample],
        window: SleepWindow,
        now: datetime,
    ) -> HeartRateRange:
        start = max(window.start, now - self.lookback)
        end = min(window.end, now)
        if start > end:
            return DEFAULT_RANGE

        qualifying = _overlapping(samples, start, end)
        if len(qualifying) < self.min_samples:
            logger.debug(
                "heart_rate.default_range",
                qualifying=len(qualifying),
                required=self.min_samples,
            )
            return DEFAULT_RANGE

        median = statistics.median(s.bpm for s in qualifying)
        # Anchor inside the limits so lower <= median <= upper still holds
        # for a median of e.g. 35 ([40, 55]) or 100 ([80, 90]).
        median = min(max(median, FLOOR_BPM), CEILING_BPM)
        return HeartRateRange(
            lower=max(FLOOR_BPM, median - BELOW_MEDIAN_BPM),
            upper=min(CEILING_BPM, median + ABOVE_MEDIAN_BPM),
            median=median,
            sample_count=len(qualifying),
        )

    @staticmethod
    def window_in_range(
        samples: Sequence[HeartRateSample],
        candidate: Interval,
        band: HeartRateRange,
        now: datetime,
    ) -> bool:
        """True when the median bpm over the candidate window lies in ``band``.

        The candidate is clipped to *now*; no overlapping samples means the
        heart rate cannot corroborate the window.
        """
        end = min(candidate.end, now)
        if candidate.start > end:
            return False
        during = _overlapping(samples, candidate.start, end)
        if not during:
            return False
        return band.contains(statistics.median(s.bpm for s in during))
