"""Support-signal scoring — HRV and respiratory-rate corroboration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from rem_engine.models import DetectionSettings, SupportSample

# Physiologically plausible bands during REM (inclusive)
HRV_BAND_MS = (20.0, 120.0)
RESP_BAND_BPM = (8.0, 20.0)


@dataclass(frozen=True, slots=True)
class SupportAssessment:
    hrv_available: bool = False
    hrv_support: bool = False
    resp_available: bool = False
    resp_support: bool = False

    @property
    def support_available(self) -> bool:
        return self.hrv_available or self.resp_available

    @property
    def support_ok(self) -> bool:
        return self.hrv_support or self.resp_support


class SupportSignalEvaluator:
    """Decide whether HRV / respiration are recent enough and plausible.

    A signal is *available* when its settings toggle is on and its latest
    sample ended within ``recency`` of now; it is *supportive* when it is
    available and the value falls inside the plausible band.
    """

    def __init__(self, recency: timedelta = timedelta(minutes=30)) -> None:
        self.recency = recency

    def evaluate(
        self,
        hrv: Sequence[SupportSample],
        respiratory: Sequence[SupportSample],
        settings: DetectionSettings,
        now: datetime,
    ) -> SupportAssessment:
        hrv_available, hrv_support = self._score(hrv, settings.use_hrv, HRV_BAND_MS, now)
        resp_available, resp_support = self._score(
            respiratory, settings.use_respiratory_rate, RESP_BAND_BPM, now
        )
        return SupportAssessment(
            hrv_available=hrv_available,
            hrv_support=hrv_support,
            resp_available=resp_available,
            resp_support=resp_support,
        )

    def _score(
        self,
        samples: Sequence[SupportSample],
        enabled: bool,
        band: tuple[float, float],
        now: datetime,
    ) -> tuple[bool, bool]:
        if not enabled or not samples:
            return False, False
        latest = max(samples, key=lambda s: s.end)
        if now - latest.end > self.recency:
            return False, False
        low, high = band
        return True, low <= latest.value <= high
