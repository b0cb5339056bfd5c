"""Shared Pydantic models used across the engine."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ── Enums ─────────────────────────────────────────────────────


class SleepStage(str, Enum):
    """Sleep-analysis categories reported by the platform."""

    IN_BED = "in_bed"
    ASLEEP_UNSPECIFIED = "asleep_unspecified"
    ASLEEP_CORE = "asleep_core"
    ASLEEP_DEEP = "asleep_deep"
    ASLEEP_REM = "asleep_rem"


class SupportKind(str, Enum):
    """Auxiliary signals that can corroborate a REM estimate."""

    HRV_MS = "hrv_ms"
    RESP_BPM = "resp_bpm"


class DetectionStrictness(str, Enum):
    """Trade-off between detection recall and false-positive suppression."""

    LENIENT = "lenient"
    BALANCED = "balanced"
    STRICT = "strict"


class AutoMode(str, Enum):
    """How monitoring is started and stopped by the host application."""

    MOTION_ONLY = "motion_only"
    HYBRID = "hybrid"
    HEALTHKIT_ONLY = "healthkit_only"


class WindowSource(str, Enum):
    EXPLICIT = "explicit"
    INFERRED = "inferred"


class HistoryKind(str, Enum):
    REM_DETECTED = "rem_detected"
    REM_ENDED = "rem_ended"


# ── Samples ───────────────────────────────────────────────────


class Interval(BaseModel):
    """Closed time interval; ``start`` must not be after ``end``."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> Interval:
        if self.start > self.end:
            raise ValueError(f"start {self.start} is after end {self.end}")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """True when this interval shares at least one instant with [start, end]."""
        return self.start <= end and self.end >= start


class StageSample(Interval):
    """A sleep-analysis category sample."""

    stage: SleepStage


class HeartRateSample(Interval):
    bpm: float


class SupportSample(Interval):
    """An HRV (ms) or respiratory-rate (breaths/min) sample."""

    value: float
    kind: SupportKind


class StillnessState(BaseModel):
    """Motion-derived stillness, consumed as a gate input."""

    model_config = ConfigDict(frozen=True)

    is_still: bool = False
    still_minutes: float = 0.0
    moving_minutes: float = 0.0


# ── Windows ───────────────────────────────────────────────────


class SleepWindow(Interval):
    """The canonical "currently asleep" interval."""


class REMWindow(Interval):
    """An interval believed to correspond to REM sleep."""

    source: WindowSource


class PredictionModel(BaseModel):
    """Per-user REM timing parameters learned from recent nights.

    Durations are always clamped to plausible ranges by the predictor
    before a model is built; instances are replaced, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    rem_latency: timedelta = timedelta(minutes=70)
    rem_cycle: timedelta = timedelta(minutes=90)
    rem_duration: timedelta = timedelta(minutes=20)
    source_nights: int = 0
    source_windows: int = 0
    refreshed_at: datetime | None = None

    def same_parameters(self, other: PredictionModel) -> bool:
        """Compare learned values, ignoring when the model was refreshed."""
        return self.model_dump(exclude={"refreshed_at"}) == other.model_dump(
            exclude={"refreshed_at"}
        )


# ── Settings & outputs ────────────────────────────────────────


class DetectionSettings(BaseModel):
    """User-facing detection options, owned by the settings store."""

    model_config = ConfigDict(frozen=True)

    strictness: DetectionStrictness = DetectionStrictness.BALANCED
    use_hrv: bool = True
    use_respiratory_rate: bool = True
    require_stillness: bool = True
    stillness_minutes: float = Field(10.0, ge=1.0)
    auto_mode: AutoMode = AutoMode.HYBRID


class REMEvaluationResult(BaseModel):
    """Outcome of one evaluation tick."""

    model_config = ConfigDict(frozen=True)

    is_rem: bool
    description: str
    window_start: datetime | None = None
    window_end: datetime | None = None
    evaluated_at: datetime | None = None


class HistoryEntry(BaseModel):
    """A REM transition event pushed to the history sink."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    note: str
    kind: HistoryKind


class SessionSummary(BaseModel):
    """Snapshot of one monitoring session, persisted when it stops."""

    session_start: datetime
    session_end: datetime | None = None
    last_sleep_start: datetime | None = None
    last_sleep_end: datetime | None = None
    last_rem_window_start: datetime | None = None
    last_rem_window_end: datetime | None = None
    last_rem_description: str = "No REM window detected"
    rem_detections: int = 0
    settings: DetectionSettings = Field(default_factory=DetectionSettings)
    model: PredictionModel = Field(default_factory=PredictionModel)
