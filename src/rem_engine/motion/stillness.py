"""Stillness tracking from wrist accelerometer user-acceleration."""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from rem_engine.models import StillnessState

logger = structlog.get_logger(__name__)

# Sum of absolute user-acceleration components (g) that counts as movement
MOVEMENT_THRESHOLD_G = 0.03

# A movement bout ends after this long without movement
BOUT_GAP = timedelta(seconds=60)


class StillnessTracker:
    """Derive :class:`StillnessState` from a stream of acceleration readings.

    Parameters
    ----------
    stillness_minutes : float
        Minutes without movement before the wearer counts as still.
    threshold : float
        Movement threshold on ``|x| + |y| + |z|``.
    """

    def __init__(
        self,
        stillness_minutes: float = 10.0,
        threshold: float = MOVEMENT_THRESHOLD_G,
    ) -> None:
        self.stillness_minutes = max(1.0, stillness_minutes)
        self.threshold = threshold
        self._last_movement: datetime | None = None
        self._bout_start: datetime | None = None
        self._state = StillnessState()

    def reset(self, now: datetime) -> None:
        """Start counting from *now*, as if the wearer just moved."""
        self._last_movement = now
        self._bout_start = None
        self._state = StillnessState()

    def update(self, x: float, y: float, z: float, at: datetime) -> StillnessState:
        if self._last_movement is None:
            self.reset(at)

        magnitude = abs(x) + abs(y) + abs(z)
        if magnitude > self.threshold:
            if self._bout_start is None or at - self._last_movement > BOUT_GAP:
                self._bout_start = at
            self._last_movement = at

        still_for = at - self._last_movement
        is_still = still_for >= timedelta(minutes=self.stillness_minutes)
        moving_for = timedelta(0)
        if self._bout_start is not None and still_for <= BOUT_GAP:
            moving_for = self._last_movement - self._bout_start

        state = StillnessState(
            is_still=is_still,
            still_minutes=still_for.total_seconds() / 60,
            moving_minutes=moving_for.total_seconds() / 60,
        )
        if state.is_still != self._state.is_still:
            logger.debug("stillness.changed", is_still=state.is_still, at=at.isoformat())
        self._state = state
        return state

    @property
    def state(self) -> StillnessState:
        return self._state

    @property
    def stillness_onset(self) -> datetime | None:
        """When the current still period began, if the wearer is still."""
        if not self._state.is_still:
            return None
        return self._last_movement
