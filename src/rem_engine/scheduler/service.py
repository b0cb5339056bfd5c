"""Scheduler service — the engine's injected tick source.

Architecture
~~~~~~~~~~~~
``EngineScheduler`` runs two background loops on the current event loop:

1. **Tick loop** — every ``tick_interval_seconds`` it re-runs the
   engine's evaluation, so a decision is retried even when no new sample
   arrives (e.g. a predicted window opening or passing).
2. **Calibration loop** — immediately and then every
   ``calibration_interval_seconds`` it asks the engine to refresh its
   prediction model.

A failing callback is logged and the loop keeps running.  ``stop()`` is
synchronous: it cancels both loops before returning.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

import structlog

from rem_engine.config import Settings

logger = structlog.get_logger(__name__)


class EngineScheduler:
    """Periodic evaluation and calibration driver.

    Integration::

        scheduler = EngineScheduler()
        engine = REMEngine(scheduler=scheduler)
        engine.start()      # starts both loops
        ...
        engine.stop()       # cancels both loops
    """

    def __init__(
        self,
        tick_interval_seconds: float = 30.0,
        calibration_interval_seconds: float = 6 * 3600.0,
    ) -> None:
        self._tick_interval = tick_interval_seconds
        self._calibration_interval = calibration_interval_seconds
        self._running = False
        self._tasks: list[asyncio.Task] = []

        self._stats = {
            "last_tick": None,
            "total_ticks": 0,
            "total_calibrations": 0,
            "errors": 0,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineScheduler:
        return cls(
            tick_interval_seconds=settings.tick_interval_seconds,
            calibration_interval_seconds=settings.calibration_interval_hours * 3600,
        )

    # ── Lifecycle ─────────────────────────────────────────────

    def start(
        self,
        on_tick: Callable[[], Awaitable[Any]],
        on_calibrate: Callable[[], Any],
    ) -> None:
        """Start both loops.  Raises ``RuntimeError`` without a running event loop."""
        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._running = True
        self._tasks = [
            loop.create_task(self._tick_loop(on_tick)),
            loop.create_task(self._calibration_loop(on_calibrate)),
        ]
        logger.info(
            "scheduler.started",
            tick_interval_seconds=self._tick_interval,
            calibration_interval_seconds=self._calibration_interval,
        )

    def stop(self) -> None:
        """Cancel both loops (idempotent, synchronous)."""
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        logger.info("scheduler.stopped")

    @property
    def stats(self) -> dict[str, Any]:
        return dict(self._stats)

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Loops ─────────────────────────────────────────────────

    async def _tick_loop(self, on_tick: Callable[[], Awaitable[Any]]) -> None:
        while self._running:
            await asyncio.sleep(self._tick_interval)
            try:
                await on_tick()
            except Exception:
                self._stats["errors"] += 1
                logger.exception("scheduler.tick_error")
            self._stats["total_ticks"] += 1
            self._stats["last_tick"] = datetime.now(UTC).isoformat()

    async def _calibration_loop(self, on_calibrate: Callable[[], Any]) -> None:
        while self._running:
            try:
                on_calibrate()
            except Exception:
                self._stats["errors"] += 1
                logger.exception("scheduler.calibration_error")
            self._stats["total_calibrations"] += 1
            await asyncio.sleep(self._calibration_interval)
