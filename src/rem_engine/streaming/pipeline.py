"""Serial sample delivery into the engine.

Producers (platform queries, motion updates, recorded nights) publish
:class:`Delivery` envelopes; one consumer pass hands each sample to the
registered consumers before the next is taken off the queue, so the
engine never evaluates two samples concurrently.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Union

import structlog

from rem_engine.models import HeartRateSample, StageSample, StillnessState, SupportSample

logger = structlog.get_logger(__name__)

Sample = Union[StageSample, HeartRateSample, SupportSample, StillnessState]
Consumer = Callable[[Sample], Awaitable[object]]
Pacer = Callable[[datetime], Awaitable[None]]

STATS_INTERVAL_SECONDS = 60


@dataclass(frozen=True, slots=True)
class Delivery:
    """A sample plus the moment it reached the device, when known."""

    sample: Sample
    at: datetime | None = None


class SampleStream:
    """Queue of deliveries consumed one at a time.

    Run :meth:`start` as a background task for live input, or call
    :meth:`drain` to process everything already queued inline.  An
    optional *pacer* is awaited with each delivery's ``at`` before the
    consumers see it; replays use it to move a manual clock.
    """

    def __init__(self, maxsize: int = 10_000, *, pacer: Pacer | None = None) -> None:
        self._queue: asyncio.Queue[Delivery] = asyncio.Queue(maxsize=maxsize)
        self._consumers: list[Consumer] = []
        self._pacer = pacer
        self._running = False
        self._processed_total = 0
        self._failed_total = 0

    def add_consumer(self, fn: Consumer) -> None:
        self._consumers.append(fn)

    # ── Producer side ─────────────────────────────────────────

    async def publish(self, sample: Sample, at: datetime | None = None) -> None:
        await self._queue.put(Delivery(sample, at))

    async def publish_batch(self, deliveries: Iterable[Delivery | Sample]) -> int:
        """Queue samples (bare or wrapped in :class:`Delivery`); returns how many."""
        count = 0
        for item in deliveries:
            await self._queue.put(item if isinstance(item, Delivery) else Delivery(item))
            count += 1
        return count

    # ── Consumer side ─────────────────────────────────────────

    async def start(self) -> None:
        """Consume until :meth:`stop` is called."""
        self._running = True
        logger.info("sample_stream.started", consumers=len(self._consumers))
        last_stats = time.monotonic()

        while self._running:
            try:
                delivery = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            await self._deliver(delivery)

            if time.monotonic() - last_stats >= STATS_INTERVAL_SECONDS:
                logger.info(
                    "sample_stream.stats",
                    processed_total=self._processed_total,
                    failed_total=self._failed_total,
                    queue_pending=self._queue.qsize(),
                )
                last_stats = time.monotonic()

    async def drain(self) -> int:
        """Deliver every queued sample now; returns the number delivered."""
        delivered = 0
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())
            delivered += 1
        return delivered

    async def stop(self) -> None:
        self._running = False
        logger.info(
            "sample_stream.stopped",
            processed_total=self._processed_total,
            failed_total=self._failed_total,
        )

    async def join(self) -> None:
        """Wait until every published sample has been consumed."""
        await self._queue.join()

    async def _deliver(self, delivery: Delivery) -> None:
        try:
            if self._pacer is not None and delivery.at is not None:
                await self._pacer(delivery.at)
            for consumer in self._consumers:
                try:
                    await consumer(delivery.sample)
                except Exception as exc:
                    self._failed_total += 1
                    logger.error(
                        "sample_stream.consumer_error",
                        consumer=getattr(consumer, "__qualname__", repr(consumer)),
                        sample_type=type(delivery.sample).__name__,
                        error=str(exc),
                    )
            self._processed_total += 1
        finally:
            self._queue.task_done()

    # ── Introspection ─────────────────────────────────────────

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def processed_total(self) -> int:
        return self._processed_total

    @property
    def failed_total(self) -> int:
        return self._failed_total
