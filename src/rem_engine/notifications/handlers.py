"""Result subscribers — fan-out of evaluation results to the cue actuator and UI.

Architecture
~~~~~~~~~~~~
* **ResultSubscriber** — abstract base for anything that consumes results.
* **LogSubscriber / CallbackSubscriber** — concrete subscribers.
* **ResultDispatcher** — ordered fan-out with error-isolation and results.

Adding a new subscriber
~~~~~~~~~~~~~~~~~~~~~~~
1. Subclass ``ResultSubscriber``.
2. Implement ``async on_result(result) -> bool``.
3. Optionally set ``name`` for debug output.
4. Register via ``engine.subscribe(...)`` or ``dispatcher.add_subscriber(...)``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

from rem_engine.models import REMEvaluationResult

logger = structlog.get_logger(__name__)


# ── Dispatch result ───────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome summary for a single ``dispatch()`` call."""

    is_rem: bool
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return len(self.failed) == 0


# ── Abstract subscriber ───────────────────────────────────────


class ResultSubscriber(ABC):
    """Contract for consumers of :class:`REMEvaluationResult`.

    Subclasses must implement :meth:`on_result`.  They may override
    :meth:`should_handle` to filter results (e.g. only REM changes).
    """

    name: str = "base"

    @abstractmethod
    async def on_result(self, result: REMEvaluationResult) -> bool:
        """Consume a result.  Return ``True`` on success."""

    def should_handle(self, result: REMEvaluationResult) -> bool:  # noqa: ARG002
        """Return ``False`` to skip this result (default: handle all)."""
        return True


# ── Concrete subscribers ──────────────────────────────────────


class LogSubscriber(ResultSubscriber):
    """Write results to the structured log (always enabled)."""

    name = "log"

    async def on_result(self, result: REMEvaluationResult) -> bool:
        logger.info(
            "result.log",
            is_rem=result.is_rem,
            description=result.description,
            window_start=result.window_start.isoformat() if result.window_start else None,
            window_end=result.window_end.isoformat() if result.window_end else None,
        )
        return True


class CallbackSubscriber(ResultSubscriber):
    """Adapt a plain async callable (cue actuator, UI binding) to a subscriber.

    With ``changes_only`` the callable only sees results whose ``is_rem``
    differs from the previous one it received.
    """

    def __init__(
        self,
        fn: Callable[[REMEvaluationResult], Awaitable[None]],
        *,
        name: str | None = None,
        changes_only: bool = False,
    ) -> None:
        self._fn = fn
        self.name = name or getattr(fn, "__qualname__", "callback")
        self._changes_only = changes_only
        self._last_is_rem: bool | None = None

    def should_handle(self, result: REMEvaluationResult) -> bool:
        if not self._changes_only:
            return True
        changed = result.is_rem != self._last_is_rem
        self._last_is_rem = result.is_rem
        return changed

    async def on_result(self, result: REMEvaluationResult) -> bool:
        await self._fn(result)
        return True


# ── Dispatcher ────────────────────────────────────────────────


class ResultDispatcher:
    """Fan-out results to registered subscribers with error isolation.

    Each subscriber is invoked independently — a failure in one never
    blocks delivery to the others, and never reaches the engine.
    """

    def __init__(self, *, subscribers: list[ResultSubscriber] | None = None) -> None:
        self._subscribers: list[ResultSubscriber] = (
            subscribers if subscribers is not None else [LogSubscriber()]
        )

    # ── Subscriber management ─────────────────────────────────

    def add_subscriber(self, subscriber: ResultSubscriber) -> None:
        self._subscribers.append(subscriber)

    def remove_subscriber(self, name: str) -> bool:
        """Remove the first subscriber matching *name*. Return ``True`` if found."""
        for i, s in enumerate(self._subscribers):
            if s.name == name:
                self._subscribers.pop(i)
                return True
        return False

    @property
    def subscriber_names(self) -> list[str]:
        return [s.name for s in self._subscribers]

    # ── Dispatch ──────────────────────────────────────────────

    async def dispatch(self, result: REMEvaluationResult) -> DispatchResult:
        """Send *result* to every subscriber, collecting per-subscriber outcomes."""
        sent: list[str] = []
        failed: list[str] = []

        for subscriber in self._subscribers:
            if not subscriber.should_handle(result):
                continue
            try:
                ok = await subscriber.on_result(result)
                (sent if ok else failed).append(subscriber.name)
            except Exception:
                logger.exception("result.subscriber_error", subscriber=subscriber.name)
                failed.append(subscriber.name)

        outcome = DispatchResult(is_rem=result.is_rem, sent=sent, failed=failed)
        if outcome.failed:
            logger.warning("result.partial_failure", failed=outcome.failed)
        return outcome
