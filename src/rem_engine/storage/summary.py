"""Last-session summary persistence (a single JSON document on disk)."""

from __future__ import annotations

from pathlib import Path

import structlog
from pydantic import ValidationError

from rem_engine.models import SessionSummary

logger = structlog.get_logger(__name__)


class SessionSummaryStore:
    """Save and load the most recent :class:`SessionSummary`."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self.last_summary: SessionSummary | None = None

    @property
    def path(self) -> Path:
        return self._path

    def save(self, summary: SessionSummary) -> Path:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
        self.last_summary = summary
        logger.info("summary.saved", path=str(self._path))
        return self._path

    def load(self) -> SessionSummary | None:
        """Return the stored summary, or ``None`` if missing or unreadable."""
        if not self._path.exists():
            return None
        try:
            summary = SessionSummary.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("summary.load_failed", path=str(self._path), error=str(exc))
            return None
        self.last_summary = summary
        return summary
