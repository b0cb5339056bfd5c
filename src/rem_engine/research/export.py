"""History export utilities for reviewing nights outside the engine."""

from __future__ import annotations

import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Sequence

import structlog

from rem_engine.models import HistoryEntry
from rem_engine.storage.repository import HistoryRepository

logger = structlog.get_logger(__name__)

_HEADER = ["timestamp", "kind", "note"]


def write_history_csv(entries: Sequence[HistoryEntry], output_path: str | Path) -> Path:
    """Write history entries to a CSV file.  Returns the output path."""
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with output.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(_HEADER)
        for e in entries:
            writer.writerow([e.timestamp.isoformat(), e.kind.value, e.note])

    logger.info("export.csv_written", path=str(output), rows=len(entries))
    return output


def write_history_json(entries: Sequence[HistoryEntry], output_path: str | Path) -> Path:
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with output.open("w", encoding="utf-8") as f:
        json.dump([e.model_dump(mode="json") for e in entries], f, indent=2)

    logger.info("export.json_written", path=str(output), rows=len(entries))
    return output


async def export_history_csv(
    start: datetime,
    end: datetime,
    output_path: str | Path,
    *,
    repo: HistoryRepository | None = None,
) -> Path:
    """Export stored history entries in ``[start, end]`` to CSV."""
    repo = repo or HistoryRepository()
    entries = await repo.get_range(start, end)
    return write_history_csv(entries, output_path)
