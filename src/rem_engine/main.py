"""Command-line entrypoint — database setup, calibration and offline replays."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timedelta

from rem_engine.config import get_settings
from rem_engine.formatting import format_interval, format_minutes
from rem_engine.logger import setup_logging
from rem_engine.models import DetectionSettings, DetectionStrictness


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


async def _import_history(path: str) -> int:
    from rem_engine.models import StageSample
    from rem_engine.research.replay import load_recording, recording_to_samples
    from rem_engine.storage.database import init_db
    from rem_engine.storage.repository import StageSampleRepository

    await init_db()
    stages = [s for _, s in recording_to_samples(load_recording(path)) if isinstance(s, StageSample)]
    return await StageSampleRepository().save_batch(stages)


async def _prune_history(days: int) -> tuple[int, int]:
    from rem_engine.storage.database import init_db
    from rem_engine.storage.repository import StageSampleRepository

    await init_db()
    repo = StageSampleRepository()
    deleted = await repo.delete_before(datetime.now() - timedelta(days=days))
    return deleted, await repo.count()


async def _calibrate() -> None:
    from rem_engine.inference.predictor import build_prediction_model
    from rem_engine.storage.database import init_db
    from rem_engine.storage.repository import StageSampleRepository

    settings = get_settings()
    await init_db()
    now = datetime.now()
    history = await StageSampleRepository().fetch_stage_samples(
        now - timedelta(days=settings.calibration_history_days), now
    )
    model = build_prediction_model(
        history,
        session_gap=timedelta(minutes=settings.session_merge_gap_minutes),
        rem_gap=timedelta(minutes=settings.rem_merge_gap_minutes),
        refreshed_at=now,
    )
    print(f"Samples:   {len(history)}")
    print(f"Nights:    {model.source_nights} ({model.source_windows} REM windows)")
    print(f"Latency:   {format_minutes(model.rem_latency)}")
    print(f"Cycle:     {format_minutes(model.rem_cycle)}")
    print(f"Duration:  {format_minutes(model.rem_duration)}")


async def _replay(path: str, strictness: str, require_stillness: bool, tick_minutes: float) -> None:
    from rem_engine.research.replay import replay_night

    settings = DetectionSettings(
        strictness=DetectionStrictness(strictness),
        require_stillness=require_stillness,
    )
    tick_every = timedelta(minutes=tick_minutes) if tick_minutes > 0 else None
    report = await replay_night(path, settings, tick_every=tick_every)

    last_description = None
    for result in report.results:
        if result.description != last_description:
            print(f"{result.evaluated_at:%H:%M}  {result.description}")
            last_description = result.description
    print()
    for entry in report.entries:
        print(f"{entry.timestamp:%H:%M}  {entry.note}")
    if report.summary is not None and report.summary.last_sleep_start is not None:
        print()
        print(
            "Sleep window: "
            + format_interval(report.summary.last_sleep_start, report.summary.last_sleep_end)
        )


async def _export(start: datetime, end: datetime, output: str) -> None:
    from rem_engine.research.export import export_history_csv

    path = await export_history_csv(start, end, output)
    print(f"History written to {path}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="rem-engine",
        description="Sleep-phase (REM) inference engine for wearable signals.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── init-db ───────────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")

    # ── import-history ────────────────────────────────────────
    import_parser = sub.add_parser(
        "import-history", help="Store the stage samples of a recording for calibration."
    )
    import_parser.add_argument("csv")

    # ── prune-history ─────────────────────────────────────────
    prune_parser = sub.add_parser(
        "prune-history", help="Delete stored stage samples older than the calibration window."
    )
    prune_parser.add_argument("--days", type=int, default=None)

    # ── calibrate ─────────────────────────────────────────────
    sub.add_parser("calibrate", help="Rebuild and print the REM timing model.")

    # ── replay ────────────────────────────────────────────────
    replay_parser = sub.add_parser("replay", help="Replay a recorded night.")
    replay_parser.add_argument("csv")
    replay_parser.add_argument(
        "--strictness",
        choices=[s.value for s in DetectionStrictness],
        default=DetectionStrictness.BALANCED.value,
    )
    replay_parser.add_argument("--no-stillness", action="store_true")
    replay_parser.add_argument("--tick-minutes", type=float, default=1.0)

    # ── export-history ────────────────────────────────────────
    export_parser = sub.add_parser("export-history", help="Export stored REM events to CSV.")
    export_parser.add_argument("--start", type=_parse_time, required=True)
    export_parser.add_argument("--end", type=_parse_time, required=True)
    export_parser.add_argument("--output", default="data/exports/history.csv")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "init-db":
        from rem_engine.storage.database import init_db

        asyncio.run(init_db())
        print("Database tables created.")
    elif args.command == "import-history":
        count = asyncio.run(_import_history(args.csv))
        print(f"Stored {count} stage samples.")
    elif args.command == "prune-history":
        days = args.days if args.days is not None else settings.calibration_history_days
        deleted, remaining = asyncio.run(_prune_history(days))
        print(f"Deleted {deleted} stage samples older than {days} days; {remaining} remain.")
    elif args.command == "calibrate":
        asyncio.run(_calibrate())
    elif args.command == "replay":
        asyncio.run(
            _replay(args.csv, args.strictness, not args.no_stillness, args.tick_minutes)
        )
    elif args.command == "export-history":
        asyncio.run(_export(args.start, args.end, args.output))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
