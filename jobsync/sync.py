"""Trigger entry point for timers: ``python -m jobsync.sync --mode hourly``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from jobsync.core.config import get_settings
from jobsync.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from jobsync.services.records import SYNC_TYPES
from jobsync.services.repository import get_repository
from jobsync.services.runner import get_sync_runner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one job sync invocation and print its summary as JSON.")
    parser.add_argument("--mode", choices=SYNC_TYPES, default="manual", help="Run type recorded in the ledger")
    parser.add_argument("--source", help="Sync a single source (manual mode only)")
    parser.add_argument(
        "--incremental",
        action="store_true",
        help="Only fetch recent postings (manual mode; hourly is always incremental)",
    )
    parser.add_argument("--stale-after-days", type=int, default=None)
    parser.add_argument("--expire-after-days", type=int, default=None)
    return parser


async def run_sync(args: argparse.Namespace) -> dict:
    settings = get_settings()
    telemetry_runtime = setup_telemetry(settings)
    try:
        summary = await get_sync_runner().run(
            args.mode,
            source=args.source,
            incremental=args.incremental or None,
            stale_after_days=args.stale_after_days,
            expire_after_days=args.expire_after_days,
        )
        return summary.to_dict()
    finally:
        await get_repository().close()
        shutdown_telemetry(telemetry_runtime)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.source and args.mode != "manual":
        parser.error("--source requires --mode manual")

    configure_logging()
    summary = asyncio.run(run_sync(args))
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0 if summary["status"] == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
