"""Command-line entry point for reconciliation passes.

    promosync-sync                  # one pass, all data
    promosync-sync --mode items     # inventories only
    promosync-sync --interval 30    # every 30 minutes until interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from loguru import logger

from promosync.core.config import settings
from promosync.core.exceptions import ConfigError, LocationEnumerationError
from promosync.core.logging import setup_logging
from promosync.schemas.sync import SyncMode
from promosync.services.orchestrator import SyncOrchestrator


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync POS inventory and promotions into the CMS.")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in SyncMode],
        default=SyncMode.ALL.value,
        help="Which sink collections to rewrite (default: all).",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--once", action="store_true", help="Run a single pass and exit.")
    group.add_argument(
        "--interval",
        type=float,
        default=settings.SYNC_INTERVAL_MINUTES,
        help="Minutes between passes; defaults to SYNC_INTERVAL_MINUTES.",
    )
    return parser.parse_args(argv)


async def _run(mode: SyncMode, interval: Optional[float]) -> int:
    orchestrator = await SyncOrchestrator.from_settings(settings, mode)
    try:
        await orchestrator.start()
        if interval:
            logger.bind(interval_minutes=interval).info("sync_scheduler_started")
            await orchestrator.run_forever(interval)
            return 0
        stats = await orchestrator.run_once()
        return 1 if stats.locations_failed else 0
    except (ConfigError, LocationEnumerationError) as exc:
        logger.bind(error=str(exc)).error("sync_aborted")
        return 2
    finally:
        await orchestrator.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(settings.LOG_LEVEL, settings.LOG_SERIALIZE)
    interval = None if args.once else args.interval
    try:
        return asyncio.run(_run(SyncMode(args.mode), interval))
    except KeyboardInterrupt:
        logger.info("sync_interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
