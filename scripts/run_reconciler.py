#!/usr/bin/env python3
"""
Reconciliation Loop Script
Runs the periodic sweep in-process until interrupted.

Usage:
    python scripts/run_reconciler.py             # Sweep every RECONCILE_TICK_SECONDS
    python scripts/run_reconciler.py --once      # One forced sweep, print the report
    python scripts/run_reconciler.py --owner u1  # Only one owner's jobs
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cadence.core.config import settings
from cadence.core.database import init_db
from cadence.core.logging import configure_logging
from cadence.workers.reconciler import Reconciler


logger = logging.getLogger("cadence.reconciler")


async def run(once: bool, owner_id: str = None) -> int:
    reconciler = Reconciler()

    if once:
        report = await reconciler.sweep(owner_id=owner_id, force=True)
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.errors == 0 else 1

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            # Windows event loops; fall back to KeyboardInterrupt
            pass

    await reconciler.run_forever(stop_event)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run the Cadence reconciliation loop")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single forced sweep and exit"
    )
    parser.add_argument(
        "--owner",
        default=None,
        help="Limit a --once sweep to one owner"
    )
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)
    init_db()

    mode = "mock" if settings.MOCK_PROVIDERS else "live"
    logger.info(f"Reconciler starting ({mode} providers, tick={settings.RECONCILE_TICK_SECONDS}s)")

    try:
        sys.exit(asyncio.run(run(args.once, args.owner)))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
