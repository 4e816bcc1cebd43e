#!/usr/bin/env python3
"""
Sweep Worker Launcher
Starts RQ workers that execute queued reconciliation sweeps.

Usage:
    python scripts/run_workers.py                 # one worker on all queues
    python scripts/run_workers.py --workers 2     # two worker processes
    python scripts/run_workers.py --kick --burst  # queue a global sweep, drain, exit
    python scripts/run_workers.py --stats         # print queue statistics
"""

import argparse
import json
import logging
import os
import signal
import sys
from multiprocessing import Process
from typing import List, Optional

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rq import Queue, Worker

from cadence.core.config import settings
from cadence.core.logging import configure_logging
from cadence.core.redis import Queues, get_redis, redis_health_check
from cadence.workers.queue import get_queue_manager

logger = logging.getLogger("cadence.workers")


def work(queue_names: List[str], name: Optional[str], burst: bool) -> None:
    """Run one RQ worker in the current process until stopped (or drained, in burst mode)."""
    connection = get_redis()
    worker = Worker(
        [Queue(queue_name, connection=connection) for queue_name in queue_names],
        connection=connection,
        name=name,
        job_monitoring_interval=5,
    )
    logger.info(f"[Workers] {name} listening on {', '.join(queue_names)}")
    worker.work(burst=burst, with_scheduler=True)


def child(queue_names: List[str], index: int, burst: bool) -> None:
    configure_logging(settings.LOG_LEVEL)
    name = f"sweeper-{os.getpid()}-{index}"
    # SystemExit lets RQ finish its current sweep bookkeeping
    signal.signal(signal.SIGTERM, lambda signum, frame: sys.exit(0))
    work(queue_names, name, burst)


def spawn(queue_names: List[str], count: int, burst: bool) -> None:
    processes = [
        Process(target=child, args=(queue_names, i + 1, burst), name=f"sweeper-{i + 1}")
        for i in range(count)
    ]

    def stop(signum, frame):
        logger.info("[Workers] Stopping worker processes")
        for process in processes:
            if process.is_alive():
                process.terminate()
        sys.exit(0)

    signal.signal(signal.SIGTERM, stop)
    signal.signal(signal.SIGINT, stop)

    for process in processes:
        process.start()
        logger.info(f"[Workers] Started {process.name} (PID: {process.pid})")
    for process in processes:
        process.join()


def main():
    parser = argparse.ArgumentParser(description="Run Cadence sweep workers")
    parser.add_argument("--queues", "-q", nargs="+", default=list(Queues.ALL), help="Queues to listen on")
    parser.add_argument("--workers", "-w", type=int, default=1, help="Worker processes (default: 1)")
    parser.add_argument("--burst", "-b", action="store_true", help="Exit once the queues are empty")
    parser.add_argument("--kick", action="store_true", help="Queue a sweep of every owner's jobs before starting")
    parser.add_argument("--stats", action="store_true", help="Print queue statistics and exit")
    parser.add_argument("--check", action="store_true", help="Check the Redis connection and exit")
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)

    health = redis_health_check()
    if args.check:
        print(json.dumps(health, indent=2))
        sys.exit(0 if health["connected"] else 1)
    if not health["connected"]:
        logger.error(f"[Workers] Redis unreachable at {health['url']}: {health['error']}")
        sys.exit(1)

    manager = get_queue_manager()
    if args.stats:
        print(json.dumps(manager.get_queue_stats(), indent=2))
        sys.exit(0)
    if args.kick:
        logger.info(f"[Workers] Queued sweep {manager.enqueue_sweep().id}")

    logger.info(f"[Workers] Redis {health['redis_version']}, {health['pending_sweeps']} sweep(s) pending")
    if args.workers <= 1:
        work(args.queues, f"sweeper-{os.getpid()}", args.burst)
    else:
        spawn(args.queues, args.workers, args.burst)


if __name__ == "__main__":
    main()
