"""
RQ Task Definitions
Task functions executed by the reconcile workers.
"""

import logging
import asyncio
from typing import Any, Dict, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Helper to run async code in sync context (for RQ)."""
    return asyncio.run(coro)


def run_reconciliation_sweep_task(owner_id: Optional[str] = None) -> Dict[str, Any]:
    """
    RQ task for one forced reconciliation sweep.

    Every active job in scope is polled once, ignoring the interval tiers
    the long-running loop applies.

    Args:
        owner_id: Limit the sweep to one owner, or None for all owners

    Returns:
        Dict with the sweep report
    """
    from cadence.workers.reconciler import Reconciler

    scope = owner_id or "all owners"
    logger.info(f"[Task] Starting reconciliation sweep for {scope}")
    started = datetime.utcnow()

    report = _run_async(Reconciler().sweep(owner_id=owner_id, force=True))

    elapsed = (datetime.utcnow() - started).total_seconds()
    logger.info(f"[Task] Sweep for {scope} finished in {elapsed:.1f}s: {report.to_dict()}")
    return {
        "owner_id": owner_id,
        "report": report.to_dict(),
        "duration_seconds": round(elapsed, 2),
        "completed_at": datetime.utcnow().isoformat(),
    }


__all__ = ["run_reconciliation_sweep_task"]
