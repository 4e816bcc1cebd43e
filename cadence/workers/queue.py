"""
Queue Management Utilities
RQ queue wrapper for reconciliation sweeps.
"""

import logging
from typing import Any, Dict, Optional
from datetime import datetime

from rq import Queue, Retry
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus as RQJobStatus

from cadence.core.redis import get_redis, Queues
from cadence.core.config import settings

logger = logging.getLogger(__name__)

SWEEP_TIMEOUT = 300  # seconds


def sweep_job_id(owner_id: Optional[str] = None) -> str:
    """One queued sweep per owner (or one global); duplicates collapse onto it."""
    return f"sweep_{owner_id or 'all'}"


class QueueManager:
    """
    RQ queues the sweeps run on. Sweep ids are per scope, so a burst of
    refresh requests collapses onto one queued sweep.
    """

    def __init__(self, redis=None):
        self._queues: Dict[str, Queue] = {}
        self._redis = redis

    @property
    def redis(self):
        """Lazy Redis connection."""
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def get_queue(self, queue_name: str = Queues.RECONCILE) -> Queue:
        if queue_name not in self._queues:
            self._queues[queue_name] = Queue(
                name=queue_name,
                connection=self.redis,
                default_timeout=SWEEP_TIMEOUT,
            )
            logger.debug(f"Created queue: {queue_name}")
        return self._queues[queue_name]

    def enqueue_sweep(self, owner_id: Optional[str] = None) -> Job:
        """
        Enqueue a reconciliation sweep.

        If a sweep for the same scope is already queued or running, that job
        is returned instead of a new one.
        """
        from cadence.workers.tasks import run_reconciliation_sweep_task

        rq_job_id = sweep_job_id(owner_id)
        existing = self.get_job(rq_job_id)
        if existing is not None and existing.get_status() in (
            RQJobStatus.QUEUED, RQJobStatus.STARTED, RQJobStatus.DEFERRED, RQJobStatus.SCHEDULED
        ):
            logger.debug(f"Sweep already pending: {rq_job_id}")
            return existing

        job = self.get_queue(Queues.RECONCILE).enqueue(
            run_reconciliation_sweep_task,
            owner_id=owner_id,
            job_id=rq_job_id,
            job_timeout=SWEEP_TIMEOUT,
            result_ttl=60,
            retry=Retry(max=2, interval=[settings.RECONCILE_TICK_SECONDS, settings.RECONCILE_SLOW_INTERVAL]),
            meta={
                "type": "reconcile_sweep",
                "owner_id": owner_id,
                "created_at": datetime.utcnow().isoformat(),
            },
        )
        logger.info(f"Enqueued sweep: {rq_job_id}")
        return job

    def get_job(self, rq_job_id: str) -> Optional[Job]:
        try:
            return Job.fetch(rq_job_id, connection=self.redis)
        except NoSuchJobError:
            return None

    def get_sweep_status(self, owner_id: Optional[str] = None) -> Dict[str, Any]:
        """
        State of the latest sweep for a scope.

        Finished sweeps carry their report until ``result_ttl`` expires;
        failed ones carry the last line of the traceback.
        """
        rq_job_id = sweep_job_id(owner_id)
        job = self.get_job(rq_job_id)
        if job is None:
            return {"rq_job_id": rq_job_id, "status": "none"}

        rq_status = job.get_status()
        status = {
            "rq_job_id": rq_job_id,
            "status": rq_status.value if isinstance(rq_status, RQJobStatus) else str(rq_status),
            "enqueued_at": job.enqueued_at.isoformat() if job.enqueued_at else None,
            "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        }
        if rq_status == RQJobStatus.FINISHED and isinstance(job.result, dict):
            status["report"] = job.result.get("report")
        elif rq_status == RQJobStatus.FAILED and job.exc_info:
            status["error"] = job.exc_info.strip().splitlines()[-1]
        return status

    def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        stats = {}
        for name in Queues.ALL:
            queue = self.get_queue(name)
            stats[name] = {
                "queued": queue.count,
                "started": queue.started_job_registry.count,
                "finished": queue.finished_job_registry.count,
                "failed": queue.failed_job_registry.count,
                "scheduled": queue.scheduled_job_registry.count,
            }
        return stats


_queue_manager: Optional[QueueManager] = None


def get_queue_manager() -> QueueManager:
    global _queue_manager
    if _queue_manager is None:
        _queue_manager = QueueManager()
    return _queue_manager


def enqueue_sweep(owner_id: Optional[str] = None) -> Job:
    return get_queue_manager().enqueue_sweep(owner_id)


def get_sweep_status(owner_id: Optional[str] = None) -> Dict[str, Any]:
    return get_queue_manager().get_sweep_status(owner_id)


__all__ = [
    "QueueManager",
    "get_queue_manager",
    "enqueue_sweep",
    "get_sweep_status",
    "sweep_job_id",
]
