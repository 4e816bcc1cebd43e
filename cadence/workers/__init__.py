# Workers package - reconciliation loop and RQ sweep tasks

from cadence.workers.queue import (
    QueueManager,
    get_queue_manager,
    enqueue_sweep,
    get_sweep_status,
    sweep_job_id,
)
from cadence.workers.reconciler import (
    Outcome,
    Reconciler,
    SweepReport,
)
from cadence.workers.tasks import run_reconciliation_sweep_task

__all__ = [
    # Queue
    "QueueManager",
    "get_queue_manager",
    "enqueue_sweep",
    "get_sweep_status",
    "sweep_job_id",
    # Reconciler
    "Outcome",
    "Reconciler",
    "SweepReport",
    # Tasks
    "run_reconciliation_sweep_task",
]
