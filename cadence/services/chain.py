"""
Job Chain Coordinator
Gates the fixed chain clone -> train -> convert on parent readiness.

Checks read current state from the job store. Two concurrent requests can
both pass; the cost is one wasted provider job, not corrupt state.
"""

import logging

from cadence.core.errors import PreconditionFailed
from cadence.models.job import CloneJob, Job, JobKind, JobStatus, TrainingJob
from cadence.services.job_store import JobStore

logger = logging.getLogger(__name__)


class JobChainCoordinator:
    def __init__(self, store: JobStore):
        self.store = store

    def check_training_allowed(self, owner_id: str, clone_id: str) -> CloneJob:
        clone = self.store.get(clone_id, owner_id)
        if clone is None or clone.kind != JobKind.CLONE:
            raise PreconditionFailed("Voice clone not found", details={"constraint": "clone_exists"})
        if clone.status != JobStatus.COMPLETED:
            raise PreconditionFailed(
                f"Voice clone must be ready before training (status: {clone.status})",
                details={"constraint": "clone_ready"},
            )
        if not clone.source_audio_url:
            raise PreconditionFailed(
                "Voice clone has no source audio to train from",
                details={"constraint": "clone_source_audio"},
            )
        if self.store.find_active_children(clone_id, JobKind.TRAINING):
            raise PreconditionFailed("RVC training is already in progress", details={"constraint": "already_training"})
        if any(job.result_location for job in self.store.find_completed_children(clone_id, JobKind.TRAINING)):
            raise PreconditionFailed("RVC model is already trained", details={"constraint": "already_trained"})
        return clone

    def check_conversion_allowed(self, owner_id: str, trained_model_id: str) -> TrainingJob:
        training = self.store.get(trained_model_id, owner_id)
        if training is None or training.kind != JobKind.TRAINING:
            raise PreconditionFailed("Trained voice model not found", details={"constraint": "model_exists"})
        if training.status != JobStatus.COMPLETED:
            raise PreconditionFailed(
                f"Voice model training must be completed before conversion (status: {training.status})",
                details={"constraint": "model_ready"},
            )
        if not training.result_location:
            raise PreconditionFailed("Trained voice model has no model file", details={"constraint": "model_location"})
        return training

    def check_source_media(self, owner_id: str, source_media_id: str) -> Job:
        source = self.store.get(source_media_id, owner_id)
        if source is None:
            raise PreconditionFailed("Source track not found", details={"constraint": "source_exists"})
        if source.status != JobStatus.COMPLETED or not source.result_location:
            raise PreconditionFailed("Source track has no audio yet", details={"constraint": "source_ready"})
        return source

    def check_clone_idempotency(self, owner_id: str, idempotency_key: str) -> None:
        if not idempotency_key:
            return
        existing = self.store.find_active_by_idempotency_key(owner_id, idempotency_key, kind=JobKind.CLONE)
        if existing is not None:
            raise PreconditionFailed(
                "Voice clone already in progress",
                details={"constraint": "clone_in_progress", "job_id": existing.id},
            )


__all__ = ["JobChainCoordinator"]
