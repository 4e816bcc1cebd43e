"""
Job Store
Single source of truth for job records.

Every write that changes status is a conditional UPDATE guarded by
``status IN ('pending', 'processing')``, so a terminal job can never be
written again: a late poll is a silent no-op, not an error. Rows are
independent; there is no global lock.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from cadence.core.database import SessionLocal
from cadence.models.job import Job, JobStatus

logger = logging.getLogger(__name__)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


class JobStore:
    """Job persistence. Each method runs in its own short session."""

    def __init__(self, session_factory: Callable[[], Session] = None):
        self.session_factory = session_factory or SessionLocal

    # --- Reads ---

    def get(self, job_id: str, owner_id: str) -> Optional[Job]:
        """Owner-scoped lookup; another owner's job is indistinguishable from a missing one."""
        with self.session_factory() as db:
            return db.query(Job).filter(Job.id == job_id, Job.owner_id == owner_id).first()

    def _owner_query(self, db: Session, owner_id: str, kind: Optional[str], status: Optional[str]):
        query = db.query(Job).filter(Job.owner_id == owner_id)
        if kind:
            query = query.filter(Job.kind == kind)
        if status:
            query = query.filter(Job.status == status)
        return query

    def list_jobs(
        self,
        owner_id: str,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Job]:
        with self.session_factory() as db:
            query = self._owner_query(db, owner_id, kind, status)
            return query.order_by(Job.created_at.desc()).offset(offset).limit(limit).all()

    def count_jobs(self, owner_id: str, kind: Optional[str] = None, status: Optional[str] = None) -> int:
        with self.session_factory() as db:
            return self._owner_query(db, owner_id, kind, status).count()

    def list_active(self, owner_id: Optional[str] = None, kind: Optional[str] = None) -> List[Job]:
        """Pending and processing jobs, oldest first."""
        with self.session_factory() as db:
            query = db.query(Job).filter(Job.status.in_(JobStatus.ACTIVE))
            if owner_id:
                query = query.filter(Job.owner_id == owner_id)
            if kind:
                query = query.filter(Job.kind == kind)
            return query.order_by(Job.created_at.asc()).all()

    def find_active_children(self, parent_id: str, kind: str) -> List[Job]:
        with self.session_factory() as db:
            return db.query(Job).filter(
                Job.parent_id == parent_id,
                Job.kind == kind,
                Job.status.in_(JobStatus.ACTIVE),
            ).all()

    def find_completed_children(self, parent_id: str, kind: str) -> List[Job]:
        with self.session_factory() as db:
            return db.query(Job).filter(
                Job.parent_id == parent_id,
                Job.kind == kind,
                Job.status == JobStatus.COMPLETED,
            ).all()

    def find_children(self, parent_id: str) -> List[Job]:
        with self.session_factory() as db:
            return db.query(Job).filter(Job.parent_id == parent_id).all()

    def find_active_by_idempotency_key(self, owner_id: str, idempotency_key: str, kind: Optional[str] = None) -> Optional[Job]:
        with self.session_factory() as db:
            query = db.query(Job).filter(
                Job.owner_id == owner_id,
                Job.idempotency_key == idempotency_key,
                Job.status.in_(JobStatus.ACTIVE),
            )
            if kind:
                query = query.filter(Job.kind == kind)
            return query.first()

    # --- Writes ---

    def create(self, job: Job) -> Job:
        if not job.id:
            job.id = new_job_id()
        with self.session_factory() as db:
            db.add(job)
            db.commit()
            db.refresh(job)
        logger.info(f"Created job: {job.id} ({job.kind}/{job.provider_kind}, status={job.status})")
        return job

    def update_terminal(
        self,
        job_id: str,
        status: str,
        result_location: Optional[str] = None,
        original_result_location: Optional[str] = None,
        result_location_is_durable: bool = False,
        error: Optional[str] = None,
        result_metadata: Optional[dict] = None,
        storage_keys: Optional[List[str]] = None,
    ) -> bool:
        """
        Move an active job to ``completed`` or ``failed``.

        Returns:
            True if this call made the transition, False if the job was
            already terminal (or does not exist).
        """
        if status not in JobStatus.TERMINAL:
            raise ValueError(f"Not a terminal status: {status}")
        if result_location_is_durable and status != JobStatus.COMPLETED:
            raise ValueError("Only completed jobs can have a durable result")

        now = datetime.utcnow()
        values = {
            Job.status: status,
            Job.result_location: result_location,
            Job.original_result_location: original_result_location,
            Job.result_location_is_durable: result_location_is_durable,
            Job.error: error,
            Job.completed_at: now,
            Job.updated_at: now,
        }
        if status == JobStatus.COMPLETED:
            values[Job.progress] = 100
        if result_metadata is not None:
            values[Job.result_metadata] = result_metadata
        if storage_keys is not None:
            values[Job.storage_keys] = storage_keys

        with self.session_factory() as db:
            updated = db.query(Job).filter(
                Job.id == job_id,
                Job.status.in_(JobStatus.ACTIVE),
            ).update(values, synchronize_session=False)
            db.commit()

        if updated:
            logger.info(f"Job {job_id} -> {status}" + (f": {error}" if error else ""))
        else:
            logger.debug(f"Ignored terminal write for {job_id}: already terminal")
        return bool(updated)

    def update_progress(self, job_id: str, progress: Optional[int]) -> bool:
        """
        Record progress and promote ``pending`` to ``processing``.

        Ignored once the job is terminal. Never touches ``error``.
        """
        values = {Job.status: JobStatus.PROCESSING, Job.updated_at: datetime.utcnow()}
        if progress is not None:
            values[Job.progress] = max(0, min(100, int(progress)))

        with self.session_factory() as db:
            updated = db.query(Job).filter(
                Job.id == job_id,
                Job.status.in_(JobStatus.ACTIVE),
            ).update(values, synchronize_session=False)
            db.commit()
        return bool(updated)

    def record_fetch_failure(self, job_id: str) -> int:
        """Count a failed result fetch on an active job; returns the running total."""
        with self.session_factory() as db:
            db.query(Job).filter(
                Job.id == job_id,
                Job.status.in_(JobStatus.ACTIVE),
            ).update(
                {Job.result_fetch_failures: Job.result_fetch_failures + 1, Job.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
            db.commit()
            job = db.query(Job).filter(Job.id == job_id).first()
            return job.result_fetch_failures if job else 0

    def mark_durable(self, job_id: str, url: str, storage_keys: List[str]) -> bool:
        """Point a completed job at its durable copy (retry of a failed first copy)."""
        with self.session_factory() as db:
            updated = db.query(Job).filter(
                Job.id == job_id,
                Job.status == JobStatus.COMPLETED,
            ).update(
                {
                    Job.result_location: url,
                    Job.result_location_is_durable: True,
                    Job.storage_keys: storage_keys,
                    Job.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            db.commit()
        return bool(updated)

    def delete(self, job_id: str, owner_id: str) -> bool:
        with self.session_factory() as db:
            job = db.query(Job).filter(Job.id == job_id, Job.owner_id == owner_id).first()
            if job is None:
                return False
            # Children keep their records; only the link goes away
            db.query(Job).filter(Job.parent_id == job_id).update(
                {Job.parent_id: None}, synchronize_session=False
            )
            db.delete(job)
            db.commit()
        logger.info(f"Deleted job: {job_id}")
        return True


__all__ = ["JobStore", "new_job_id"]
