"""
Jobs API Routes
Handles job submission, status queries, cancellation and deletion.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from redis.exceptions import RedisError

from cadence.api.deps import get_job_service, get_owner_id, get_reconciler
from cadence.schemas.job import (
    JobHandle,
    JobListResponse,
    JobSnapshot,
    SubmitJobRequest,
    SweepResponse,
)
from cadence.services.jobs import JobService
from cadence.workers.reconciler import Reconciler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=JobHandle, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    request: SubmitJobRequest,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """
    Submit a generation or clone job.
    Synchronous providers return an already terminal handle.
    """
    return await service.submit_job(
        owner_id,
        request.kind,
        request.input,
        provider_kind=request.provider_kind,
        title=request.title,
        idempotency_key=request.idempotency_key,
    )


@router.get("", response_model=JobListResponse)
async def list_jobs(
    kind: Optional[str] = None,
    job_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """List the caller's jobs, newest first."""
    return JobListResponse(
        jobs=service.list_jobs(owner_id, kind, job_status, limit, offset),
        total=service.count_jobs(owner_id, kind, job_status),
        limit=limit,
        offset=offset,
    )


@router.post("/reconcile", response_model=SweepResponse, status_code=status.HTTP_202_ACCEPTED)
async def reconcile_jobs(
    owner_id: str = Depends(get_owner_id),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """
    Refresh the caller's active jobs.
    Queues a sweep on the reconcile queue, or runs it inline when Redis is down.
    """
    from cadence.workers.queue import get_queue_manager

    try:
        rq_job = get_queue_manager().enqueue_sweep(owner_id)
        return SweepResponse(mode="queued", rq_job_id=rq_job.id)
    except RedisError as e:
        logger.warning(f"[API] Sweep queue unavailable ({e}), reconciling inline")

    report = await reconciler.sweep(owner_id=owner_id, force=True)
    return SweepResponse(mode="inline", report=report.to_dict())


@router.get("/reconcile")
async def get_reconcile_status(owner_id: str = Depends(get_owner_id)):
    """State of the caller's latest queued sweep."""
    from cadence.workers.queue import get_queue_manager

    try:
        return get_queue_manager().get_sweep_status(owner_id)
    except RedisError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sweep queue unavailable: {e}"
        )


@router.get("/{job_id}", response_model=JobSnapshot)
async def get_job_status(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """Get job status and result."""
    return service.get_job_status(owner_id, job_id)


@router.post("/{job_id}/cancel", response_model=JobSnapshot)
async def cancel_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    return await service.cancel_job(owner_id, job_id)


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """Delete a job and its stored artefacts (clones take their trained models with them)."""
    await service.delete_job(owner_id, job_id)


@router.post("/{job_id}/persist", response_model=JobSnapshot)
async def persist_result(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """Retry copying a completed job's result to durable storage."""
    return await service.persist_result(owner_id, job_id)
