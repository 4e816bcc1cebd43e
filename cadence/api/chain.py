"""
Voice Chain API Routes
Clone -> RVC training -> conversion, plus raw recording uploads.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status

from cadence.api.deps import get_job_service, get_owner_id
from cadence.schemas.job import JobHandle, StartConversionRequest, TrainingOptions, UploadResponse
from cadence.services.jobs import JobService

router = APIRouter()


@router.post("/clones/{clone_id}/train", response_model=JobHandle, status_code=status.HTTP_202_ACCEPTED)
async def start_training(
    clone_id: str,
    options: Optional[TrainingOptions] = None,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """
    Train an RVC model from a completed voice clone's source audio.
    Only one training per clone may be active or completed.
    """
    return await service.start_training(
        owner_id,
        clone_id,
        options.model_dump(exclude_none=True) if options else None,
    )


@router.post("/conversions", response_model=JobHandle, status_code=status.HTTP_202_ACCEPTED)
async def start_conversion(
    request: StartConversionRequest,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """Convert a completed track with a trained RVC model."""
    tuning = request.model_dump(
        exclude_none=True,
        exclude={"trained_model_id", "source_media_id", "pitch_shift", "title"},
    )
    return await service.start_conversion(
        owner_id,
        request.trained_model_id,
        request.source_media_id,
        pitch_shift=request.pitch_shift,
        title=request.title,
        **tuning,
    )


@router.post("/media", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_media(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
):
    """Host a voice recording for cloning (durable storage, else fal storage)."""
    data = await file.read()
    hosted = await service.upload_source_media(owner_id, data, file.filename or "", file.content_type or "")
    return UploadResponse(**hosted)
