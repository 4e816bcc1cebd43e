"""
Job Schemas
Pydantic models for job API requests and responses.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class JobSnapshot(BaseModel):
    """Caller-visible view of a job record."""
    id: str
    owner_id: str
    kind: str
    provider_kind: str
    external_ref: Optional[str] = None
    status: str
    progress: int = 0
    result_location: Optional[str] = None
    original_result_location: Optional[str] = None
    result_location_is_durable: bool = False
    error: Optional[str] = None
    parent_id: Optional[str] = None
    chain_role: Optional[str] = None
    title: Optional[str] = None
    input_params: Dict[str, Any] = {}
    result_metadata: Dict[str, Any] = {}
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobHandle(BaseModel):
    """Returned by submission operations."""
    job_id: str
    kind: str
    provider_kind: str
    status: str
    external_ref: Optional[str] = None
    result_location: Optional[str] = None
    error: Optional[str] = None


class JobListResponse(BaseModel):
    jobs: List[JobSnapshot]
    total: int
    limit: int
    offset: int


class SubmitJobRequest(BaseModel):
    """Generation or clone submission. ``input`` is provider specific."""
    kind: str = Field(..., description="generation | clone")
    provider_kind: Optional[str] = Field(None, description="e.g. elevenlabs, minimax-v2, minimax-v2.5, minimax-clone, qwen-clone")
    input: Dict[str, Any] = {}
    title: Optional[str] = None
    idempotency_key: Optional[str] = None


class TrainingOptions(BaseModel):
    sample_rate: Optional[str] = None
    version: Optional[str] = None
    f0method: Optional[str] = None
    epoch: Optional[int] = None
    batch_size: Optional[int] = None


class StartConversionRequest(BaseModel):
    trained_model_id: str
    source_media_id: str
    pitch_shift: Optional[int] = Field(None, ge=-12, le=12)
    index_rate: Optional[float] = Field(None, ge=0, le=1)
    filter_radius: Optional[int] = Field(None, ge=0, le=7)
    rms_mix_rate: Optional[float] = Field(None, ge=0, le=1)
    protect: Optional[float] = Field(None, ge=0, le=0.5)
    title: Optional[str] = None


class UploadResponse(BaseModel):
    url: str
    storage: str  # "durable" | "fal"
    key: Optional[str] = None


class SweepResponse(BaseModel):
    mode: str  # "queued" | "inline"
    rq_job_id: Optional[str] = None
    report: Optional[Dict[str, Any]] = None
