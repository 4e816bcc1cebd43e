# Pydantic schemas package
from cadence.schemas.job import (
    JobSnapshot, JobHandle, JobListResponse, SubmitJobRequest,
    TrainingOptions, StartConversionRequest, UploadResponse, SweepResponse
)
from cadence.schemas.credential import (
    CredentialStatusResponse, CredentialListResponse, SaveCredentialRequest
)

__all__ = [
    "JobSnapshot", "JobHandle", "JobListResponse", "SubmitJobRequest",
    "TrainingOptions", "StartConversionRequest", "UploadResponse", "SweepResponse",
    # Credential schemas
    "CredentialStatusResponse", "CredentialListResponse", "SaveCredentialRequest",
]
