# Database models package
from cadence.models.job import (
    Job, GenerationJob, CloneJob, TrainingJob, ConversionJob,
    JobStatus, JobKind, ChainRole, JOB_CLASSES
)
from cadence.models.credential import ProviderCredential, CredentialProvider

__all__ = [
    "Job",
    "GenerationJob",
    "CloneJob",
    "TrainingJob",
    "ConversionJob",
    "JobStatus",
    "JobKind",
    "ChainRole",
    "JOB_CLASSES",
    "ProviderCredential",
    "CredentialProvider",
]
