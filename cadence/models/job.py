"""
Job Model
Database model for provider jobs (generation, clone, training, conversion).

All four kinds share the ``jobs`` table and are distinguished by ``kind``.
Clone, training and conversion jobs form the chain clone -> train -> convert
through ``parent_id``.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, ForeignKey, JSON

from cadence.core.database import Base


class JobStatus:
    """Job status constants. Transitions: pending -> processing -> completed|failed."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ACTIVE = (PENDING, PROCESSING)
    TERMINAL = (COMPLETED, FAILED)
    ALL = (PENDING, PROCESSING, COMPLETED, FAILED)


class JobKind:
    """Concrete job kinds."""
    GENERATION = "generation"
    CLONE = "clone"
    TRAINING = "training"
    CONVERSION = "conversion"

    ALL = (GENERATION, CLONE, TRAINING, CONVERSION)


class ChainRole:
    """Role a chained job plays relative to its parent."""
    CLONE = "clone"      # chain root
    TRAIN = "train"      # depends on a completed clone
    CONVERT = "convert"  # depends on a completed training job


class Job(Base):
    """
    Provider job record.

    ``external_ref`` is assigned by the provider at submission and never
    changes afterwards. ``result_location`` points at the durable copy when
    ``result_location_is_durable`` is set, otherwise at the provider URL,
    which is also kept in ``original_result_location`` so the durable copy
    can be retried later.
    """

    __tablename__ = "jobs"

    id = Column(String, primary_key=True)  # job_xxxx format
    owner_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False, index=True)
    provider_kind = Column(String, nullable=False)

    # Provider handle (request id / prediction id); empty for synchronous providers
    external_ref = Column(String, nullable=True)

    # Status: pending, processing, completed, failed
    status = Column(String, default=JobStatus.PENDING, index=True)
    progress = Column(Integer, default=0)
    error = Column(Text, nullable=True)

    # Result
    result_location = Column(String, nullable=True)
    original_result_location = Column(String, nullable=True)
    result_location_is_durable = Column(Boolean, default=False)
    result_metadata = Column(JSON, default=dict)
    storage_keys = Column(JSON, default=list)  # durable keys this job owns
    result_fetch_failures = Column(Integer, default=0)

    # Chain
    parent_id = Column(String, ForeignKey("jobs.id"), nullable=True, index=True)
    chain_role = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=True, index=True)

    # Request
    title = Column(String, nullable=True)
    input_params = Column(JSON, default=dict)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __mapper_args__ = {
        "polymorphic_on": kind,
        "polymorphic_identity": "job",
    }

    def __repr__(self):
        return f"<{type(self).__name__} {self.id} {self.provider_kind} ({self.status})>"

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    @property
    def is_active(self) -> bool:
        return self.status in JobStatus.ACTIVE


class GenerationJob(Job):
    """Music generation (queue-based fal.ai or synchronous MiniMax)."""
    __mapper_args__ = {"polymorphic_identity": JobKind.GENERATION}


class CloneJob(Job):
    """Voice clone. Source audio URL lives in ``input_params['audio_url']``."""
    __mapper_args__ = {"polymorphic_identity": JobKind.CLONE}

    @property
    def source_audio_url(self):
        return (self.input_params or {}).get("audio_url")


class TrainingJob(Job):
    """RVC model training; ``parent_id`` is the clone it was trained from."""
    __mapper_args__ = {"polymorphic_identity": JobKind.TRAINING}

    @property
    def model_url(self):
        return self.result_location


class ConversionJob(Job):
    """Voice conversion; ``parent_id`` is the training job whose model it uses."""
    __mapper_args__ = {"polymorphic_identity": JobKind.CONVERSION}


JOB_CLASSES = {
    JobKind.GENERATION: GenerationJob,
    JobKind.CLONE: CloneJob,
    JobKind.TRAINING: TrainingJob,
    JobKind.CONVERSION: ConversionJob,
}


__all__ = [
    "JobStatus",
    "JobKind",
    "ChainRole",
    "Job",
    "GenerationJob",
    "CloneJob",
    "TrainingJob",
    "ConversionJob",
    "JOB_CLASSES",
]
