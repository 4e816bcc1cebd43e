from __future__ import annotations

import pytest

from cadence.core.errors import PreconditionFailed
from cadence.models.job import JobKind, JobStatus
from cadence.services.chain import JobChainCoordinator
from tests.fakes import make_job

AUDIO = {"audio_url": "https://cadence.b-cdn.net/voice-recordings/owner-1-1.webm"}


def completed(store, kind: str, **fields):
    job = make_job(store, kind, **fields)
    store.update_terminal(job.id, JobStatus.COMPLETED, result_location=f"https://cdn/{job.id}",
                          original_result_location=f"https://cdn/{job.id}")
    return store.get(job.id, job.owner_id)


def constraint(excinfo) -> str:
    return excinfo.value.details["constraint"]


def test_training_requires_completed_clone(store) -> None:
    chain = JobChainCoordinator(store)

    with pytest.raises(PreconditionFailed) as ex:
        chain.check_training_allowed("owner-1", "job_missing")
    assert constraint(ex) == "clone_exists"

    pending = make_job(store, JobKind.CLONE, input_params=AUDIO)
    with pytest.raises(PreconditionFailed) as ex:
        chain.check_training_allowed("owner-1", pending.id)
    assert constraint(ex) == "clone_ready"

    generation = completed(store, JobKind.GENERATION)
    with pytest.raises(PreconditionFailed) as ex:
        chain.check_training_allowed("owner-1", generation.id)
    assert constraint(ex) == "clone_exists"

    clone = completed(store, JobKind.CLONE, input_params=AUDIO)
    assert chain.check_training_allowed("owner-1", clone.id).id == clone.id
    with pytest.raises(PreconditionFailed):
        chain.check_training_allowed("owner-2", clone.id)


def test_training_requires_source_audio(store) -> None:
    clone = completed(store, JobKind.CLONE, input_params={})
    with pytest.raises(PreconditionFailed) as ex:
        JobChainCoordinator(store).check_training_allowed("owner-1", clone.id)
    assert constraint(ex) == "clone_source_audio"


def test_one_training_per_clone(store) -> None:
    chain = JobChainCoordinator(store)
    clone = completed(store, JobKind.CLONE, input_params=AUDIO)
    training = make_job(store, JobKind.TRAINING, parent_id=clone.id, status=JobStatus.PROCESSING)

    with pytest.raises(PreconditionFailed) as ex:
        chain.check_training_allowed("owner-1", clone.id)
    assert ex.value.message == "RVC training is already in progress"

    store.update_terminal(training.id, JobStatus.COMPLETED, result_location="https://cdn/model.zip")
    with pytest.raises(PreconditionFailed) as ex:
        chain.check_training_allowed("owner-1", clone.id)
    assert ex.value.message == "RVC model is already trained"


def test_failed_training_can_be_retried(store) -> None:
    clone = completed(store, JobKind.CLONE, input_params=AUDIO)
    training = make_job(store, JobKind.TRAINING, parent_id=clone.id)
    store.update_terminal(training.id, JobStatus.FAILED, error="RVC training failed")

    assert JobChainCoordinator(store).check_training_allowed("owner-1", clone.id).id == clone.id


def test_conversion_requires_completed_model_and_source(store) -> None:
    chain = JobChainCoordinator(store)
    training = make_job(store, JobKind.TRAINING)

    with pytest.raises(PreconditionFailed) as ex:
        chain.check_conversion_allowed("owner-1", training.id)
    assert constraint(ex) == "model_ready"

    trained = completed(store, JobKind.TRAINING)
    assert chain.check_conversion_allowed("owner-1", trained.id).model_url == f"https://cdn/{trained.id}"

    clone = completed(store, JobKind.CLONE, input_params=AUDIO)
    with pytest.raises(PreconditionFailed) as ex:
        chain.check_conversion_allowed("owner-1", clone.id)
    assert constraint(ex) == "model_exists"

    pending_track = make_job(store)
    with pytest.raises(PreconditionFailed) as ex:
        chain.check_source_media("owner-1", pending_track.id)
    assert constraint(ex) == "source_ready"

    track = completed(store, JobKind.GENERATION)
    assert chain.check_source_media("owner-1", track.id).id == track.id


def test_clone_idempotency(store) -> None:
    chain = JobChainCoordinator(store)
    chain.check_clone_idempotency("owner-1", None)

    active = make_job(store, JobKind.CLONE, idempotency_key="recording-42")
    with pytest.raises(PreconditionFailed) as ex:
        chain.check_clone_idempotency("owner-1", "recording-42")
    assert ex.value.message == "Voice clone already in progress"
    assert ex.value.details["job_id"] == active.id

    store.update_terminal(active.id, JobStatus.FAILED, error="Voice cloning failed")
    chain.check_clone_idempotency("owner-1", "recording-42")
