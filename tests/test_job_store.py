from __future__ import annotations

import pytest

from cadence.models.job import JobKind, JobStatus
from cadence.services.job_store import JobStore, new_job_id
from tests.fakes import make_job


def test_new_job_id_shape() -> None:
    job_id = new_job_id()
    assert job_id.startswith("job_")
    assert len(job_id) == len("job_") + 16


def test_get_is_owner_scoped(store: JobStore) -> None:
    job = make_job(store)
    assert store.get(job.id, "owner-1").id == job.id
    assert store.get(job.id, "someone-else") is None


def test_polymorphic_records_come_back_as_their_kind(store: JobStore) -> None:
    clone = make_job(store, JobKind.CLONE, input_params={"audio_url": "https://cdn.example/a.wav"})
    loaded = store.get(clone.id, "owner-1")
    assert type(loaded).__name__ == "CloneJob"
    assert loaded.source_audio_url == "https://cdn.example/a.wav"


def test_terminal_write_is_idempotent(store: JobStore) -> None:
    job = make_job(store)
    assert store.update_terminal(job.id, JobStatus.COMPLETED, result_location="https://x/1.mp3",
                                 original_result_location="https://x/1.mp3")
    first = store.get(job.id, "owner-1")

    assert store.update_terminal(job.id, JobStatus.COMPLETED, result_location="https://x/1.mp3",
                                 original_result_location="https://x/1.mp3") is False
    second = store.get(job.id, "owner-1")
    assert second.status == JobStatus.COMPLETED
    assert second.result_location == first.result_location
    assert second.completed_at == first.completed_at
    assert second.progress == 100


def test_late_poll_cannot_change_a_terminal_job(store: JobStore) -> None:
    job = make_job(store)
    store.update_terminal(job.id, JobStatus.FAILED, error="Cancelled by user")

    assert store.update_terminal(job.id, JobStatus.COMPLETED, result_location="https://x/late.mp3") is False
    assert store.update_progress(job.id, 50) is False

    record = store.get(job.id, "owner-1")
    assert record.status == JobStatus.FAILED
    assert record.error == "Cancelled by user"
    assert record.result_location is None


def test_progress_promotes_pending_and_clamps(store: JobStore) -> None:
    job = make_job(store)
    assert store.update_progress(job.id, 140)
    record = store.get(job.id, "owner-1")
    assert record.status == JobStatus.PROCESSING
    assert record.progress == 100

    store.update_progress(job.id, None)
    assert store.get(job.id, "owner-1").progress == 100

    store.update_progress(job.id, 30)
    assert store.get(job.id, "owner-1").progress == 30


def test_terminal_write_rejects_bad_arguments(store: JobStore) -> None:
    job = make_job(store)
    with pytest.raises(ValueError):
        store.update_terminal(job.id, JobStatus.PROCESSING)
    with pytest.raises(ValueError):
        store.update_terminal(job.id, JobStatus.FAILED, result_location_is_durable=True)


def test_fetch_failures_are_counted(store: JobStore) -> None:
    job = make_job(store, status=JobStatus.PROCESSING)
    assert store.record_fetch_failure(job.id) == 1
    assert store.record_fetch_failure(job.id) == 2


def test_mark_durable_only_on_completed_jobs(store: JobStore) -> None:
    active = make_job(store)
    assert store.mark_durable(active.id, "https://cdn/x.mp3", ["generations/x.mp3"]) is False

    done = make_job(store)
    store.update_terminal(done.id, JobStatus.COMPLETED, result_location="https://p/x.mp3",
                          original_result_location="https://p/x.mp3")
    assert store.mark_durable(done.id, "https://cdn/x.mp3", ["generations/x.mp3"])
    record = store.get(done.id, "owner-1")
    assert record.result_location_is_durable
    assert record.result_location == "https://cdn/x.mp3"
    assert record.original_result_location == "https://p/x.mp3"


def test_list_and_count(store: JobStore) -> None:
    make_job(store)
    make_job(store, JobKind.CLONE)
    done = make_job(store)
    store.update_terminal(done.id, JobStatus.FAILED, error="boom")
    make_job(store, owner_id="owner-2")

    assert store.count_jobs("owner-1") == 3
    assert store.count_jobs("owner-1", kind=JobKind.CLONE) == 1
    assert len(store.list_jobs("owner-1", status=JobStatus.FAILED)) == 1
    assert len(store.list_active()) == 3
    assert len(store.list_active("owner-1")) == 2


def test_children_and_idempotency_lookups(store: JobStore) -> None:
    clone = make_job(store, JobKind.CLONE, idempotency_key="rec-1")
    training = make_job(store, JobKind.TRAINING, parent_id=clone.id)

    assert [j.id for j in store.find_active_children(clone.id, JobKind.TRAINING)] == [training.id]
    assert store.find_completed_children(clone.id, JobKind.TRAINING) == []
    assert store.find_active_by_idempotency_key("owner-1", "rec-1", kind=JobKind.CLONE).id == clone.id
    assert store.find_active_by_idempotency_key("owner-2", "rec-1") is None


def test_delete_unlinks_children(store: JobStore) -> None:
    clone = make_job(store, JobKind.CLONE)
    training = make_job(store, JobKind.TRAINING, parent_id=clone.id)

    assert store.delete(clone.id, "owner-2") is False
    assert store.delete(clone.id, "owner-1")
    assert store.get(clone.id, "owner-1") is None
    assert store.get(training.id, "owner-1").parent_id is None
