from __future__ import annotations

import asyncio

import pytest

from cadence.core.errors import (
    CredentialMissing,
    InvalidJobState,
    JobNotFound,
    PreconditionFailed,
    ProviderRejected,
    ProviderUnavailable,
)
from cadence.models.credential import CredentialProvider
from cadence.models.job import ChainRole, JobKind, JobStatus
from cadence.services.jobs import NO_STORAGE_MESSAGE, JobService, owned_storage_keys
from cadence.services.providers.base import ProviderCapabilities, SubmitResult
from cadence.services.providers.registry import ProviderRegistry
from cadence.services.storage import dataset_key, embedding_key, generation_key, model_key
from tests.fakes import (
    BUNNY,
    PREDICTION,
    PROVIDER_URL,
    SYNCHRONOUS,
    FakeAdapter,
    FakeFileHost,
    FakePackager,
    FakeUploader,
    make_job,
    registry_with,
    save_bunny,
)

FAL_KEY = "fal-key-0123456789"
REPLICATE_KEY = "r8_replicate_key_0123"
AUDIO_URL = "https://cadence.b-cdn.net/voice-recordings/owner-1-1700000000000.webm"


def service_for(store, credentials, *adapters, uploader=None, mock=False) -> JobService:
    return JobService(
        store=store,
        credentials=credentials,
        registry=registry_with(*adapters, mock=mock),
        uploader=uploader or FakeUploader(),
        packager=FakePackager(),
    )


def training_adapter(**kwargs) -> FakeAdapter:
    return FakeAdapter(
        provider_kind="rvc-train",
        job_kind=JobKind.TRAINING,
        credential_provider=CredentialProvider.REPLICATE,
        capabilities=PREDICTION,
        required_field="dataset_url",
        **kwargs,
    )


def conversion_adapter() -> FakeAdapter:
    return FakeAdapter(
        provider_kind="rvc-v2",
        job_kind=JobKind.CONVERSION,
        credential_provider=CredentialProvider.REPLICATE,
        capabilities=PREDICTION,
        required_field="source_audio_url",
    )


def completed(store, kind: str, **fields):
    job = make_job(store, kind, **fields)
    url = fields.get("result_location") or f"https://cadence.b-cdn.net/{job.id}"
    store.update_terminal(job.id, JobStatus.COMPLETED, result_location=url, original_result_location=url)
    return store.get(job.id, job.owner_id)


# --- submission ---

def test_submit_without_credential_creates_nothing(store, credentials) -> None:
    adapter = FakeAdapter()
    service = service_for(store, credentials, adapter)

    with pytest.raises(CredentialMissing) as ex:
        asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "synthwave"}, provider_kind="fake-music"))

    assert ex.value.provider == "fal.ai"
    assert store.count_jobs("owner-1") == 0
    assert adapter.submitted == []


def test_invalid_input_is_rejected_before_anything_else(store, credentials) -> None:
    adapter = FakeAdapter()
    service = service_for(store, credentials, adapter)

    with pytest.raises(ProviderRejected):
        asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "  "}, provider_kind="fake-music"))
    assert store.count_jobs("owner-1") == 0


def test_submit_rejects_unknown_provider_and_wrong_kind(store, credentials) -> None:
    service = service_for(store, credentials, FakeAdapter())

    with pytest.raises(ProviderRejected):
        asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "x"}, provider_kind="nope"))
    with pytest.raises(ProviderRejected):
        asyncio.run(service.submit_job("owner-1", JobKind.CLONE, {"prompt": "x"}, provider_kind="fake-music"))
    with pytest.raises(ProviderRejected):
        asyncio.run(service.submit_job("owner-1", JobKind.TRAINING, {}))


def test_duration_is_only_accepted_by_adapters_that_support_it(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.FAL, FAL_KEY)
    fixed_length = FakeAdapter()
    timed = FakeAdapter(
        provider_kind="fake-timed",
        capabilities=ProviderCapabilities(has_separate_result_fetch=True, supports_duration=True),
    )
    service = service_for(store, credentials, fixed_length, timed)
    input = {"prompt": "slow ambient drone", "duration_ms": 30000}

    with pytest.raises(ProviderRejected) as ex:
        asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, input, provider_kind="fake-music"))
    assert ex.value.message == "Provider fake-music does not support duration control"
    assert fixed_length.submitted == []
    assert store.count_jobs("owner-1") == 0

    handle = asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, input, provider_kind="fake-timed"))
    assert store.get(handle.job_id, "owner-1").input_params["duration_ms"] == 30000


def test_duration_on_mock_minimax_is_rejected(store, credentials) -> None:
    registry = ProviderRegistry.from_settings(mock=True)
    service = JobService(store=store, credentials=credentials, registry=registry, uploader=FakeUploader())

    with pytest.raises(ProviderRejected):
        asyncio.run(service.submit_job(
            "owner-1",
            JobKind.GENERATION,
            {"prompt": "dreamy synth pop ballad", "lyrics": "[verse] under neon lights", "duration_ms": 30000},
            provider_kind="minimax-v2",
        ))
    assert store.count_jobs("owner-1") == 0


def test_submit_failure_propagates_and_creates_nothing(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.FAL, FAL_KEY)
    adapter = FakeAdapter(submit_error=ProviderUnavailable("fal.ai submit failed: 503"))
    service = service_for(store, credentials, adapter)

    with pytest.raises(ProviderUnavailable):
        asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "synthwave"}, provider_kind="fake-music"))
    assert store.count_jobs("owner-1") == 0


def test_submit_creates_pending_record(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.FAL, FAL_KEY)
    adapter = FakeAdapter()
    service = service_for(store, credentials, adapter)

    handle = asyncio.run(service.submit_job(
        "owner-1", JobKind.GENERATION, {"prompt": "  synthwave  "}, provider_kind="fake-music", title="Night drive",
    ))

    assert handle.status == JobStatus.PENDING
    assert handle.external_ref == "req-1"
    job = store.get(handle.job_id, "owner-1")
    assert job.kind == JobKind.GENERATION
    assert job.title == "Night drive"
    assert job.input_params["prompt"] == "synthwave"
    assert adapter.api_key == FAL_KEY


def test_mock_mode_submits_without_keys(store, credentials) -> None:
    adapter = FakeAdapter()
    service = service_for(store, credentials, adapter, mock=True)

    handle = asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "ambient"}, provider_kind="fake-music"))
    assert handle.status == JobStatus.PENDING


def test_synchronous_success_records_completed_job(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.MINIMAX, "minimax-key-0123456789")
    save_bunny(credentials)
    adapter = FakeAdapter(
        provider_kind="fake-sync",
        credential_provider=CredentialProvider.MINIMAX,
        capabilities=SYNCHRONOUS,
        submit_result=SubmitResult(
            external_ref=None, status=JobStatus.COMPLETED, result_url=PROVIDER_URL, metadata={"duration_ms": 181000},
        ),
    )
    service = service_for(store, credentials, adapter)

    handle = asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "[verse] ..."}, provider_kind="fake-sync"))

    assert handle.status == JobStatus.COMPLETED
    assert handle.external_ref is None
    job = store.get(handle.job_id, "owner-1")
    assert job.progress == 100
    assert job.result_location_is_durable
    assert job.result_location == f"https://cadence.b-cdn.net/{generation_key(job.id)}"
    assert job.original_result_location == PROVIDER_URL
    assert job.result_metadata == {"duration_ms": 181000}
    assert job.completed_at is not None


def test_synchronous_failure_records_failed_job(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.MINIMAX, "minimax-key-0123456789")
    adapter = FakeAdapter(
        provider_kind="fake-sync",
        credential_provider=CredentialProvider.MINIMAX,
        capabilities=SYNCHRONOUS,
        submit_result=SubmitResult(external_ref=None, status=JobStatus.FAILED, error="invalid lyrics structure"),
    )
    service = service_for(store, credentials, adapter)

    handle = asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "x"}, provider_kind="fake-sync"))

    assert handle.status == JobStatus.FAILED
    assert handle.error == "invalid lyrics structure"


def test_synchronous_timeout_creates_nothing(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.MINIMAX, "minimax-key-0123456789")

    class Slow(FakeAdapter):
        async def submit(self, input):
            await asyncio.sleep(10)

    adapter = Slow(provider_kind="fake-sync", credential_provider=CredentialProvider.MINIMAX, capabilities=SYNCHRONOUS)
    service = service_for(store, credentials, adapter)
    service.sync_timeout = 0.05

    with pytest.raises(ProviderUnavailable):
        asyncio.run(service.submit_job("owner-1", JobKind.GENERATION, {"prompt": "x"}, provider_kind="fake-sync"))
    assert store.count_jobs("owner-1") == 0


def test_duplicate_clone_submission_is_refused(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.FAL, FAL_KEY)
    adapter = FakeAdapter(provider_kind="fake-clone", job_kind=JobKind.CLONE, required_field="audio_url")
    service = service_for(store, credentials, adapter)

    first = asyncio.run(service.submit_job(
        "owner-1", JobKind.CLONE, {"audio_url": AUDIO_URL}, provider_kind="fake-clone", idempotency_key="rec-1",
    ))
    assert store.get(first.job_id, "owner-1").chain_role == ChainRole.CLONE

    with pytest.raises(PreconditionFailed):
        asyncio.run(service.submit_job(
            "owner-1", JobKind.CLONE, {"audio_url": AUDIO_URL}, provider_kind="fake-clone", idempotency_key="rec-1",
        ))
    assert store.count_jobs("owner-1") == 1


# --- reads ---

def test_status_is_owner_scoped(store, credentials) -> None:
    job = make_job(store)
    service = service_for(store, credentials, FakeAdapter())

    assert service.get_job_status("owner-1", job.id).id == job.id
    with pytest.raises(JobNotFound):
        service.get_job_status("owner-2", job.id)


# --- cancel ---

def test_cancel_fails_job_even_if_provider_cancel_breaks(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.FAL, FAL_KEY)
    adapter = FakeAdapter(cancel_error=ProviderUnavailable("fal.ai cancel failed"))
    service = service_for(store, credentials, adapter)
    job = make_job(store, status=JobStatus.PROCESSING, external_ref="req-9")

    snapshot = asyncio.run(service.cancel_job("owner-1", job.id))

    assert snapshot.status == JobStatus.FAILED
    assert snapshot.error == "Cancelled by user"
    assert adapter.cancelled == ["req-9"]


def test_cancel_terminal_job_is_refused(store, credentials) -> None:
    service = service_for(store, credentials, FakeAdapter())
    job = make_job(store)
    store.update_terminal(job.id, JobStatus.COMPLETED, result_location=PROVIDER_URL)

    with pytest.raises(InvalidJobState):
        asyncio.run(service.cancel_job("owner-1", job.id))


# --- delete ---

def test_delete_durable_job_survives_storage_failure(store, credentials) -> None:
    save_bunny(credentials)
    uploader = FakeUploader(remove_ok=False)
    service = service_for(store, credentials, FakeAdapter(), uploader=uploader)
    job = make_job(store)
    durable_url = f"https://cadence.b-cdn.net/{generation_key(job.id)}"
    store.update_terminal(
        job.id, JobStatus.COMPLETED,
        result_location=durable_url,
        original_result_location=PROVIDER_URL,
        result_location_is_durable=True,
        storage_keys=[generation_key(job.id)],
    )

    assert asyncio.run(service.delete_job("owner-1", job.id))

    assert generation_key(job.id) in uploader.removed
    assert store.get(job.id, "owner-1") is None


def test_delete_active_job_cancels_on_provider(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.FAL, FAL_KEY)
    adapter = FakeAdapter()
    service = service_for(store, credentials, adapter)
    job = make_job(store, external_ref="req-5")

    asyncio.run(service.delete_job("owner-1", job.id))
    assert adapter.cancelled == ["req-5"]
    assert store.get(job.id, "owner-1") is None


def test_delete_clone_cascades_to_trained_models(store, credentials) -> None:
    save_bunny(credentials)
    uploader = FakeUploader()
    service = service_for(store, credentials, FakeAdapter(), training_adapter(), uploader=uploader)

    clone = completed(store, JobKind.CLONE, provider_kind="fake-music", input_params={"audio_url": AUDIO_URL})
    training = completed(store, JobKind.TRAINING, provider_kind="rvc-train", parent_id=clone.id)
    conversion = completed(store, JobKind.CONVERSION, provider_kind="rvc-v2", parent_id=training.id)

    asyncio.run(service.delete_job("owner-1", clone.id))

    assert store.get(clone.id, "owner-1") is None
    assert store.get(training.id, "owner-1") is None
    survivor = store.get(conversion.id, "owner-1")
    assert survivor is not None
    assert survivor.parent_id is None
    assert {embedding_key(clone.id), dataset_key(clone.id), model_key(training.id)} <= set(uploader.removed)
    assert "voice-recordings/owner-1-1700000000000.webm" in uploader.removed


def test_owned_storage_keys_include_urls_on_own_distribution(store) -> None:
    job = make_job(store, result_location="https://cadence.b-cdn.net/custom/path.mp3")
    keys = owned_storage_keys(store.get(job.id, "owner-1"), BUNNY)
    assert keys == [generation_key(job.id), "custom/path.mp3"]
    assert owned_storage_keys(store.get(job.id, "owner-1"), None) == [generation_key(job.id)]


# --- chain ---

def test_start_training_hosts_dataset_and_links_clone(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.REPLICATE, REPLICATE_KEY)
    save_bunny(credentials)
    adapter = training_adapter()
    uploader = FakeUploader()
    service = service_for(store, credentials, adapter, uploader=uploader)
    clone = completed(store, JobKind.CLONE, input_params={"audio_url": AUDIO_URL}, title="My voice")

    handle = asyncio.run(service.start_training("owner-1", clone.id, {"epoch": 80, "batch_size": None}))

    job = store.get(handle.job_id, "owner-1")
    assert job.kind == JobKind.TRAINING
    assert job.parent_id == clone.id
    assert job.chain_role == ChainRole.TRAIN
    assert job.status == JobStatus.PENDING
    assert job.storage_keys == [dataset_key(clone.id)]
    assert adapter.submitted[0]["dataset_url"] == f"https://cadence.b-cdn.net/{dataset_key(clone.id)}"
    assert adapter.submitted[0]["epoch"] == 80
    assert "batch_size" not in adapter.submitted[0]
    assert service.packager.urls == [AUDIO_URL]
    assert adapter.api_key == REPLICATE_KEY


def test_second_training_while_first_is_processing_is_refused(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.REPLICATE, REPLICATE_KEY)
    save_bunny(credentials)
    adapter = training_adapter()
    service = service_for(store, credentials, adapter)
    clone = completed(store, JobKind.CLONE, input_params={"audio_url": AUDIO_URL})

    first = asyncio.run(service.start_training("owner-1", clone.id))
    store.update_progress(first.job_id, 10)

    with pytest.raises(PreconditionFailed):
        asyncio.run(service.start_training("owner-1", clone.id))
    assert len(adapter.submitted) == 1
    assert store.count_jobs("owner-1", kind=JobKind.TRAINING) == 1


def test_training_against_unfinished_clone_creates_nothing(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.REPLICATE, REPLICATE_KEY)
    adapter = training_adapter()
    service = service_for(store, credentials, adapter)
    clone = make_job(store, JobKind.CLONE, status=JobStatus.PROCESSING, input_params={"audio_url": AUDIO_URL})

    with pytest.raises(PreconditionFailed):
        asyncio.run(service.start_training("owner-1", clone.id))
    assert store.count_jobs("owner-1", kind=JobKind.TRAINING) == 0
    assert service.packager.urls == []


def test_training_dataset_falls_back_to_fal_storage(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.REPLICATE, REPLICATE_KEY)
    credentials.save_secret("owner-1", CredentialProvider.FAL, FAL_KEY)
    adapter = training_adapter()
    service = service_for(store, credentials, adapter)
    clone = completed(store, JobKind.CLONE, input_params={"audio_url": AUDIO_URL})

    handle = asyncio.run(service.start_training("owner-1", clone.id))

    assert adapter.submitted[0]["dataset_url"] == f"https://v3.fal.media/files/hosted/{clone.id}.zip"
    assert FakeFileHost.uploads[0][0] == f"{clone.id}.zip"
    job = store.get(handle.job_id, "owner-1")
    assert job.storage_keys == []
    assert job.result_metadata == {"dataset_storage": "fal"}


def test_training_without_any_storage_is_refused(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.REPLICATE, REPLICATE_KEY)
    adapter = training_adapter()
    service = service_for(store, credentials, adapter)
    clone = completed(store, JobKind.CLONE, input_params={"audio_url": AUDIO_URL})

    with pytest.raises(PreconditionFailed) as ex:
        asyncio.run(service.start_training("owner-1", clone.id))
    assert ex.value.message == NO_STORAGE_MESSAGE
    assert adapter.submitted == []


def test_start_conversion(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.REPLICATE, REPLICATE_KEY)
    adapter = conversion_adapter()
    service = service_for(store, credentials, adapter)
    training = completed(store, JobKind.TRAINING, result_location="https://cadence.b-cdn.net/rvc-models/m.zip")
    track = completed(store, JobKind.GENERATION, title="Demo song")

    handle = asyncio.run(service.start_conversion("owner-1", training.id, track.id, pitch_shift=-3, protect=0.4))

    job = store.get(handle.job_id, "owner-1")
    assert job.parent_id == training.id
    assert job.chain_role == ChainRole.CONVERT
    assert job.title == "Demo song (converted)"
    assert job.input_params["source_media_id"] == track.id
    submitted = adapter.submitted[0]
    assert submitted["model_url"] == "https://cadence.b-cdn.net/rvc-models/m.zip"
    assert submitted["source_audio_url"] == track.result_location
    assert submitted["pitch_shift"] == -3
    assert submitted["protect"] == 0.4


def test_conversion_requires_trained_model(store, credentials) -> None:
    credentials.save_secret("owner-1", CredentialProvider.REPLICATE, REPLICATE_KEY)
    adapter = conversion_adapter()
    service = service_for(store, credentials, adapter)
    training = make_job(store, JobKind.TRAINING, status=JobStatus.PROCESSING)
    track = completed(store, JobKind.GENERATION)

    with pytest.raises(PreconditionFailed):
        asyncio.run(service.start_conversion("owner-1", training.id, track.id))
    assert adapter.submitted == []


# --- media / persistence ---

def test_upload_source_media_prefers_durable_storage(store, credentials) -> None:
    save_bunny(credentials)
    uploader = FakeUploader()
    service = service_for(store, credentials, FakeAdapter(), uploader=uploader)

    hosted = asyncio.run(service.upload_source_media("owner-1", b"webm-bytes", "recording.webm", "audio/webm"))

    assert hosted["storage"] == "durable"
    assert hosted["key"].startswith("voice-recordings/owner-1-")
    assert hosted["key"].endswith(".webm")
    assert hosted["url"] == f"https://cadence.b-cdn.net/{hosted['key']}"


def test_upload_empty_recording_is_rejected(store, credentials) -> None:
    service = service_for(store, credentials, FakeAdapter())
    with pytest.raises(ProviderRejected):
        asyncio.run(service.upload_source_media("owner-1", b"", "recording.webm", "audio/webm"))


def test_persist_result_retries_durable_copy(store, credentials) -> None:
    service = service_for(store, credentials, FakeAdapter())
    job = completed(store, JobKind.GENERATION, result_location=PROVIDER_URL)

    with pytest.raises(PreconditionFailed):
        asyncio.run(service.persist_result("owner-1", job.id))

    save_bunny(credentials)
    snapshot = asyncio.run(service.persist_result("owner-1", job.id))

    assert snapshot.result_location_is_durable
    assert snapshot.result_location == f"https://cadence.b-cdn.net/{generation_key(job.id)}"
    assert snapshot.original_result_location == PROVIDER_URL


def test_persist_result_refuses_active_jobs(store, credentials) -> None:
    save_bunny(credentials)
    service = service_for(store, credentials, FakeAdapter())
    job = make_job(store)

    with pytest.raises(PreconditionFailed):
        asyncio.run(service.persist_result("owner-1", job.id))
