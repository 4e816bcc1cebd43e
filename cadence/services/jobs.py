"""
Job Service
Caller-facing operations: submit, inspect, cancel and delete jobs, and
enter the clone -> train -> convert chain.

Submission failures abort before any record exists and propagate to the
caller. Records for queue and prediction providers are created ``pending``
with their provider reference; synchronous providers get their record
retroactively, already terminal.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from cadence.core.config import get_settings
from cadence.core.errors import (
    InvalidJobState,
    JobNotFound,
    PreconditionFailed,
    ProviderRejected,
    ProviderUnavailable,
)
from cadence.models.credential import CredentialProvider
from cadence.models.job import ChainRole, JOB_CLASSES, Job, JobKind, JobStatus
from cadence.schemas.job import JobHandle, JobSnapshot
from cadence.services.chain import JobChainCoordinator
from cadence.services.credentials import CredentialStore
from cadence.services.datasets import DatasetPackager
from cadence.services.job_store import JobStore, new_job_id
from cadence.services.providers.base import ProviderAdapter, SubmitResult, call_with_timeout
from cadence.services.providers.registry import DEFAULT_PROVIDER_KINDS, ProviderRegistry, get_provider_registry
from cadence.services.storage import (
    StorageFallbackUploader,
    StorageSettings,
    conversion_key,
    dataset_key,
    embedding_key,
    extension_for,
    generation_key,
    key_from_url,
    model_key,
    preview_key,
    recording_key,
)

logger = logging.getLogger(__name__)

SUBMITTABLE_KINDS = (JobKind.GENERATION, JobKind.CLONE)
NO_STORAGE_MESSAGE = "No storage available. Please configure Bunny.net storage or add your fal.ai API key in Settings"


def to_snapshot(job: Job) -> JobSnapshot:
    return JobSnapshot.model_validate(job)


def to_handle(job: Job) -> JobHandle:
    return JobHandle(
        job_id=job.id,
        kind=job.kind,
        provider_kind=job.provider_kind,
        status=job.status,
        external_ref=job.external_ref,
        result_location=job.result_location,
        error=job.error,
    )


def owned_storage_keys(job: Job, settings: Optional[StorageSettings]) -> List[str]:
    """Every durable key a job may own: recorded keys, role keys and keys behind its URLs."""
    keys = list(job.storage_keys or [])
    if job.kind == JobKind.CLONE:
        keys += [embedding_key(job.id), preview_key(job.id), dataset_key(job.id)]
    elif job.kind == JobKind.TRAINING:
        keys.append(model_key(job.id))
    elif job.kind == JobKind.CONVERSION:
        keys.append(conversion_key(job.id))
    elif job.kind == JobKind.GENERATION:
        keys.append(generation_key(job.id))

    if settings is not None:
        keys.append(key_from_url(job.result_location, settings))
        # Voice recordings uploaded for a clone live under the owner's distribution
        if job.kind == JobKind.CLONE:
            keys.append(key_from_url((job.input_params or {}).get("audio_url"), settings))
    return list(dict.fromkeys(k for k in keys if k))


class JobService:
    def __init__(
        self,
        store: Optional[JobStore] = None,
        credentials: Optional[CredentialStore] = None,
        registry: Optional[ProviderRegistry] = None,
        uploader: Optional[StorageFallbackUploader] = None,
        chain: Optional[JobChainCoordinator] = None,
        packager: Optional[DatasetPackager] = None,
    ):
        settings = get_settings()
        self.store = store or JobStore()
        self.credentials = credentials or CredentialStore()
        self.registry = registry or get_provider_registry()
        self.uploader = uploader or StorageFallbackUploader()
        self.chain = chain or JobChainCoordinator(self.store)
        self.packager = packager or DatasetPackager()
        self.submit_timeout = settings.PROVIDER_SUBMIT_TIMEOUT
        self.sync_timeout = settings.SYNC_GENERATION_TIMEOUT
        self.cancel_timeout = settings.PROVIDER_STATUS_TIMEOUT

    # --- helpers ---

    def _api_key(self, owner_id: str, credential_provider: str) -> Optional[str]:
        if self.registry.mock:
            return self.credentials.get_secret(owner_id, credential_provider)
        return self.credentials.require_secret(owner_id, credential_provider)

    def _require(self, owner_id: str, job_id: str) -> Job:
        job = self.store.get(job_id, owner_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def _submit(self, adapter: ProviderAdapter, input: Dict[str, Any]) -> SubmitResult:
        result = await call_with_timeout(
            adapter.submit(input), self.submit_timeout, f"{adapter.provider_kind} submission"
        )
        if not result.external_ref:
            raise ProviderUnavailable(f"{adapter.provider_kind} did not return a request reference")
        return result

    async def _host_bytes(
        self,
        owner_id: str,
        data: bytes,
        key: str,
        content_type: str,
        settings: Optional[StorageSettings],
    ) -> Dict[str, Optional[str]]:
        """Durable storage when configured, else fal storage, else PreconditionFailed."""
        if settings is not None:
            persisted = await self.uploader.persist(data, key, content_type, settings)
            if persisted.durable:
                return {"url": persisted.url, "storage": "durable", "key": key}
            logger.warning(f"[Jobs] Durable upload of {key} failed ({persisted.error}), trying fal storage")

        fal_key = self.credentials.get_secret(owner_id, CredentialProvider.FAL)
        if not fal_key and not self.registry.mock:
            raise PreconditionFailed(NO_STORAGE_MESSAGE, details={"constraint": "storage_available"})

        host = self.registry.create_file_host(fal_key)
        filename = key.rsplit("/", 1)[-1]
        url = await host.upload_bytes(data, filename, content_type)
        return {"url": url, "storage": "fal", "key": None}

    # --- submission ---

    async def submit_job(
        self,
        owner_id: str,
        kind: str,
        input: Dict[str, Any],
        provider_kind: Optional[str] = None,
        title: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> JobHandle:
        """
        Submit a generation or clone job.

        Raises:
            ProviderRejected: invalid input or unsupported kind
            CredentialMissing: no key configured for the provider
            PreconditionFailed: an identical clone is already in progress
            ProviderUnavailable: transient provider failure or timeout
        """
        if kind not in SUBMITTABLE_KINDS:
            raise ProviderRejected(f"Jobs of kind '{kind}' are started through the training and conversion operations")

        provider_kind = provider_kind or DEFAULT_PROVIDER_KINDS[kind]
        spec = self.registry.spec(provider_kind)
        if spec.job_kind != kind:
            raise ProviderRejected(f"Provider {provider_kind} does not run {kind} jobs")
        if (input or {}).get("duration_ms") is not None and not spec.capabilities.supports_duration:
            raise ProviderRejected(f"Provider {provider_kind} does not support duration control")

        normalized = spec.validate(input or {})
        api_key = self._api_key(owner_id, spec.credential_provider)
        if kind == JobKind.CLONE:
            self.chain.check_clone_idempotency(owner_id, idempotency_key)

        adapter = self.registry.create(provider_kind, api_key)
        job_cls = JOB_CLASSES[kind]
        fields = dict(
            owner_id=owner_id,
            provider_kind=provider_kind,
            title=title or f"{provider_kind} - {datetime.utcnow():%Y-%m-%d}",
            input_params=normalized,
            idempotency_key=idempotency_key,
            chain_role=ChainRole.CLONE if kind == JobKind.CLONE else None,
            result_metadata={},
            storage_keys=[],
        )

        if adapter.capabilities.is_synchronous:
            job = await self._run_synchronous(adapter, job_cls, normalized, fields)
        else:
            result = await self._submit(adapter, normalized)
            job = self.store.create(job_cls(
                id=new_job_id(),
                status=JobStatus.PENDING,
                progress=0,
                external_ref=result.external_ref,
                **fields,
            ))
        return to_handle(job)

    async def _run_synchronous(self, adapter: ProviderAdapter, job_cls, input: Dict[str, Any], fields: dict) -> Job:
        """Block on a synchronous provider (timeout-bounded), then record the terminal outcome."""
        result = await call_with_timeout(adapter.submit(input), self.sync_timeout, f"{adapter.provider_kind} generation")

        job_id = new_job_id()
        now = datetime.utcnow()
        if result.status != JobStatus.COMPLETED or not result.result_url:
            return self.store.create(job_cls(
                id=job_id,
                status=JobStatus.FAILED,
                error=result.error or "Generation failed",
                completed_at=now,
                **fields,
            ))

        owner_id = fields["owner_id"]
        location, durable, keys = result.result_url, False, []
        target = adapter.result_target(job_id)
        if target is not None:
            storage_key, content_type = target
            settings = self.credentials.storage_settings_or_none(owner_id)
            persisted = await self.uploader.persist(result.result_url, storage_key, content_type, settings)
            if persisted.durable:
                location, durable, keys = persisted.url, True, [storage_key]

        fields = dict(fields, result_metadata=dict(result.metadata), storage_keys=keys)
        return self.store.create(job_cls(
            id=job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            result_location=location,
            original_result_location=result.result_url,
            result_location_is_durable=durable,
            completed_at=now,
            **fields,
        ))

    # --- reads ---

    def get_job_status(self, owner_id: str, job_id: str) -> JobSnapshot:
        return to_snapshot(self._require(owner_id, job_id))

    def list_jobs(
        self,
        owner_id: str,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[JobSnapshot]:
        return [to_snapshot(job) for job in self.store.list_jobs(owner_id, kind, status, limit, offset)]

    def count_jobs(self, owner_id: str, kind: Optional[str] = None, status: Optional[str] = None) -> int:
        return self.store.count_jobs(owner_id, kind, status)

    # --- cancel / delete ---

    async def _cancel_on_provider(self, job: Job) -> None:
        """Best-effort provider cancel; failures are logged and dropped."""
        spec = self.registry.spec(job.provider_kind)
        if not spec.capabilities.supports_cancel or not job.external_ref:
            return
        try:
            api_key = self.credentials.get_secret(job.owner_id, spec.credential_provider)
            adapter = self.registry.create(job.provider_kind, api_key)
            await call_with_timeout(adapter.cancel(job.external_ref), self.cancel_timeout, "cancel")
        except Exception as e:
            logger.warning(f"[Jobs] Provider cancel for {job.id} failed: {e}")

    async def cancel_job(self, owner_id: str, job_id: str) -> JobSnapshot:
        """
        Mark an active job failed ("Cancelled by user"), then ask the
        provider to cancel. The store write does not depend on the provider.
        """
        job = self._require(owner_id, job_id)
        if job.is_terminal:
            raise InvalidJobState(f"Job is already {job.status}", details={"status": job.status})

        if not self.store.update_terminal(job_id, JobStatus.FAILED, error="Cancelled by user"):
            raise InvalidJobState("Job finished before it could be cancelled")
        logger.info(f"[Jobs] Cancelled {job_id} for {owner_id}")

        await self._cancel_on_provider(job)
        return self.get_job_status(owner_id, job_id)

    async def delete_job(self, owner_id: str, job_id: str) -> bool:
        """
        Delete a job and, best effort, every durable artefact it owns.

        Deleting a clone also deletes its training jobs, whose models were
        trained from it.
        """
        job = self._require(owner_id, job_id)
        doomed = [job]
        if job.kind == JobKind.CLONE:
            doomed += [child for child in self.store.find_children(job_id) if child.kind == JobKind.TRAINING]

        settings = self.credentials.storage_settings_or_none(owner_id)
        keys: List[str] = []
        for record in doomed:
            keys += owned_storage_keys(record, settings)
            if record.is_active:
                await self._cancel_on_provider(record)

        results = await self.uploader.remove_many(settings, keys)
        if results and not all(results):
            logger.warning(f"[Jobs] {results.count(False)} of {len(results)} storage removals failed for {job_id}")

        for record in reversed(doomed):
            self.store.delete(record.id, owner_id)
        return True

    # --- chain ---

    async def start_training(self, owner_id: str, clone_id: str, options: Optional[Dict[str, Any]] = None) -> JobHandle:
        """Package the clone's source audio, host it and submit RVC training."""
        clone = self.chain.check_training_allowed(owner_id, clone_id)
        provider_kind = DEFAULT_PROVIDER_KINDS[JobKind.TRAINING]
        spec = self.registry.spec(provider_kind)
        options = {k: v for k, v in (options or {}).items() if v is not None}
        # Reject bad options before downloading anything
        spec.validate({**options, "dataset_url": "pending"})
        api_key = self._api_key(owner_id, spec.credential_provider)

        archive = await self.packager.package(clone.source_audio_url)
        hosted = await self._host_bytes(
            owner_id,
            archive.data,
            dataset_key(clone_id),
            "application/zip",
            self.credentials.storage_settings_or_none(owner_id),
        )
        logger.info(f"[Jobs] Dataset for {clone_id} hosted on {hosted['storage']}")

        normalized = spec.validate({**options, "dataset_url": hosted["url"]})
        adapter = self.registry.create(provider_kind, api_key)
        result = await self._submit(adapter, normalized)

        job = self.store.create(JOB_CLASSES[JobKind.TRAINING](
            id=new_job_id(),
            owner_id=owner_id,
            provider_kind=provider_kind,
            external_ref=result.external_ref,
            status=JobStatus.PENDING,
            progress=0,
            parent_id=clone_id,
            chain_role=ChainRole.TRAIN,
            title=f"{clone.title or clone_id} model",
            input_params=normalized,
            result_metadata={"dataset_storage": hosted["storage"]},
            storage_keys=[hosted["key"]] if hosted["key"] else [],
        ))
        return to_handle(job)

    async def start_conversion(
        self,
        owner_id: str,
        trained_model_id: str,
        source_media_id: str,
        pitch_shift: Optional[int] = None,
        title: Optional[str] = None,
        **tuning,
    ) -> JobHandle:
        """Convert a completed track with a trained RVC model."""
        training = self.chain.check_conversion_allowed(owner_id, trained_model_id)
        source = self.chain.check_source_media(owner_id, source_media_id)

        provider_kind = DEFAULT_PROVIDER_KINDS[JobKind.CONVERSION]
        spec = self.registry.spec(provider_kind)
        normalized = spec.validate({
            "source_audio_url": source.result_location,
            "model_url": training.result_location,
            "pitch_shift": pitch_shift,
            **tuning,
        })
        api_key = self._api_key(owner_id, spec.credential_provider)

        adapter = self.registry.create(provider_kind, api_key)
        result = await self._submit(adapter, normalized)

        job = self.store.create(JOB_CLASSES[JobKind.CONVERSION](
            id=new_job_id(),
            owner_id=owner_id,
            provider_kind=provider_kind,
            external_ref=result.external_ref,
            status=JobStatus.PENDING,
            progress=0,
            parent_id=trained_model_id,
            chain_role=ChainRole.CONVERT,
            title=title or f"{source.title or source_media_id} (converted)",
            input_params={**normalized, "source_media_id": source_media_id},
            result_metadata={},
            storage_keys=[],
        ))
        return to_handle(job)

    # --- media ---

    async def upload_source_media(self, owner_id: str, data: bytes, filename: str, content_type: str) -> Dict[str, Optional[str]]:
        """Host a raw recording (for cloning) on durable storage, or fal storage as a fallback."""
        if not data:
            raise ProviderRejected("Recording is empty")
        default_ext = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else "webm"
        ext = extension_for(content_type, default=default_ext)
        key = recording_key(owner_id, int(time.time() * 1000), ext)
        return await self._host_bytes(
            owner_id, data, key, content_type or "application/octet-stream",
            self.credentials.storage_settings_or_none(owner_id),
        )

    async def persist_result(self, owner_id: str, job_id: str) -> JobSnapshot:
        """Retry the durable copy of a completed job's provider result."""
        job = self._require(owner_id, job_id)
        if job.result_location_is_durable:
            return to_snapshot(job)
        if job.status != JobStatus.COMPLETED or not job.original_result_location:
            raise PreconditionFailed("Job has no provider result to store", details={"constraint": "result_available"})

        settings = self.credentials.storage_settings_or_none(owner_id)
        if settings is None:
            raise PreconditionFailed("Durable storage is not configured", details={"constraint": "storage_configured"})

        target = self.registry.spec(job.provider_kind).result_target(job.id)
        if target is None:
            raise PreconditionFailed("This job's result is not stored durably", details={"constraint": "storable"})

        storage_key, content_type = target
        persisted = await self.uploader.persist(job.original_result_location, storage_key, content_type, settings)
        if not persisted.durable:
            raise ProviderUnavailable(f"Durable copy failed: {persisted.error}")

        keys = list(dict.fromkeys(list(job.storage_keys or []) + [storage_key]))
        self.store.mark_durable(job.id, persisted.url, keys)
        return self.get_job_status(owner_id, job_id)


__all__ = ["JobService", "to_snapshot", "to_handle", "owned_storage_keys"]
