"""
Reconciliation Loop
Polls every active job through its provider adapter and folds the result
into the job store.

One periodic sweep, not per-job timers. Status checks run concurrently
behind a semaphore, each bounded by a timeout. Training jobs poll on a
slower, jittered tier. No exception for one job escapes the sweep:
failures become job state or are retried on a later tick.
"""

import asyncio
import logging
import random
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from cadence.core.config import get_settings
from cadence.core.errors import CadenceError, ProviderRejected, ProviderUnavailable
from cadence.models.job import Job, JobKind, JobStatus
from cadence.services.credentials import CredentialStore
from cadence.services.job_store import JobStore
from cadence.services.providers.base import ProviderAdapter, ProviderStatus, call_with_timeout, map_phase
from cadence.services.providers.registry import ProviderRegistry, get_provider_registry
from cadence.services.storage import StorageFallbackUploader

logger = logging.getLogger(__name__)

RESULT_UNAVAILABLE_MESSAGE = "Provider reported completion but the result could not be retrieved"
NO_RESULT_MESSAGE = "Provider returned no result"
GENERIC_FAILURE_MESSAGE = "Provider reported failure"

SLOW_KINDS = (JobKind.TRAINING,)


class Outcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PROGRESSED = "progressed"
    UNCHANGED = "unchanged"
    TRANSIENT = "transient"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class SweepReport:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    progressed: int = 0
    unchanged: int = 0
    transient: int = 0
    skipped: int = 0
    errors: int = 0

    def record(self, outcome: Outcome) -> None:
        self.checked += 1
        field = "errors" if outcome == Outcome.ERROR else outcome.value
        setattr(self, field, getattr(self, field) + 1)

    def to_dict(self) -> dict:
        return asdict(self)


class Reconciler:
    """Folds provider state into job records."""

    def __init__(
        self,
        store: Optional[JobStore] = None,
        credentials: Optional[CredentialStore] = None,
        registry: Optional[ProviderRegistry] = None,
        uploader: Optional[StorageFallbackUploader] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        settings = get_settings()
        self.store = store or JobStore()
        self.credentials = credentials or CredentialStore(self.store.session_factory)
        self.registry = registry or get_provider_registry()
        self.uploader = uploader or StorageFallbackUploader()
        self.clock = clock
        self.rng = rng

        self.status_timeout = settings.PROVIDER_STATUS_TIMEOUT
        self.concurrency = max(1, settings.RECONCILE_CONCURRENCY)
        self.fast_interval = settings.RECONCILE_FAST_INTERVAL
        self.slow_interval = settings.RECONCILE_SLOW_INTERVAL
        self.jitter = settings.RECONCILE_JITTER
        self.tick_seconds = settings.RECONCILE_TICK_SECONDS
        self.max_fetch_attempts = settings.RESULT_FETCH_MAX_ATTEMPTS

        # job id -> (owner id, next due time)
        self._next_due: Dict[str, Tuple[str, float]] = {}

    # --- scheduling ---

    def interval_for(self, job: Job) -> float:
        return self.slow_interval if job.kind in SLOW_KINDS else self.fast_interval

    def is_due(self, job: Job, now: float) -> bool:
        entry = self._next_due.get(job.id)
        return entry is None or now >= entry[1]

    def _schedule(self, job: Job) -> None:
        spread = (self.rng() * 2 - 1) * self.jitter
        self._next_due[job.id] = (job.owner_id, self.clock() + self.interval_for(job) * (1 + spread))

    # --- per job ---

    async def reconcile_job(self, job: Job) -> Outcome:
        """Poll one job and write what the provider reports."""
        if job.is_terminal:
            return Outcome.SKIPPED

        try:
            spec = self.registry.spec(job.provider_kind)
        except ProviderRejected:
            logger.error(f"[Reconciler] {job.id} has unknown provider {job.provider_kind}")
            return Outcome.SKIPPED

        if spec.capabilities.is_synchronous:
            # Nothing to poll; the submitting request owns the outcome
            return Outcome.SKIPPED
        if not job.external_ref:
            logger.warning(f"[Reconciler] {job.id} has no provider reference, skipping")
            return Outcome.SKIPPED

        try:
            api_key = self.credentials.get_secret(job.owner_id, spec.credential_provider)
        except CadenceError as e:
            logger.error(f"[Reconciler] Credential for {job.id} unusable: {e.message}")
            return Outcome.SKIPPED
        if not api_key and not self.registry.mock:
            logger.info(f"[Reconciler] No {spec.credential_provider} key for {job.owner_id}, leaving {job.id} unchanged")
            return Outcome.SKIPPED

        adapter = self.registry.create(job.provider_kind, api_key)
        try:
            status = await call_with_timeout(
                adapter.check_status(job.external_ref), self.status_timeout, f"{job.provider_kind} status check"
            )
        except ProviderUnavailable as e:
            logger.warning(f"[Reconciler] Transient error for {job.id}: {e.message}")
            return Outcome.TRANSIENT
        except ProviderRejected as e:
            if e.details.get("status") in (401, 403):
                logger.warning(f"[Reconciler] Key rejected while polling {job.id}, leaving unchanged")
                return Outcome.TRANSIENT
            self.store.update_terminal(job.id, JobStatus.FAILED, error=e.message)
            return Outcome.FAILED

        domain_status = map_phase(status.phase, job.status)
        if domain_status == JobStatus.COMPLETED:
            return await self._complete(job, adapter, status)
        if domain_status == JobStatus.FAILED:
            written = self.store.update_terminal(job.id, JobStatus.FAILED, error=status.error or GENERIC_FAILURE_MESSAGE)
            return Outcome.FAILED if written else Outcome.SKIPPED
        if domain_status == JobStatus.PROCESSING:
            progress = status.progress if adapter.capabilities.reports_progress else None
            self.store.update_progress(job.id, progress)
            return Outcome.PROGRESSED
        return Outcome.UNCHANGED

    async def _complete(self, job: Job, adapter: ProviderAdapter, status: ProviderStatus) -> Outcome:
        result_url = status.result_url
        metadata = dict(status.metadata)

        if adapter.capabilities.has_separate_result_fetch:
            try:
                result = await call_with_timeout(
                    adapter.fetch_result(job.external_ref), self.status_timeout, f"{job.provider_kind} result fetch"
                )
            except Exception as e:
                return self._fetch_failed(job, e)
            result_url = result.result_url
            metadata.update(result.metadata)

        if not result_url:
            written = self.store.update_terminal(job.id, JobStatus.FAILED, error=NO_RESULT_MESSAGE)
            return Outcome.FAILED if written else Outcome.SKIPPED

        location, durable, keys = result_url, False, list(job.storage_keys or [])
        target = adapter.result_target(job.id)
        settings = self.credentials.storage_settings_or_none(job.owner_id) if target else None
        if target is not None:
            storage_key, content_type = target
            persisted = await self.uploader.persist(result_url, storage_key, content_type, settings)
            if persisted.durable:
                location, durable = persisted.url, True
                keys.append(storage_key)
            elif persisted.error:
                metadata["storage_error"] = persisted.error

        written = self.store.update_terminal(
            job.id,
            JobStatus.COMPLETED,
            result_location=location,
            original_result_location=result_url,
            result_location_is_durable=durable,
            result_metadata={**(job.result_metadata or {}), **metadata},
            storage_keys=list(dict.fromkeys(keys)),
        )
        if not written:
            # Cancelled or completed elsewhere while we were copying
            if durable:
                await self.uploader.remove(settings, target[0])
            return Outcome.SKIPPED

        logger.info(f"[Reconciler] {job.id} completed ({'durable' if durable else 'provider URL'})")
        return Outcome.COMPLETED

    def _fetch_failed(self, job: Job, error: Exception) -> Outcome:
        """Completed on the provider but the payload fetch failed: stay processing, bounded."""
        failures = self.store.record_fetch_failure(job.id)
        if failures >= self.max_fetch_attempts:
            logger.error(f"[Reconciler] Giving up on result of {job.id} after {failures} attempts: {error}")
            written = self.store.update_terminal(job.id, JobStatus.FAILED, error=RESULT_UNAVAILABLE_MESSAGE)
            return Outcome.FAILED if written else Outcome.SKIPPED

        logger.warning(f"[Reconciler] Result fetch for {job.id} failed ({failures}/{self.max_fetch_attempts}): {error}")
        self.store.update_progress(job.id, None)
        return Outcome.TRANSIENT

    # --- sweep ---

    async def sweep(self, owner_id: Optional[str] = None, force: bool = False) -> SweepReport:
        """
        Reconcile every due active job (all owners, or one).

        ``force`` ignores the interval tiers, for caller-initiated refreshes.
        """
        report = SweepReport()
        jobs = self.store.list_active(owner_id)
        now = self.clock()
        due = [job for job in jobs if force or self.is_due(job, now)]
        report.skipped += len(jobs) - len(due)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(job: Job) -> Outcome:
            async with semaphore:
                try:
                    return await self.reconcile_job(job)
                except Exception:
                    logger.exception(f"[Reconciler] Unexpected error reconciling {job.id}")
                    return Outcome.ERROR
                finally:
                    self._schedule(job)

        for outcome in await asyncio.gather(*(run(job) for job in due)):
            report.record(outcome)

        self._prune_schedule(owner_id, {job.id for job in jobs})

        if due:
            logger.info(
                f"[Reconciler] Sweep: checked={report.checked} completed={report.completed} "
                f"failed={report.failed} skipped={report.skipped} transient={report.transient}"
            )
        return report

    def _prune_schedule(self, owner_id: Optional[str], active_ids: set) -> None:
        """Forget jobs in this sweep's scope that are no longer active."""
        stale = [
            job_id for job_id, (owner, _) in self._next_due.items()
            if job_id not in active_ids and (owner_id is None or owner == owner_id)
        ]
        for job_id in stale:
            del self._next_due[job_id]

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Sweep every tick until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"[Reconciler] Started (tick={self.tick_seconds}s, concurrency={self.concurrency})")
        while not stop_event.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("[Reconciler] Sweep failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("[Reconciler] Stopped")


__all__ = ["Reconciler", "SweepReport", "Outcome", "RESULT_UNAVAILABLE_MESSAGE", "NO_RESULT_MESSAGE"]
