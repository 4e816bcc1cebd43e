"""
Provider Adapter Contract
Uniform submit / check / fetch / cancel over queue, prediction and
synchronous providers.

Adapters declare what they can do through ``ProviderCapabilities``; the
engine consults the flags instead of branching on the concrete provider.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx

from cadence.core.errors import ProviderRejected, ProviderUnavailable
from cadence.models.job import JobStatus

logger = logging.getLogger(__name__)


class ProviderPhase(str, Enum):
    """Provider-side lifecycle, normalized across providers."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class ProviderCapabilities:
    supports_cancel: bool = False
    has_separate_result_fetch: bool = False
    is_synchronous: bool = False
    supports_duration: bool = False
    reports_progress: bool = False


@dataclass
class SubmitResult:
    """
    Outcome of a submission.

    Queue and prediction providers return only ``external_ref``.
    Synchronous providers return a terminal ``status`` with either
    ``result_url`` or ``error`` and no reference.
    """
    external_ref: Optional[str]
    status: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderStatus:
    phase: ProviderPhase
    result_url: Optional[str] = None
    error: Optional[str] = None
    progress: Optional[int] = None
    logs: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderResult:
    result_url: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


_PHASE_TO_STATUS = {
    ProviderPhase.QUEUED: JobStatus.PENDING,
    ProviderPhase.RUNNING: JobStatus.PROCESSING,
    ProviderPhase.SUCCEEDED: JobStatus.COMPLETED,
    ProviderPhase.FAILED: JobStatus.FAILED,
    ProviderPhase.CANCELED: JobStatus.FAILED,
}


def map_phase(phase: ProviderPhase, current_status: Optional[str] = None) -> str:
    """
    Map a provider phase onto the domain status.

    A queued report for a job already processing keeps it processing.
    """
    status = _PHASE_TO_STATUS[phase]
    if status == JobStatus.PENDING and current_status == JobStatus.PROCESSING:
        return JobStatus.PROCESSING
    return status


def check_length(name: str, value: Optional[str], min_len: int = 0, max_len: Optional[int] = None) -> str:
    """Trimmed string within [min_len, max_len], else ProviderRejected."""
    text = (value or "").strip() if isinstance(value, (str, type(None))) else None
    if text is None:
        raise ProviderRejected(f"{name} must be a string")
    if len(text) < min_len:
        if min_len <= 1:
            raise ProviderRejected(f"{name} is required")
        raise ProviderRejected(f"{name} must be at least {min_len} characters")
    if max_len is not None and len(text) > max_len:
        raise ProviderRejected(f"{name} must be at most {max_len} characters")
    return text


def check_range(name: str, value: Any, low: float, high: float, integer: bool = False):
    """Numeric value within [low, high], else ProviderRejected."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ProviderRejected(f"{name} must be a number")
    if not math.isfinite(number):
        raise ProviderRejected(f"{name} must be a finite number")
    if integer:
        if not number.is_integer():
            raise ProviderRejected(f"{name} must be an integer")
        number = int(number)
    if number < low or number > high:
        raise ProviderRejected(f"{name} must be between {low:g} and {high:g}")
    return number


async def call_with_timeout(awaitable, timeout: float, action: str):
    """Await a provider call; expiry becomes ProviderUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise ProviderUnavailable(f"{action} timed out after {timeout:.0f}s")


def raise_for_provider_response(response: httpx.Response, provider: str) -> None:
    """Map an HTTP error response onto the error taxonomy."""
    code = response.status_code
    if code < 400:
        return
    detail = _error_detail(response)
    if code in (401, 403):
        raise ProviderRejected(f"{provider} rejected the API key: {detail}", details={"status": code})
    if code == 429 or code >= 500:
        raise ProviderUnavailable(f"{provider} unavailable ({code}): {detail}", details={"status": code})
    raise ProviderRejected(f"{provider} rejected the request ({code}): {detail}", details={"status": code})


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(body, dict):
        for key in ("detail", "error", "message", "title"):
            if body.get(key):
                return str(body[key])[:300]
    return str(body)[:300]


class ProviderAdapter(ABC):
    """
    One external capability bound to one API key.

    ``validate`` runs before any external call and returns the normalized
    input that ``submit`` accepts.
    """

    provider_kind: str = ""
    credential_provider: str = ""
    job_kind: str = ""
    capabilities = ProviderCapabilities()

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    @abstractmethod
    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def submit(self, input: Dict[str, Any]) -> SubmitResult:
        ...

    async def check_status(self, external_ref: str) -> ProviderStatus:
        raise NotImplementedError(f"{self.provider_kind} has no status endpoint")

    async def fetch_result(self, external_ref: str) -> ProviderResult:
        raise NotImplementedError(f"{self.provider_kind} returns results with its status")

    async def cancel(self, external_ref: str) -> None:
        if not self.capabilities.supports_cancel:
            logger.debug(f"[Provider] {self.provider_kind} does not support cancellation, skipping")
            return
        raise NotImplementedError

    def result_target(self, job_id: str) -> Optional[Tuple[str, str]]:
        """``(storage_key, content_type)`` for the durable copy of a result, or None to skip it."""
        return None

    def __repr__(self):
        return f"<{type(self).__name__} {self.provider_kind}>"


__all__ = [
    "ProviderPhase",
    "ProviderCapabilities",
    "SubmitResult",
    "ProviderStatus",
    "ProviderResult",
    "ProviderAdapter",
    "map_phase",
    "check_length",
    "check_range",
    "call_with_timeout",
    "raise_for_provider_response",
]
