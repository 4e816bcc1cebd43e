"""
Error Taxonomy
Exceptions raised across the engine, with the HTTP status each maps to.

Submission-time errors propagate to the caller. Reconciliation-time errors
are absorbed into job state (or retried on the next tick) and never escape
the sweep.
"""

from typing import Optional


class CadenceError(Exception):
    """Base exception for engine errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CredentialMissing(CadenceError):
    """No usable key is configured for a provider. Surfaced verbatim."""

    status_code = 400

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(
            message or f"Please add your {provider} API key in Settings before using this feature",
            details={"provider": provider},
        )
        self.provider = provider


class CredentialCorrupt(CadenceError):
    """Stored ciphertext failed integrity checks. Never partially decrypted."""

    status_code = 500


class VaultMisconfigured(CadenceError):
    """The server secret the vault derives keys from is not configured."""

    status_code = 500


class ProviderRejected(CadenceError):
    """Provider (or local validation) rejected the input. Not retried."""

    status_code = 422


class ProviderUnavailable(CadenceError):
    """Transient provider condition: network error, timeout, 429 or 5xx."""

    status_code = 503
    retryable = True


class ResultFetchFailed(ProviderUnavailable):
    """Queue provider reported completion but the result fetch failed."""


class PreconditionFailed(CadenceError):
    """Chain ordering violation. The job is never created."""

    status_code = 409


class DurableStorageFailure(CadenceError):
    """Durable copy failed. Internal to the uploader, never surfaced as job failure."""

    retryable = True


class JobNotFound(CadenceError):
    """Owner-scoped lookup miss."""

    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", details={"job_id": job_id})


class InvalidJobState(CadenceError):
    """Operation is not allowed in the job's current status."""

    status_code = 409


__all__ = [
    "CadenceError",
    "CredentialMissing",
    "CredentialCorrupt",
    "VaultMisconfigured",
    "ProviderRejected",
    "ProviderUnavailable",
    "ResultFetchFailed",
    "PreconditionFailed",
    "DurableStorageFailure",
    "JobNotFound",
    "InvalidJobState",
]
