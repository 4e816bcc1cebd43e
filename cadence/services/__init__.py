# Services package - business logic and external integrations
from cadence.services.vault import CredentialVault, get_vault
from cadence.services.storage import StorageFallbackUploader, StorageSettings, PersistResult
from cadence.services.credentials import CredentialStore
from cadence.services.job_store import JobStore
from cadence.services.chain import JobChainCoordinator
from cadence.services.jobs import JobService

__all__ = [
    "CredentialVault",
    "get_vault",
    "StorageFallbackUploader",
    "StorageSettings",
    "PersistResult",
    "CredentialStore",
    "JobStore",
    "JobChainCoordinator",
    "JobService",
]
