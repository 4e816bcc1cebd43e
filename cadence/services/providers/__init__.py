# Provider adapters package
from cadence.services.providers.base import (
    ProviderAdapter,
    ProviderCapabilities,
    ProviderPhase,
    ProviderResult,
    ProviderStatus,
    SubmitResult,
    map_phase,
)
from cadence.services.providers.registry import ProviderRegistry, get_provider_registry

__all__ = [
    "ProviderAdapter",
    "ProviderCapabilities",
    "ProviderPhase",
    "ProviderResult",
    "ProviderStatus",
    "SubmitResult",
    "map_phase",
    "ProviderRegistry",
    "get_provider_registry",
]
