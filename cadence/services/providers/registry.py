"""
Provider Registry
Maps provider kinds to adapter factories. Mock or real adapters are chosen
once, when the registry is built.
"""

import logging
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Type

from cadence.core.config import get_settings
from cadence.core.errors import ProviderRejected
from cadence.services.providers.base import ProviderAdapter
from cadence.services.providers.fal import (
    ElevenLabsMusicAdapter,
    FalFileHost,
    FalMiniMaxMusicAdapter,
    MiniMaxVoiceCloneAdapter,
    QwenVoiceCloneAdapter,
)
from cadence.services.providers.minimax import MiniMaxMusicAdapter
from cadence.services.providers.mock import MOCK_ADAPTERS, MockFileHost
from cadence.services.providers.replicate import ReplicateConversionAdapter, ReplicateTrainingAdapter

logger = logging.getLogger(__name__)

REAL_ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    cls.provider_kind: cls
    for cls in (
        ElevenLabsMusicAdapter,
        FalMiniMaxMusicAdapter,
        MiniMaxMusicAdapter,
        MiniMaxVoiceCloneAdapter,
        QwenVoiceCloneAdapter,
        ReplicateTrainingAdapter,
        ReplicateConversionAdapter,
    )
}

DEFAULT_PROVIDER_KINDS = {
    "generation": "elevenlabs",
    "clone": "minimax-clone",
    "training": "rvc-train",
    "conversion": "rvc-v2",
}


class ProviderRegistry:
    """Adapter factories keyed by ``provider_kind``."""

    def __init__(
        self,
        adapters: Dict[str, Callable[[Optional[str]], ProviderAdapter]],
        file_host_factory: Callable[[Optional[str]], object],
        mock: bool = False,
    ):
        self._adapters = dict(adapters)
        self._file_host_factory = file_host_factory
        self.mock = mock

    @classmethod
    def from_settings(cls, mock: Optional[bool] = None) -> "ProviderRegistry":
        mock = get_settings().MOCK_PROVIDERS if mock is None else mock
        if mock:
            logger.warning("[Providers] MOCK_PROVIDERS is on: no external provider will be called")
            return cls(MOCK_ADAPTERS, MockFileHost, mock=True)
        return cls(REAL_ADAPTERS, FalFileHost, mock=False)

    def register(self, provider_kind: str, factory: Callable[[Optional[str]], ProviderAdapter]) -> None:
        self._adapters[provider_kind] = factory

    @property
    def provider_kinds(self) -> List[str]:
        return sorted(self._adapters)

    def _factory(self, provider_kind: str):
        try:
            return self._adapters[provider_kind]
        except KeyError:
            raise ProviderRejected(f"Unknown provider: {provider_kind}")

    def create(self, provider_kind: str, api_key: Optional[str]) -> ProviderAdapter:
        """Adapter bound to ``api_key``."""
        return self._factory(provider_kind)(api_key)

    def spec(self, provider_kind: str) -> ProviderAdapter:
        """Unbound adapter, for validation and capability lookups."""
        return self.create(provider_kind, None)

    def credential_provider(self, provider_kind: str) -> str:
        return self.spec(provider_kind).credential_provider

    def create_file_host(self, api_key: Optional[str]):
        return self._file_host_factory(api_key)


@lru_cache()
def get_provider_registry() -> ProviderRegistry:
    return ProviderRegistry.from_settings()


__all__ = ["ProviderRegistry", "get_provider_registry", "REAL_ADAPTERS", "DEFAULT_PROVIDER_KINDS"]
