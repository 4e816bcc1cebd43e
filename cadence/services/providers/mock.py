"""
Mock Provider Adapters
Time-based stand-ins for every provider so the whole stack runs without keys.

Each mock keeps the real adapter's validation, capabilities and storage
targets and only replaces the network calls. The submission timestamp is
encoded in the reference, so status is a pure function of elapsed time.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional

from cadence.models.job import JobStatus
from cadence.services.providers.base import (
    ProviderPhase,
    ProviderResult,
    ProviderStatus,
    SubmitResult,
)
from cadence.services.providers.fal import (
    ElevenLabsMusicAdapter,
    FalMiniMaxMusicAdapter,
    MiniMaxVoiceCloneAdapter,
    QwenVoiceCloneAdapter,
)
from cadence.services.providers.minimax import MiniMaxMusicAdapter
from cadence.services.providers.replicate import ReplicateConversionAdapter, ReplicateTrainingAdapter

logger = logging.getLogger(__name__)

MOCK_AUDIO_URL = "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3"
MOCK_PREVIEW_AUDIO_URL = "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-2.mp3"
MOCK_CONVERTED_AUDIO_URL = "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-3.mp3"
MOCK_EMBEDDING_URL = "https://storage.googleapis.com/mock/speaker_embedding.safetensors"
MOCK_MODEL_URL = "https://replicate.delivery/mock/rvc-model.zip"


class MockTimelineMixin:
    """
    Simulated provider timeline.

    ``queued_ms``: time spent queued; ``running_ms``: time until completion.
    """

    queued_ms = 2000
    running_ms = 5000
    mock_result_url = MOCK_AUDIO_URL

    def __init__(self, api_key: Optional[str] = None, clock: Callable[[], float] = time.time, **kwargs):
        super().__init__(api_key, **kwargs)
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _elapsed_ms(self, external_ref: str) -> int:
        try:
            started = int(external_ref.split("-")[-2])
        except (IndexError, ValueError):
            started = 0
        return self._now_ms() - started

    def mock_metadata(self) -> Dict[str, Any]:
        return {}

    async def submit(self, input: Dict[str, Any]) -> SubmitResult:
        ref = f"mock-{self.provider_kind}-{self._now_ms()}-{uuid.uuid4().hex[:7]}"
        logger.info(f"[MOCK] {self.provider_kind} submitted: {ref}")
        return SubmitResult(external_ref=ref)

    async def check_status(self, external_ref: str) -> ProviderStatus:
        elapsed = self._elapsed_ms(external_ref)
        if elapsed < self.queued_ms:
            return ProviderStatus(phase=ProviderPhase.QUEUED, progress=0)
        if elapsed < self.running_ms:
            span = max(1, self.running_ms - self.queued_ms)
            progress = min(90, int((elapsed - self.queued_ms) / span * 90))
            return ProviderStatus(phase=ProviderPhase.RUNNING, progress=progress, logs="Processing...")

        status = ProviderStatus(phase=ProviderPhase.SUCCEEDED, progress=100)
        if not self.capabilities.has_separate_result_fetch:
            status.result_url = self.mock_result_url
            status.metadata = self.mock_metadata()
        return status

    async def fetch_result(self, external_ref: str) -> ProviderResult:
        return ProviderResult(result_url=self.mock_result_url, metadata=self.mock_metadata())

    async def cancel(self, external_ref: str) -> None:
        logger.info(f"[MOCK] Cancelling {self.provider_kind}: {external_ref}")


class MockElevenLabsMusicAdapter(MockTimelineMixin, ElevenLabsMusicAdapter):
    pass


class MockFalMiniMaxMusicAdapter(MockTimelineMixin, FalMiniMaxMusicAdapter):
    pass


class MockMiniMaxVoiceCloneAdapter(MockTimelineMixin, MiniMaxVoiceCloneAdapter):
    running_ms = 4000
    mock_result_url = MOCK_PREVIEW_AUDIO_URL

    def mock_metadata(self) -> Dict[str, Any]:
        return {"voice_id": f"mock-voice-id-{self._now_ms()}", "preview_audio_url": MOCK_PREVIEW_AUDIO_URL}


class MockQwenVoiceCloneAdapter(MockTimelineMixin, QwenVoiceCloneAdapter):
    running_ms = 4000
    mock_result_url = MOCK_EMBEDDING_URL

    def mock_metadata(self) -> Dict[str, Any]:
        return {"speaker_embedding_url": MOCK_EMBEDDING_URL}


class MockReplicateTrainingAdapter(MockTimelineMixin, ReplicateTrainingAdapter):
    queued_ms = 3000
    running_ms = 8000
    mock_result_url = MOCK_MODEL_URL


class MockReplicateConversionAdapter(MockTimelineMixin, ReplicateConversionAdapter):
    running_ms = 6000
    mock_result_url = MOCK_CONVERTED_AUDIO_URL


class MockMiniMaxMusicAdapter(MiniMaxMusicAdapter):
    """Synchronous mock: returns a completed track immediately."""

    async def submit(self, input: Dict[str, Any]) -> SubmitResult:
        logger.info("[MOCK] MiniMax v2.5 generation")
        return SubmitResult(
            external_ref=None,
            status=JobStatus.COMPLETED,
            result_url=MOCK_AUDIO_URL,
            metadata={"duration_ms": 180000},
        )


class MockFileHost:
    """Pretends to host uploads on fal storage."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key

    async def upload_bytes(self, data: bytes, filename: str, content_type: str) -> str:
        logger.info(f"[MOCK] Uploading {filename} ({len(data)} bytes) to fal storage")
        return f"https://v3.fal.media/files/mock/{filename}"


MOCK_ADAPTERS = {
    cls.provider_kind: cls
    for cls in (
        MockElevenLabsMusicAdapter,
        MockFalMiniMaxMusicAdapter,
        MockMiniMaxMusicAdapter,
        MockMiniMaxVoiceCloneAdapter,
        MockQwenVoiceCloneAdapter,
        MockReplicateTrainingAdapter,
        MockReplicateConversionAdapter,
    )
}


__all__ = ["MOCK_ADAPTERS", "MockFileHost", "MockTimelineMixin"]
