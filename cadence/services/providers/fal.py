"""
fal.ai Queue Adapters
Music generation and voice cloning through the fal.ai queue.

Queue protocol: ``submit`` returns a request id, ``status`` reports
Queued / InProgress / Completed, and the payload needs a separate
``result`` call once completed.
"""

import logging
from typing import Any, Dict, Optional

import fal_client
import httpx

from cadence.core.config import get_settings
from cadence.core.errors import ProviderRejected, ProviderUnavailable, ResultFetchFailed
from cadence.models.credential import CredentialProvider
from cadence.models.job import JobKind
from cadence.services.providers.base import (
    ProviderAdapter,
    ProviderCapabilities,
    ProviderPhase,
    ProviderResult,
    ProviderStatus,
    SubmitResult,
    check_length,
    check_range,
)
from cadence.services.storage import embedding_key, generation_key, preview_key

logger = logging.getLogger(__name__)

QUEUE_CAPABILITIES = ProviderCapabilities(supports_cancel=True, has_separate_result_fetch=True)

MINIMAX_SAMPLE_RATES = (16000, 24000, 32000, 44100)
MINIMAX_BITRATES = (32000, 64000, 128000, 256000)
MINIMAX_FORMATS = ("mp3", "wav", "pcm", "flac")
MINIMAX_VOICE_MODELS = ("speech-02-hd", "speech-02-turbo", "speech-01-hd", "speech-01-turbo")


def translate_fal_error(e: Exception, action: str) -> Exception:
    """Map a fal_client / httpx exception onto the error taxonomy."""
    if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
        return ProviderUnavailable(f"fal.ai {action} failed: {type(e).__name__}")

    status = getattr(e, "status_code", None)
    if status is None and isinstance(getattr(e, "response", None), httpx.Response):
        status = e.response.status_code

    if status in (401, 403):
        return ProviderRejected(f"fal.ai rejected the API key: {e}", details={"status": status})
    if status is not None and 400 <= status < 500 and status != 429:
        return ProviderRejected(f"fal.ai rejected the request: {e}", details={"status": status})
    return ProviderUnavailable(f"fal.ai {action} failed: {e}", details={"status": status})


def _log_messages(logs) -> Optional[str]:
    if not logs:
        return None
    lines = [entry.get("message", "") if isinstance(entry, dict) else str(entry) for entry in logs]
    return "\n".join(line for line in lines if line) or None


class FalQueueAdapter(ProviderAdapter):
    """Shared submit / status / result / cancel against one fal application."""

    credential_provider = CredentialProvider.FAL
    capabilities = QUEUE_CAPABILITIES
    application: str = ""
    failure_message = "Request failed"

    def __init__(self, api_key: Optional[str], client: Optional[fal_client.AsyncClient] = None):
        super().__init__(api_key)
        self._client = client

    @property
    def client(self) -> fal_client.AsyncClient:
        if self._client is None:
            self._client = fal_client.AsyncClient(
                key=self.api_key,
                default_timeout=get_settings().PROVIDER_SUBMIT_TIMEOUT,
            )
        return self._client

    def arguments(self, input: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def parse_result(self, data: Dict[str, Any]) -> ProviderResult:
        raise NotImplementedError

    async def submit(self, input: Dict[str, Any]) -> SubmitResult:
        try:
            handle = await self.client.submit(self.application, arguments=self.arguments(input))
        except (ProviderRejected, ProviderUnavailable):
            raise
        except Exception as e:
            raise translate_fal_error(e, "submit")
        logger.info(f"[fal] Submitted {self.application}: {handle.request_id}")
        return SubmitResult(external_ref=handle.request_id)

    async def check_status(self, external_ref: str) -> ProviderStatus:
        try:
            status = await self.client.status(self.application, external_ref, with_logs=True)
        except Exception as e:
            raise translate_fal_error(e, "status check")

        logs = _log_messages(getattr(status, "logs", None))
        if isinstance(status, fal_client.Queued):
            return ProviderStatus(phase=ProviderPhase.QUEUED, metadata={"queue_position": status.position})
        if isinstance(status, fal_client.Completed):
            error = getattr(status, "error", None)
            if error:
                return ProviderStatus(phase=ProviderPhase.FAILED, error=str(error) or self.failure_message, logs=logs)
            return ProviderStatus(phase=ProviderPhase.SUCCEEDED, logs=logs)
        # InProgress, and anything newer the client may add
        return ProviderStatus(phase=ProviderPhase.RUNNING, logs=logs)

    async def fetch_result(self, external_ref: str) -> ProviderResult:
        try:
            data = await self.client.result(self.application, external_ref)
        except Exception as e:
            raise ResultFetchFailed(f"fal.ai result fetch failed: {e}") from e
        return self.parse_result(data or {})

    async def cancel(self, external_ref: str) -> None:
        try:
            await self.client.cancel(self.application, external_ref)
        except Exception as e:
            raise translate_fal_error(e, "cancel")
        logger.info(f"[fal] Cancelled {self.application}: {external_ref}")


# --- Music ---

class FalMusicAdapter(FalQueueAdapter):
    job_kind = JobKind.GENERATION
    failure_message = "Generation failed"

    def parse_result(self, data: Dict[str, Any]) -> ProviderResult:
        audio = data.get("audio") or {}
        metadata = {}
        if audio.get("content_type"):
            metadata["content_type"] = audio["content_type"]
        return ProviderResult(result_url=audio.get("url"), metadata=metadata)

    def result_target(self, job_id: str):
        return generation_key(job_id), "audio/mpeg"


class ElevenLabsMusicAdapter(FalMusicAdapter):
    """ElevenLabs Music: prompt-based, optional duration and instrumental switch."""

    provider_kind = "elevenlabs"
    application = "fal-ai/elevenlabs/music"
    capabilities = ProviderCapabilities(
        supports_cancel=True,
        has_separate_result_fetch=True,
        supports_duration=True,
    )

    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        prompt = check_length("ElevenLabs prompt", input.get("prompt"), 10, 300)
        normalized = {
            "prompt": prompt,
            "output_format": input.get("output_format") or "mp3_44100_128",
            "force_instrumental": bool(input.get("force_instrumental")),
        }
        if input.get("duration_ms") is not None:
            normalized["duration_ms"] = check_range("duration_ms", input["duration_ms"], 3000, 600000, integer=True)
        return normalized

    def arguments(self, input: Dict[str, Any]) -> Dict[str, Any]:
        args = {"prompt": input["prompt"], "output_format": input.get("output_format") or "mp3_44100_128"}
        if input.get("duration_ms"):
            args["music_length_ms"] = input["duration_ms"]
        if input.get("force_instrumental"):
            args["force_instrumental"] = True
        return args


class FalMiniMaxMusicAdapter(FalMusicAdapter):
    """MiniMax Music v2 on fal: style prompt plus lyrics."""

    provider_kind = "minimax-v2"
    application = "fal-ai/minimax-music/v2"

    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "prompt": check_length("MiniMax v2 style prompt", input.get("prompt"), 10, 300),
            "lyrics": check_length("MiniMax v2 lyrics", input.get("lyrics"), 10, 3000),
            "audio_settings": validate_audio_settings(input.get("audio_settings")),
        }

    def arguments(self, input: Dict[str, Any]) -> Dict[str, Any]:
        audio = input.get("audio_settings") or {}
        return {
            "prompt": input["prompt"],
            "lyrics_prompt": input["lyrics"],
            "audio_setting": {
                "sample_rate": audio.get("sample_rate") or 44100,
                "bitrate": audio.get("bitrate") or 256000,
                "format": audio.get("format") or "mp3",
            },
        }


def validate_audio_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """MiniMax audio settings; unset fields fall back to provider defaults."""
    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ProviderRejected("audio_settings must be an object")
    result = {}
    for key, allowed in (("sample_rate", MINIMAX_SAMPLE_RATES), ("bitrate", MINIMAX_BITRATES)):
        if settings.get(key) is None:
            continue
        try:
            value = int(settings[key])
        except (TypeError, ValueError):
            value = None
        if value not in allowed:
            raise ProviderRejected(f"{key} must be one of {allowed}")
        result[key] = value
    if settings.get("format"):
        if settings["format"] not in MINIMAX_FORMATS:
            raise ProviderRejected(f"format must be one of {MINIMAX_FORMATS}")
        result["format"] = settings["format"]
    return result


# --- Voice clone ---

class FalVoiceCloneAdapter(FalQueueAdapter):
    job_kind = JobKind.CLONE
    failure_message = "Voice cloning failed"

    def _audio_url(self, input: Dict[str, Any]) -> str:
        url = check_length("audio_url", input.get("audio_url"), 1)
        if not url.startswith(("http://", "https://")):
            raise ProviderRejected("audio_url must be an http(s) URL")
        return url


class MiniMaxVoiceCloneAdapter(FalVoiceCloneAdapter):
    """MiniMax voice clone: returns a custom voice id and a TTS preview."""

    provider_kind = "minimax-clone"
    application = "fal-ai/minimax/voice-clone"

    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        normalized = {"audio_url": self._audio_url(input)}
        for key in ("noise_reduction", "volume_normalization"):
            if input.get(key) is not None:
                normalized[key] = bool(input[key])
        if input.get("preview_text"):
            normalized["preview_text"] = check_length("preview_text", input["preview_text"], 1, 1000)
        if input.get("model"):
            if input["model"] not in MINIMAX_VOICE_MODELS:
                raise ProviderRejected(f"model must be one of {MINIMAX_VOICE_MODELS}")
            normalized["model"] = input["model"]
        return normalized

    def arguments(self, input: Dict[str, Any]) -> Dict[str, Any]:
        args = {"audio_url": input["audio_url"]}
        if input.get("noise_reduction") is not None:
            args["noise_reduction"] = input["noise_reduction"]
        if input.get("volume_normalization") is not None:
            args["need_volume_normalization"] = input["volume_normalization"]
        if input.get("preview_text"):
            args["text"] = input["preview_text"]
        if input.get("model"):
            args["model"] = input["model"]
        return args

    def parse_result(self, data: Dict[str, Any]) -> ProviderResult:
        preview_url = (data.get("audio") or {}).get("url")
        return ProviderResult(
            result_url=preview_url,
            metadata={"voice_id": data.get("custom_voice_id"), "preview_audio_url": preview_url},
        )

    def result_target(self, job_id: str):
        return preview_key(job_id), "audio/mpeg"


class QwenVoiceCloneAdapter(FalVoiceCloneAdapter):
    """Qwen 3 TTS clone: returns a speaker embedding file."""

    provider_kind = "qwen-clone"
    application = "fal-ai/qwen-3-tts/clone-voice/1.7b"

    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        normalized = {"audio_url": self._audio_url(input)}
        if input.get("reference_text"):
            normalized["reference_text"] = check_length("reference_text", input["reference_text"], 1, 2000)
        return normalized

    def arguments(self, input: Dict[str, Any]) -> Dict[str, Any]:
        args = {"audio_url": input["audio_url"]}
        if input.get("reference_text"):
            args["reference_text"] = input["reference_text"]
        return args

    def parse_result(self, data: Dict[str, Any]) -> ProviderResult:
        embedding_url = (data.get("speaker_embedding") or {}).get("url")
        return ProviderResult(result_url=embedding_url, metadata={"speaker_embedding_url": embedding_url})

    def result_target(self, job_id: str):
        return embedding_key(job_id), "application/octet-stream"


# --- File hosting ---

class FalFileHost:
    """fal.ai storage, used to host recordings and datasets when the owner has no durable storage."""

    def __init__(self, api_key: str, client: Optional[fal_client.AsyncClient] = None):
        self.api_key = api_key
        self._client = client

    @property
    def client(self) -> fal_client.AsyncClient:
        if self._client is None:
            self._client = fal_client.AsyncClient(
                key=self.api_key,
                default_timeout=get_settings().STORAGE_UPLOAD_TIMEOUT,
            )
        return self._client

    async def upload_bytes(self, data: bytes, filename: str, content_type: str) -> str:
        try:
            url = await self.client.upload(data, content_type, file_name=filename)
        except Exception as e:
            raise translate_fal_error(e, "upload")
        logger.info(f"[fal] Uploaded {filename} ({len(data)} bytes) to fal storage")
        return url


__all__ = [
    "FalQueueAdapter",
    "FalMusicAdapter",
    "ElevenLabsMusicAdapter",
    "FalMiniMaxMusicAdapter",
    "FalVoiceCloneAdapter",
    "MiniMaxVoiceCloneAdapter",
    "QwenVoiceCloneAdapter",
    "FalFileHost",
    "translate_fal_error",
    "validate_audio_settings",
]
