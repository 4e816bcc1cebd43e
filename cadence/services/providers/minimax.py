"""
MiniMax Music v2.5 Adapter
Direct, synchronous MiniMax API: the request blocks until the track is
ready and there is nothing to poll or cancel.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from cadence.core.config import get_settings
from cadence.core.errors import ProviderRejected, ProviderUnavailable
from cadence.models.credential import CredentialProvider
from cadence.models.job import JobKind, JobStatus
from cadence.services.providers.base import (
    ProviderAdapter,
    ProviderCapabilities,
    SubmitResult,
    check_length,
    raise_for_provider_response,
)
from cadence.services.providers.fal import validate_audio_settings
from cadence.services.storage import generation_key

logger = logging.getLogger(__name__)

# base_resp.status_code values that mean "bad key" rather than "bad input"
AUTH_ERROR_CODES = (1004, 2049)
RATE_LIMIT_CODES = (1002, 1039)


class MiniMaxMusicAdapter(ProviderAdapter):
    provider_kind = "minimax-v2.5"
    credential_provider = CredentialProvider.MINIMAX
    job_kind = JobKind.GENERATION
    capabilities = ProviderCapabilities(is_synchronous=True)

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key)
        settings = get_settings()
        self.base_url = (base_url or settings.MINIMAX_API_URL).rstrip("/")
        self.model = settings.MINIMAX_MUSIC_MODEL
        self.timeout = settings.SYNC_GENERATION_TIMEOUT
        self._transport = transport

    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        normalized = {
            "lyrics": check_length("MiniMax v2.5 lyrics", input.get("lyrics"), 1, 3500),
            "audio_settings": validate_audio_settings(input.get("audio_settings")),
        }
        prompt = check_length("MiniMax v2.5 prompt", input.get("prompt"), 0, 2000)
        if prompt:
            normalized["prompt"] = prompt
        return normalized

    def _payload(self, input: Dict[str, Any]) -> Dict[str, Any]:
        audio = input.get("audio_settings") or {}
        payload = {
            "model": self.model,
            "lyrics": input["lyrics"],
            "output_format": "url",
            "audio_setting": {
                "sample_rate": audio.get("sample_rate") or 44100,
                "bitrate": audio.get("bitrate") or 256000,
                "format": audio.get("format") or "mp3",
            },
        }
        if input.get("prompt"):
            payload["prompt"] = input["prompt"]
        return payload

    async def submit(self, input: Dict[str, Any]) -> SubmitResult:
        """
        Generate a track and return a terminal result.

        Provider-side generation failures come back as a failed
        ``SubmitResult``; transport problems raise ``ProviderUnavailable``.
        """
        logger.info(f"[MiniMax] Generating with {self.model} ({len(input['lyrics'])} chars of lyrics)")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/music_generation",
                    json=self._payload(input),
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"MiniMax request failed: {type(e).__name__}: {e}") from e

        raise_for_provider_response(response, "MiniMax")
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnavailable("MiniMax returned a non-JSON response") from e

        base_resp = body.get("base_resp") or {}
        code = base_resp.get("status_code", 0)
        message = base_resp.get("status_msg") or "Generation failed"
        if code in AUTH_ERROR_CODES:
            raise ProviderRejected(f"MiniMax rejected the API key: {message}")
        if code in RATE_LIMIT_CODES:
            raise ProviderUnavailable(f"MiniMax rate limited: {message}")
        if code != 0:
            return SubmitResult(external_ref=None, status=JobStatus.FAILED, error=message)

        data = body.get("data") or {}
        audio_url = data.get("audio")
        if not audio_url:
            return SubmitResult(external_ref=None, status=JobStatus.FAILED, error="MiniMax returned no audio")

        extra = body.get("extra_info") or {}
        metadata = {}
        if extra.get("music_duration") is not None:
            metadata["duration_ms"] = extra["music_duration"]
        return SubmitResult(external_ref=None, status=JobStatus.COMPLETED, result_url=audio_url, metadata=metadata)

    def result_target(self, job_id: str):
        return generation_key(job_id), "audio/mpeg"


__all__ = ["MiniMaxMusicAdapter"]
