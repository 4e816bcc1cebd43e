"""
Replicate Prediction Adapters
RVC model training and RVC v2 voice conversion over Replicate's HTTP API.

Prediction protocol: ``POST /predictions`` returns a prediction id and
``GET /predictions/{id}`` returns phase, logs and, once succeeded, the
output. There is no separate result fetch.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from cadence.core.config import get_settings
from cadence.core.errors import ProviderRejected, ProviderUnavailable
from cadence.models.credential import CredentialProvider
from cadence.models.job import JobKind
from cadence.services.providers.base import (
    ProviderAdapter,
    ProviderCapabilities,
    ProviderPhase,
    ProviderStatus,
    SubmitResult,
    check_length,
    check_range,
    raise_for_provider_response,
)
from cadence.services.storage import conversion_key, model_key

logger = logging.getLogger(__name__)

RVC_TRAINING_MODEL = "replicate/train-rvc-model"
RVC_V2_MODEL = "zsxkib/realistic-voice-cloning"
RVC_V2_VERSION = "0a9c7c558af4c0f20667c1bd1260ce32a2879944a0b9e44e1398660c077b1550"

PREDICTION_CAPABILITIES = ProviderCapabilities(supports_cancel=True, reports_progress=True)

_PHASES = {
    "starting": ProviderPhase.QUEUED,
    "processing": ProviderPhase.RUNNING,
    "succeeded": ProviderPhase.SUCCEEDED,
    "failed": ProviderPhase.FAILED,
    "canceled": ProviderPhase.CANCELED,
    "aborted": ProviderPhase.CANCELED,
}

EPOCH_PATTERN = re.compile(r"Epoch (\d+)")


def output_url(output: Any) -> Optional[str]:
    """Replicate outputs are a URL string or a list whose first entry is the URL."""
    if isinstance(output, str):
        return output
    if isinstance(output, list) and output and isinstance(output[0], str):
        return output[0]
    return None


class ReplicatePredictionAdapter(ProviderAdapter):
    """Shared prediction create / get / cancel."""

    credential_provider = CredentialProvider.REPLICATE
    capabilities = PREDICTION_CAPABILITIES
    failure_message = "Prediction failed"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key)
        settings = get_settings()
        self.base_url = (base_url or settings.REPLICATE_API_URL).rstrip("/")
        self.submit_timeout = settings.PROVIDER_SUBMIT_TIMEOUT
        self.status_timeout = settings.PROVIDER_STATUS_TIMEOUT
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    async def _request(self, method: str, path: str, timeout: float, json: Optional[dict] = None) -> Dict[str, Any]:
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Replicate request failed: {type(e).__name__}: {e}") from e
        raise_for_provider_response(response, "Replicate")
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable("Replicate returned a non-JSON response") from e

    def prediction_path(self) -> str:
        return "/predictions"

    def prediction_body(self, input: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def estimate_progress(self, prediction: Dict[str, Any], phase: ProviderPhase) -> Optional[int]:
        return None

    async def submit(self, input: Dict[str, Any]) -> SubmitResult:
        prediction = await self._request(
            "POST", self.prediction_path(), self.submit_timeout, json=self.prediction_body(input)
        )
        prediction_id = prediction.get("id")
        if not prediction_id:
            raise ProviderUnavailable("Replicate did not return a prediction id")
        logger.info(f"[Replicate] Created prediction {prediction_id} for {self.provider_kind}")
        return SubmitResult(external_ref=prediction_id)

    async def check_status(self, external_ref: str) -> ProviderStatus:
        prediction = await self._request("GET", f"/predictions/{external_ref}", self.status_timeout)
        raw_status = prediction.get("status") or "processing"
        phase = _PHASES.get(raw_status, ProviderPhase.RUNNING)
        logs = prediction.get("logs") if isinstance(prediction.get("logs"), str) else None

        status = ProviderStatus(phase=phase, logs=logs, metadata={"provider_status": raw_status})
        if phase == ProviderPhase.SUCCEEDED:
            status.result_url = output_url(prediction.get("output"))
            status.progress = 100
        elif phase == ProviderPhase.FAILED:
            error = prediction.get("error")
            status.error = error if isinstance(error, str) and error else self.failure_message
        elif phase == ProviderPhase.CANCELED:
            status.error = "Cancelled on provider"
        else:
            status.progress = self.estimate_progress(prediction, phase)
        return status

    async def cancel(self, external_ref: str) -> None:
        await self._request("POST", f"/predictions/{external_ref}/cancel", self.status_timeout)
        logger.info(f"[Replicate] Cancelled prediction {external_ref}")


class ReplicateTrainingAdapter(ReplicatePredictionAdapter):
    """Trains an RVC v2 voice model from a zipped dataset (~13 minutes)."""

    provider_kind = "rvc-train"
    job_kind = JobKind.TRAINING
    failure_message = "RVC training failed"

    SAMPLE_RATES = ("32k", "40k", "48k")
    VERSIONS = ("v1", "v2")
    F0_METHODS = ("pm", "harvest", "crepe", "rmvpe", "rmvpe_gpu")

    def __init__(self, api_key: Optional[str], **kwargs):
        super().__init__(api_key, **kwargs)
        settings = get_settings()
        self.defaults = {
            "sample_rate": settings.RVC_TRAINING_SAMPLE_RATE,
            "version": settings.RVC_TRAINING_VERSION,
            "f0method": settings.RVC_TRAINING_F0_METHOD,
            "epoch": settings.RVC_TRAINING_EPOCHS,
            "batch_size": settings.RVC_TRAINING_BATCH_SIZE,
        }

    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        normalized = {"dataset_url": check_length("dataset_url", input.get("dataset_url"), 1)}
        for key, allowed in (("sample_rate", self.SAMPLE_RATES), ("version", self.VERSIONS), ("f0method", self.F0_METHODS)):
            value = input.get(key) or self.defaults[key]
            if value not in allowed:
                raise ProviderRejected(f"{key} must be one of {allowed}")
            normalized[key] = value
        normalized["epoch"] = check_range("epoch", input.get("epoch") or self.defaults["epoch"], 1, 1000, integer=True)
        normalized["batch_size"] = check_range(
            "batch_size", input.get("batch_size") or self.defaults["batch_size"], 1, 64, integer=True
        )
        return normalized

    def prediction_path(self) -> str:
        return f"/models/{RVC_TRAINING_MODEL}/predictions"

    def prediction_body(self, input: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "input": {
                "dataset_zip": input["dataset_url"],
                "sample_rate": input.get("sample_rate", self.defaults["sample_rate"]),
                "version": input.get("version", self.defaults["version"]),
                "f0method": input.get("f0method", self.defaults["f0method"]),
                "epoch": input.get("epoch", self.defaults["epoch"]),
                "batch_size": input.get("batch_size", self.defaults["batch_size"]),
            }
        }

    def estimate_progress(self, prediction: Dict[str, Any], phase: ProviderPhase) -> Optional[int]:
        if phase != ProviderPhase.RUNNING:
            return 0
        epochs = EPOCH_PATTERN.findall(prediction.get("logs") or "")
        if not epochs:
            return None
        total = (prediction.get("input") or {}).get("epoch") or self.defaults["epoch"]
        return min(95, int(int(epochs[-1]) / total * 100))

    def result_target(self, job_id: str):
        return model_key(job_id), "application/zip"


class ReplicateConversionAdapter(ReplicatePredictionAdapter):
    """RVC v2 voice conversion with a custom trained model."""

    provider_kind = "rvc-v2"
    job_kind = JobKind.CONVERSION
    failure_message = "Conversion failed"

    # name -> (provider field, low, high, integer)
    TUNING = {
        "pitch_shift": ("pitch_change", -12, 12, True),
        "index_rate": ("index_rate", 0, 1, False),
        "filter_radius": ("filter_radius", 0, 7, True),
        "rms_mix_rate": ("rms_mix_rate", 0, 1, False),
        "protect": ("protect", 0, 0.5, False),
    }

    def validate(self, input: Dict[str, Any]) -> Dict[str, Any]:
        normalized = {
            "source_audio_url": check_length("source_audio_url", input.get("source_audio_url"), 1),
            "model_url": check_length("model_url", input.get("model_url"), 1),
        }
        for name, (_, low, high, integer) in self.TUNING.items():
            if input.get(name) is not None:
                normalized[name] = check_range(name, input[name], low, high, integer=integer)
        return normalized

    def prediction_body(self, input: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "song_input": input["source_audio_url"],
            "rvc_model": "CUSTOM",
            "custom_rvc_model_download_url": input["model_url"],
        }
        for name, (field, _, _, _) in self.TUNING.items():
            if input.get(name) is not None:
                body[field] = input[name]
        return {"version": RVC_V2_VERSION, "input": body}

    def estimate_progress(self, prediction: Dict[str, Any], phase: ProviderPhase) -> Optional[int]:
        return 50 if phase == ProviderPhase.RUNNING else 10

    def result_target(self, job_id: str):
        return conversion_key(job_id), "audio/mpeg"


__all__ = [
    "ReplicatePredictionAdapter",
    "ReplicateTrainingAdapter",
    "ReplicateConversionAdapter",
    "output_url",
    "RVC_TRAINING_MODEL",
    "RVC_V2_MODEL",
    "RVC_V2_VERSION",
]
