"""
Training Dataset Packaging
The RVC trainer expects a .zip of audio files; a clone's source recording
is downloaded and wrapped as ``voice-sample.<ext>``.
"""

import io
import logging
import zipfile
from dataclasses import dataclass
from typing import Optional

import httpx

from cadence.core.config import get_settings
from cadence.core.errors import ProviderRejected, ProviderUnavailable
from cadence.services.storage import extension_for

logger = logging.getLogger(__name__)


@dataclass
class DatasetArchive:
    data: bytes
    sample_name: str
    source_size: int


class DatasetPackager:
    """Downloads source audio and zips it for training."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout or get_settings().STORAGE_UPLOAD_TIMEOUT
        self._transport = transport

    async def package(self, audio_url: str) -> DatasetArchive:
        logger.info(f"[Dataset] Downloading audio from: {audio_url.split('?')[0]}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, transport=self._transport) as client:
                response = await client.get(audio_url)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Failed to download audio: {type(e).__name__}") from e

        if response.status_code >= 500:
            raise ProviderUnavailable(f"Failed to download audio: {response.status_code}")
        if response.status_code >= 400:
            raise ProviderRejected(f"Failed to download audio: {response.status_code}")
        if not response.content:
            raise ProviderRejected("Source audio is empty")

        sample_name = f"voice-sample.{extension_for(response.headers.get('content-type'))}"
        return DatasetArchive(
            data=zip_sample(response.content, sample_name),
            sample_name=sample_name,
            source_size=len(response.content),
        )


def zip_sample(audio: bytes, sample_name: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=5) as archive:
        archive.writestr(sample_name, audio)
    data = buffer.getvalue()
    logger.info(f"[Dataset] Created zip with {sample_name}: {len(audio)} -> {len(data)} bytes")
    return data


__all__ = ["DatasetPackager", "DatasetArchive", "zip_sample"]
