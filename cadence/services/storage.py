"""
Storage Service
Copies ephemeral provider outputs into the user's durable storage.

Provider result URLs are signed and expire. When the owner has configured
durable storage (Bunny.net Storage or an S3 bucket behind a CDN), completed
artefacts are copied there and served from ``https://<distribution>/<key>``.
Without storage settings the copy is a deliberate no-op and the provider
URL keeps being used.

The uploader never raises: a failed copy degrades to "keep the provider URL".
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

import httpx

from cadence.core.config import get_settings
from cadence.core.errors import DurableStorageFailure

logger = logging.getLogger(__name__)

MOCK_CDN_HOST = "mock-cdn.b-cdn.net"

CONTENT_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "mp4",
    "audio/m4a": "m4a",
    "audio/flac": "flac",
}


@dataclass
class StorageSettings:
    """Owner-configured durable storage."""
    provider: str               # "bunny" | "s3"
    api_key: str                # Bunny AccessKey, or S3 secret access key
    zone: str                   # Bunny storage zone, or S3 bucket
    distribution: str           # CDN host (Bunny pull zone name or full host)
    access_key_id: Optional[str] = None  # S3 only
    region: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass
class PersistResult:
    """Outcome of a durable copy attempt."""
    durable: bool
    url: Optional[str]
    key: Optional[str] = None
    error: Optional[str] = None


def public_url(distribution: str, key: str) -> str:
    """CDN URL for a stored key. A bare Bunny pull zone name gets the b-cdn.net suffix."""
    host = distribution.strip().rstrip("/")
    if host.startswith(("http://", "https://")):
        host = host.split("://", 1)[1]
    if "." not in host:
        host = f"{host}.b-cdn.net"
    return f"https://{host}/{key.lstrip('/')}"


def extension_for(content_type: Optional[str], default: str = "mp3") -> str:
    """File extension for an audio content type."""
    content_type = (content_type or "").lower()
    for mime, ext in CONTENT_EXTENSIONS.items():
        if mime in content_type:
            return ext
    return default


# --- Storage keys ---

def generation_key(job_id: str) -> str:
    return f"generations/{job_id}.mp3"


def embedding_key(job_id: str) -> str:
    return f"voice-embeddings/{job_id}.safetensors"


def preview_key(job_id: str) -> str:
    return f"voice-previews/{job_id}.mp3"


def dataset_key(clone_id: str) -> str:
    return f"rvc-datasets/{clone_id}.zip"


def model_key(job_id: str) -> str:
    return f"rvc-models/{job_id}.zip"


def conversion_key(job_id: str) -> str:
    return f"voice-conversions/{job_id}.mp3"


def recording_key(owner_id: str, timestamp_ms: int, ext: str) -> str:
    return f"voice-recordings/{owner_id}-{timestamp_ms}.{ext}"


def key_from_url(url: Optional[str], settings: StorageSettings) -> Optional[str]:
    """Storage key of a URL served from the owner's distribution, else None."""
    if not url:
        return None
    prefix = public_url(settings.distribution, "")
    if url.startswith(prefix):
        return url[len(prefix):] or None
    return None


# --- Backends ---

class StorageBackend:
    """Object-store style backend: put bytes under a key, delete a key."""

    def __init__(self, settings: StorageSettings):
        self.settings = settings

    async def put(self, data: bytes, key: str, content_type: str) -> str:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    def url_for(self, key: str) -> str:
        return public_url(self.settings.distribution, key)


class BunnyStorageBackend(StorageBackend):
    """Bunny.net Storage Zone fronted by a Pull Zone."""

    def __init__(self, settings: StorageSettings, client: httpx.AsyncClient, base_url: Optional[str] = None):
        super().__init__(settings)
        self.client = client
        self.base_url = (base_url or get_settings().BUNNY_STORAGE_URL).rstrip("/")

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/{self.settings.zone}/{key}"

    async def put(self, data: bytes, key: str, content_type: str) -> str:
        response = await self.client.put(
            self._object_url(key),
            content=data,
            headers={"AccessKey": self.settings.api_key, "Content-Type": content_type},
        )
        if response.status_code >= 400:
            raise DurableStorageFailure(f"Bunny upload failed: {response.status_code} {response.text[:200]}")
        return self.url_for(key)

    async def delete(self, key: str) -> None:
        response = await self.client.delete(
            self._object_url(key),
            headers={"AccessKey": self.settings.api_key},
        )
        # 404 is okay - file might already be deleted
        if response.status_code >= 400 and response.status_code != 404:
            raise DurableStorageFailure(f"Bunny delete failed: {response.status_code} {response.text[:200]}")


class S3StorageBackend(StorageBackend):
    """S3-compatible bucket behind a CDN distribution."""

    def __init__(self, settings: StorageSettings):
        super().__init__(settings)
        import boto3
        from botocore.config import Config
        self.s3 = boto3.client(
            "s3",
            endpoint_url=settings.endpoint or None,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.api_key,
            region_name=settings.region or "us-east-1",
            config=Config(signature_version="s3v4"),
        )

    async def put(self, data: bytes, key: str, content_type: str) -> str:
        # boto3 is blocking
        await asyncio.to_thread(
            self.s3.put_object,
            Bucket=self.settings.zone,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        return self.url_for(key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.s3.delete_object, Bucket=self.settings.zone, Key=key)


class MockStorageBackend(StorageBackend):
    """Development backend that pretends every write succeeds."""

    async def put(self, data: bytes, key: str, content_type: str) -> str:
        logger.info(f"[MOCK] Uploading {len(data)} bytes to storage: {key}")
        return public_url(MOCK_CDN_HOST, key)

    async def delete(self, key: str) -> None:
        logger.info(f"[MOCK] Deleting from storage: {key}")


# --- Uploader ---

class StorageFallbackUploader:
    """
    Copies provider artefacts into durable storage when it is configured.

    ``persist`` and ``remove`` never raise.
    """

    def __init__(
        self,
        mock: Optional[bool] = None,
        upload_timeout: Optional[float] = None,
        delete_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.mock = settings.MOCK_STORAGE if mock is None else mock
        self.upload_timeout = upload_timeout or settings.STORAGE_UPLOAD_TIMEOUT
        self.delete_timeout = delete_timeout or settings.STORAGE_DELETE_TIMEOUT
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=self._transport)

    def backend_for(self, settings: StorageSettings, client: httpx.AsyncClient) -> StorageBackend:
        if self.mock:
            return MockStorageBackend(settings)
        if settings.provider == "s3":
            return S3StorageBackend(settings)
        return BunnyStorageBackend(settings, client)

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        logger.info(f"[Storage] Downloading artefact from: {url.split('?')[0]}")
        response = await client.get(url)
        if response.status_code >= 400:
            raise DurableStorageFailure(f"Failed to download artefact: {response.status_code}")
        return response.content

    async def persist(
        self,
        source: Union[str, bytes],
        target_name: str,
        content_type: str,
        settings: Optional[StorageSettings],
    ) -> PersistResult:
        """
        Copy a provider URL (or raw bytes) to ``target_name``.

        Returns:
            PersistResult with ``durable=True`` and the CDN URL on success,
            otherwise ``durable=False`` with the source URL (None for bytes)
            and a diagnostic ``error`` when an attempt was made.
        """
        source_url = source if isinstance(source, str) else None

        if settings is None:
            logger.debug(f"[Storage] No durable storage configured, keeping provider URL for {target_name}")
            return PersistResult(durable=False, url=source_url)

        try:
            async with self._client(self.upload_timeout) as client:
                data = source if isinstance(source, bytes) else await self._download(client, source)
                backend = self.backend_for(settings, client)
                url = await asyncio.wait_for(
                    backend.put(data, target_name, content_type),
                    timeout=self.upload_timeout,
                )
            logger.info(f"[Storage] Stored {target_name} -> {url}")
            return PersistResult(durable=True, url=url, key=target_name)
        except asyncio.TimeoutError:
            error = f"Upload timed out after {self.upload_timeout:.0f}s"
        except (DurableStorageFailure, httpx.HTTPError) as e:
            error = str(e) or type(e).__name__
        except Exception as e:
            # boto3/botocore and anything else a backend raises
            error = f"{type(e).__name__}: {e}"

        logger.error(f"[Storage] Durable copy of {target_name} failed: {error} - keeping provider URL")
        return PersistResult(durable=False, url=source_url, key=target_name, error=error)

    async def remove(self, settings: Optional[StorageSettings], target_name: str) -> bool:
        """Best-effort delete of a stored key. Failures are logged and swallowed."""
        if settings is None:
            return False
        try:
            async with self._client(self.delete_timeout) as client:
                backend = self.backend_for(settings, client)
                await asyncio.wait_for(backend.delete(target_name), timeout=self.delete_timeout)
            logger.info(f"[Storage] Deleted {target_name}")
            return True
        except Exception as e:
            logger.warning(f"[Storage] Could not delete {target_name}: {e}")
            return False

    async def remove_many(self, settings: Optional[StorageSettings], target_names: Iterable[str]) -> List[bool]:
        """Delete several keys concurrently."""
        names = list(dict.fromkeys(n for n in target_names if n))
        if settings is None or not names:
            return []
        return list(await asyncio.gather(*(self.remove(settings, name) for name in names)))


__all__ = [
    "StorageSettings",
    "PersistResult",
    "StorageBackend",
    "BunnyStorageBackend",
    "S3StorageBackend",
    "MockStorageBackend",
    "StorageFallbackUploader",
    "public_url",
    "extension_for",
    "key_from_url",
    "generation_key",
    "embedding_key",
    "preview_key",
    "dataset_key",
    "model_key",
    "conversion_key",
    "recording_key",
]
