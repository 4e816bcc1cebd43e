from __future__ import annotations

import asyncio
from typing import List

import httpx

from cadence.services.storage import (
    MOCK_CDN_HOST,
    StorageFallbackUploader,
    StorageSettings,
    extension_for,
    key_from_url,
    public_url,
)
from tests.fakes import BUNNY

SOURCE = "https://v3.fal.media/files/abc/output.mp3?token=signed"


def bunny_transport(requests: List[httpx.Request], put_status: int = 201, delete_status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.host == "v3.fal.media":
            return httpx.Response(200, content=b"ID3-audio-bytes", headers={"content-type": "audio/mpeg"})
        if request.method == "PUT":
            return httpx.Response(put_status, text="ok" if put_status < 400 else "zone quota exceeded")
        if request.method == "DELETE":
            return httpx.Response(delete_status)
        return httpx.Response(405)

    return httpx.MockTransport(handler)


def test_public_url_forms() -> None:
    assert public_url("cadence", "a/b.mp3") == "https://cadence.b-cdn.net/a/b.mp3"
    assert public_url("cdn.example.com/", "/a.mp3") == "https://cdn.example.com/a.mp3"
    assert public_url("https://d123.cloudfront.net", "x.zip") == "https://d123.cloudfront.net/x.zip"


def test_key_from_url_only_matches_own_distribution() -> None:
    assert key_from_url("https://cadence.b-cdn.net/generations/job_1.mp3", BUNNY) == "generations/job_1.mp3"
    assert key_from_url(SOURCE, BUNNY) is None
    assert key_from_url(None, BUNNY) is None


def test_extension_for() -> None:
    assert extension_for("audio/webm;codecs=opus") == "webm"
    assert extension_for("audio/x-wav") == "wav"
    assert extension_for("application/octet-stream", default="bin") == "bin"


def test_persist_copies_url_to_bunny() -> None:
    requests: List[httpx.Request] = []
    uploader = StorageFallbackUploader(mock=False, transport=bunny_transport(requests))

    result = asyncio.run(uploader.persist(SOURCE, "generations/job_1.mp3", "audio/mpeg", BUNNY))

    assert result.durable
    assert result.url == "https://cadence.b-cdn.net/generations/job_1.mp3"
    assert result.key == "generations/job_1.mp3"
    put = requests[-1]
    assert put.method == "PUT"
    assert str(put.url) == "https://storage.bunnycdn.com/cadence-zone/generations/job_1.mp3"
    assert put.headers["AccessKey"] == BUNNY.api_key
    assert put.headers["Content-Type"] == "audio/mpeg"
    assert put.content == b"ID3-audio-bytes"


def test_persist_raw_bytes_skips_download() -> None:
    requests: List[httpx.Request] = []
    uploader = StorageFallbackUploader(mock=False, transport=bunny_transport(requests))

    result = asyncio.run(uploader.persist(b"PK-zip", "rvc-datasets/job_1.zip", "application/zip", BUNNY))

    assert result.durable
    assert [r.method for r in requests] == ["PUT"]


def test_persist_without_settings_is_a_noop() -> None:
    requests: List[httpx.Request] = []
    uploader = StorageFallbackUploader(mock=False, transport=bunny_transport(requests))

    result = asyncio.run(uploader.persist(SOURCE, "generations/job_1.mp3", "audio/mpeg", None))

    assert not result.durable
    assert result.url == SOURCE
    assert result.error is None
    assert requests == []


def test_failed_upload_degrades_to_provider_url() -> None:
    requests: List[httpx.Request] = []
    uploader = StorageFallbackUploader(mock=False, transport=bunny_transport(requests, put_status=507))

    result = asyncio.run(uploader.persist(SOURCE, "generations/job_1.mp3", "audio/mpeg", BUNNY))

    assert not result.durable
    assert result.url == SOURCE
    assert "507" in result.error


def test_unreachable_source_degrades() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    uploader = StorageFallbackUploader(mock=False, transport=httpx.MockTransport(handler))
    result = asyncio.run(uploader.persist(SOURCE, "generations/job_1.mp3", "audio/mpeg", BUNNY))

    assert not result.durable
    assert result.url == SOURCE
    assert result.error


def test_mock_backend_never_touches_the_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("network used")

    uploader = StorageFallbackUploader(mock=True, transport=httpx.MockTransport(handler))
    result = asyncio.run(uploader.persist(b"bytes", "voice-previews/job_1.mp3", "audio/mpeg", BUNNY))

    assert result.durable
    assert result.url == f"https://{MOCK_CDN_HOST}/voice-previews/job_1.mp3"


def test_remove_tolerates_missing_objects_and_swallows_errors() -> None:
    requests: List[httpx.Request] = []
    gone = StorageFallbackUploader(mock=False, transport=bunny_transport(requests, delete_status=404))
    assert asyncio.run(gone.remove(BUNNY, "generations/job_1.mp3"))

    broken = StorageFallbackUploader(mock=False, transport=bunny_transport(requests, delete_status=500))
    assert asyncio.run(broken.remove(BUNNY, "generations/job_1.mp3")) is False

    assert asyncio.run(gone.remove(None, "generations/job_1.mp3")) is False


def test_remove_many_dedupes_and_reports_each() -> None:
    requests: List[httpx.Request] = []
    uploader = StorageFallbackUploader(mock=False, transport=bunny_transport(requests))

    results = asyncio.run(uploader.remove_many(BUNNY, ["a.mp3", "b.zip", "a.mp3", None]))

    assert results == [True, True]
    assert sorted(r.url.path for r in requests) == ["/cadence-zone/a.mp3", "/cadence-zone/b.zip"]


def test_s3_settings_select_s3_backend() -> None:
    from cadence.services.storage import S3StorageBackend

    settings = StorageSettings(
        provider="s3",
        api_key="s3-secret-access-key",
        zone="cadence-bucket",
        distribution="d123.cloudfront.net",
        access_key_id="AKIAEXAMPLE",
        region="eu-west-1",
    )
    uploader = StorageFallbackUploader(mock=False)
    backend = uploader.backend_for(settings, client=None)

    assert isinstance(backend, S3StorageBackend)
    assert backend.url_for("voice-conversions/job_1.mp3") == "https://d123.cloudfront.net/voice-conversions/job_1.mp3"
