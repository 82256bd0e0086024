"""Unit tests for GCS blob storage backend."""

from __future__ import annotations

from typing import Any

import pytest

pytest.importorskip("google.cloud.storage")

from google.api_core.exceptions import NotFound  # noqa: E402

from pushstore.errors import InvalidArgumentError, NotFoundError  # noqa: E402
from pushstore.storage.gcs import GcsBlobStorage  # noqa: E402


class FakeGcsWriter:
    def __init__(self, store: dict[str, bytes], name: str) -> None:
        self._store = store
        self._name = name
        self._buffer = bytearray()
        self.writes = 0

    def write(self, data: bytes) -> int:
        self._buffer.extend(data)
        self.writes += 1
        return len(data)

    def close(self) -> None:
        self._store[self._name] = bytes(self._buffer)


class FakeGcsBlob:
    def __init__(self, client: FakeGcsClient, name: str) -> None:
        self._client = client
        self.name = name

    @property
    def public_url(self) -> str:
        return f"https://storage.googleapis.com/test-bucket/{self.name}"

    def open(self, mode: str = "rb") -> FakeGcsWriter:
        assert mode == "wb"
        writer = FakeGcsWriter(self._client.store, self.name)
        self._client.writers.append(writer)
        return writer

    def exists(self) -> bool:
        return self.name in self._client.store

    def delete(self) -> None:
        if self.name not in self._client.store:
            raise NotFound("No such object")
        del self._client.store[self.name]

    def generate_signed_url(self, expiration: Any) -> str:
        return f"https://signed.example.com/{self.name}?ttl={int(expiration.total_seconds())}"


class FakeGcsBucket:
    def __init__(self, client: FakeGcsClient) -> None:
        self._client = client

    def blob(self, name: str) -> FakeGcsBlob:
        return FakeGcsBlob(self._client, name)

    def exists(self) -> bool:
        return True


class FakeGcsClient:
    def __init__(self) -> None:
        self.store: dict[str, bytes] = {}
        self.writers: list[FakeGcsWriter] = []

    def bucket(self, name: str) -> FakeGcsBucket:
        return FakeGcsBucket(self)


def _storage(
    monkeypatch: pytest.MonkeyPatch, client: FakeGcsClient, **kwargs: Any
) -> GcsBlobStorage:
    storage = GcsBlobStorage(bucket="test-bucket", prefix="releases/", chunk_size=3, **kwargs)

    async def get_client() -> Any:
        return client

    monkeypatch.setattr(storage, "_get_client", get_client)
    return storage


@pytest.mark.asyncio
async def test_gcs_blob_storage_roundtrip(monkeypatch: pytest.MonkeyPatch) -> None:
    """Stream, resolve, and delete using mocked GCS storage."""
    client = FakeGcsClient()
    storage = _storage(monkeypatch, client)

    blob_id = await storage.add(b"pushstore-gcs", length=13)

    name = f"releases/{blob_id}"
    assert client.store[name] == b"pushstore-gcs"
    assert client.writers[0].writes == 5
    assert await storage.exists(blob_id)
    assert await storage.get_url(blob_id) == f"https://storage.googleapis.com/test-bucket/{name}"

    await storage.remove(blob_id)
    assert not await storage.exists(blob_id)
    # Idempotent
    await storage.remove(blob_id)


@pytest.mark.asyncio
async def test_gcs_signed_url(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeGcsClient()
    storage = _storage(monkeypatch, client, signed_url_expires=300)
    blob_id = await storage.add(b"abc")
    assert await storage.get_url(blob_id) == (
        f"https://signed.example.com/releases/{blob_id}?ttl=300"
    )


@pytest.mark.asyncio
async def test_gcs_missing_blob(monkeypatch: pytest.MonkeyPatch) -> None:
    storage = _storage(monkeypatch, FakeGcsClient())
    with pytest.raises(NotFoundError):
        await storage.get_url("missing")


@pytest.mark.asyncio
async def test_gcs_length_mismatch_removes_object(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeGcsClient()
    storage = _storage(monkeypatch, client)

    with pytest.raises(InvalidArgumentError):
        await storage.add(b"abcdef", length=2)

    assert client.store == {}


@pytest.mark.asyncio
async def test_gcs_ping(monkeypatch: pytest.MonkeyPatch) -> None:
    assert await _storage(monkeypatch, FakeGcsClient()).ping()
