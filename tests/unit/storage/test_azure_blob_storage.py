"""Unit tests for Azure blob storage backend."""

from __future__ import annotations

from typing import Any

import pytest

pytest.importorskip("azure.storage.blob")

from azure.core.exceptions import ResourceNotFoundError  # noqa: E402

from pushstore.errors import InvalidArgumentError, NotFoundError  # noqa: E402
from pushstore.storage.azure import AzureBlobStorage  # noqa: E402


class FakeAzureBlobClient:
    def __init__(self, service: FakeAzureServiceClient, name: str) -> None:
        self._service = service
        self._name = name
        self._staged: dict[str, bytes] = {}

    @property
    def url(self) -> str:
        return f"https://acct.blob.core.windows.net/test-container/{self._name}"

    async def stage_block(self, block_id: str, data: bytes) -> None:
        self._staged[block_id] = data
        self._service.staged_blocks += 1

    async def commit_block_list(self, blocks: list[Any]) -> None:
        self._service.store[self._name] = b"".join(self._staged[b.id] for b in blocks)

    async def delete_blob(self) -> None:
        if self._name not in self._service.store:
            raise ResourceNotFoundError("The specified blob does not exist.")
        del self._service.store[self._name]

    async def exists(self) -> bool:
        return self._name in self._service.store


class FakeAzureContainerClient:
    async def exists(self) -> bool:
        return True


class FakeAzureServiceClient:
    def __init__(self) -> None:
        self.store: dict[str, bytes] = {}
        self.staged_blocks = 0
        self.closed = False

    def get_container_client(self, container: str) -> FakeAzureContainerClient:
        return FakeAzureContainerClient()

    def get_blob_client(self, container: str, blob: str) -> FakeAzureBlobClient:
        return FakeAzureBlobClient(self, blob)

    async def close(self) -> None:
        self.closed = True


def _storage(monkeypatch: pytest.MonkeyPatch, client: FakeAzureServiceClient) -> AzureBlobStorage:
    storage = AzureBlobStorage(
        container="test-container",
        prefix="releases",
        connection_string="UseDevelopmentStorage=true",
        chunk_size=4,
    )

    async def get_client() -> Any:
        return client

    monkeypatch.setattr(storage, "_get_client", get_client)
    return storage


@pytest.mark.asyncio
async def test_azure_blob_storage_roundtrip(monkeypatch: pytest.MonkeyPatch) -> None:
    """Stage, commit, resolve, and delete using mocked Azure storage."""
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)

    blob_id = await storage.add(b"pushstore-azure", length=15)

    name = f"releases/{blob_id}"
    assert client.store[name] == b"pushstore-azure"
    assert client.staged_blocks == 4
    assert await storage.exists(blob_id)
    assert await storage.get_url(blob_id) == (
        f"https://acct.blob.core.windows.net/test-container/{name}"
    )

    await storage.remove(blob_id)
    assert not await storage.exists(blob_id)
    # Idempotent
    await storage.remove(blob_id)


@pytest.mark.asyncio
async def test_azure_length_mismatch_never_commits(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)

    with pytest.raises(InvalidArgumentError):
        await storage.add(b"abcdef", length=10)

    assert client.store == {}


@pytest.mark.asyncio
async def test_azure_missing_blob(monkeypatch: pytest.MonkeyPatch) -> None:
    storage = _storage(monkeypatch, FakeAzureServiceClient())
    with pytest.raises(NotFoundError):
        await storage.get_url("missing")


@pytest.mark.asyncio
async def test_azure_ping_and_close(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeAzureServiceClient()
    storage = _storage(monkeypatch, client)
    assert await storage.ping()

    storage._client = client
    await storage.close()
    assert client.closed
    assert storage._client is None
