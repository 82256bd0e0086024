"""Tests for in-memory blob storage."""

from __future__ import annotations

import pytest

from pushstore.errors import InvalidArgumentError, NotFoundError
from pushstore.storage.memory import MemoryBlobStorage


async def test_add_get_remove() -> None:
    storage = MemoryBlobStorage()

    blob_id = await storage.add(b"payload")

    assert await storage.exists(blob_id)
    assert await storage.get_url(blob_id) == f"memory://{blob_id}"
    assert await storage.read(blob_id) == b"payload"

    await storage.remove(blob_id)
    assert not await storage.exists(blob_id)
    with pytest.raises(NotFoundError):
        await storage.get_url(blob_id)


async def test_remove_missing_is_noop() -> None:
    await MemoryBlobStorage().remove("missing")


async def test_length_mismatch_rejected() -> None:
    storage = MemoryBlobStorage()
    with pytest.raises(InvalidArgumentError):
        await storage.add(b"abc", length=4)
    assert storage._blobs == {}


async def test_ids_are_unique() -> None:
    storage = MemoryBlobStorage()
    ids = {await storage.add(b"same") for _ in range(10)}
    assert len(ids) == 10
