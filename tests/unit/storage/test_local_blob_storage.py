"""Tests for local filesystem blob storage."""

from __future__ import annotations

import io
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from pushstore.errors import InvalidArgumentError, NotFoundError
from pushstore.storage.local import LocalBlobStorage


async def _agen(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def test_local_blob_storage_roundtrip(tmp_path: Path) -> None:
    """Store, resolve, and delete using local filesystem storage."""
    storage = LocalBlobStorage(base_path=tmp_path)
    content = b"local-blob-content" * 10_000

    blob_id = await storage.add(io.BytesIO(content), length=len(content))

    blob_path = tmp_path / blob_id[:2] / blob_id
    assert blob_path.read_bytes() == content
    assert await storage.exists(blob_id)
    assert await storage.get_url(blob_id) == blob_path.resolve().as_uri()

    await storage.remove(blob_id)
    assert not blob_path.exists()
    assert not await storage.exists(blob_id)
    # Idempotent
    await storage.remove(blob_id)


async def test_async_iterable_payload(tmp_path: Path) -> None:
    storage = LocalBlobStorage(base_path=tmp_path)
    blob_id = await storage.add(_agen(b"one", b"two", b"three"))
    assert (tmp_path / blob_id[:2] / blob_id).read_bytes() == b"onetwothree"


async def test_base_url(tmp_path: Path) -> None:
    storage = LocalBlobStorage(base_path=tmp_path, base_url="https://cdn.example.com/blobs/")
    blob_id = await storage.add(b"x")
    assert await storage.get_url(blob_id) == (
        f"https://cdn.example.com/blobs/{blob_id[:2]}/{blob_id}"
    )


async def test_get_url_missing(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        await LocalBlobStorage(base_path=tmp_path).get_url("deadbeef")


async def test_length_mismatch_leaves_nothing_behind(tmp_path: Path) -> None:
    storage = LocalBlobStorage(base_path=tmp_path)

    with pytest.raises(InvalidArgumentError):
        await storage.add(b"short", length=100)

    assert [p for p in tmp_path.rglob("*") if p.is_file()] == []


async def test_ping_creates_base_path(tmp_path: Path) -> None:
    base = tmp_path / "nested" / "blobs"
    assert await LocalBlobStorage(base_path=base).ping()
    assert base.is_dir()
