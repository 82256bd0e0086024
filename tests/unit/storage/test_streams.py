"""Tests for chunked payload iteration and hashing."""

from __future__ import annotations

import hashlib
import io
from collections.abc import AsyncIterator

from pushstore.storage.streams import (
    HashingStream,
    compute_hash,
    iter_chunks,
    iter_sized_chunks,
)


async def _agen(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def _collect(stream) -> list[bytes]:  # type: ignore[no-untyped-def]
    return [chunk async for chunk in stream]


class TestIterChunks:
    async def test_bytes_are_split(self) -> None:
        assert await _collect(iter_chunks(b"abcdefg", 3)) == [b"abc", b"def", b"g"]

    async def test_file_object(self) -> None:
        assert await _collect(iter_chunks(io.BytesIO(b"abcdef"), 4)) == [b"abcd", b"ef"]

    async def test_async_iterable_skips_empty_chunks(self) -> None:
        chunks = await _collect(iter_chunks(_agen(b"ab", b"", b"cd")))
        assert chunks == [b"ab", b"cd"]

    async def test_empty_payload(self) -> None:
        assert await _collect(iter_chunks(b"")) == []


class TestIterSizedChunks:
    async def test_reblocks_to_fixed_size(self) -> None:
        chunks = await _collect(iter_sized_chunks(_agen(b"a", b"bcd", b"efghi"), 4))
        assert chunks == [b"abcd", b"efgh", b"i"]

    async def test_exact_multiple(self) -> None:
        assert await _collect(iter_sized_chunks(b"abcdef", 3)) == [b"abc", b"def"]


class TestHashingStream:
    async def test_hash_and_size_match_payload(self) -> None:
        payload = bytes(range(256)) * 300
        stream = HashingStream(io.BytesIO(payload), chunk_size=1000)

        consumed = b"".join(await _collect(stream))

        assert consumed == payload
        assert stream.size == len(payload)
        assert stream.hexdigest() == hashlib.sha256(payload).hexdigest()
        assert stream.hexdigest() == compute_hash(payload)

    async def test_empty_payload(self) -> None:
        stream = HashingStream(b"")
        await _collect(stream)
        assert stream.size == 0
        assert stream.hexdigest() == hashlib.sha256(b"").hexdigest()
