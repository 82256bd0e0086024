"""Chunked iteration over blob payloads."""

from __future__ import annotations

import hashlib
from collections.abc import AsyncIterable, AsyncIterator
from typing import BinaryIO, Union

DEFAULT_CHUNK_SIZE = 64 * 1024

BlobContent = Union[bytes, BinaryIO, AsyncIterable[bytes]]


async def iter_chunks(
    content: BlobContent, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """Yield a payload in chunks without reading it whole."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        data = bytes(content)
        for start in range(0, len(data), chunk_size):
            yield data[start : start + chunk_size]
    elif hasattr(content, "read"):
        while True:
            chunk = content.read(chunk_size)  # type: ignore[union-attr]
            if not chunk:
                break
            yield chunk
    else:
        async for chunk in content:
            if chunk:
                yield bytes(chunk)


async def iter_sized_chunks(content: BlobContent, chunk_size: int) -> AsyncIterator[bytes]:
    """Re-block a payload into chunks of exactly `chunk_size` (last may be short).

    Used by backends whose upload parts have a minimum size.
    """
    buffer = bytearray()
    async for chunk in iter_chunks(content, chunk_size):
        buffer.extend(chunk)
        while len(buffer) >= chunk_size:
            yield bytes(buffer[:chunk_size])
            del buffer[:chunk_size]
    if buffer:
        yield bytes(buffer)


class HashingStream:
    """Async byte stream that hashes and counts what passes through it.

    Wrap a payload before handing it to a blob store; once the store has
    consumed it, `hexdigest()` and `size` describe exactly the stored bytes.
    """

    def __init__(self, content: BlobContent, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._content = content
        self._chunk_size = chunk_size
        self._hash = hashlib.sha256()
        self.size = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in iter_chunks(self._content, self._chunk_size):
            self._hash.update(chunk)
            self.size += len(chunk)
            yield chunk

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


def compute_hash(content: bytes) -> str:
    """Compute SHA256 hash of content."""
    return hashlib.sha256(content).hexdigest()
