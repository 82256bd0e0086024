"""Base blob storage interface.

Blobs are write-once byte payloads addressed by a generated id. Backends
translate their SDK errors into the pushstore error taxonomy: a missing
blob is NotFoundError, anything transient is UnavailableError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import uuid4

from pushstore.errors import InvalidArgumentError
from pushstore.storage.streams import BlobContent


class BlobStorage(ABC):
    """Abstract base class for blob storage backends."""

    storage_type: str = "abstract"

    @staticmethod
    def new_blob_id() -> str:
        return uuid4().hex

    @abstractmethod
    async def add(self, content: BlobContent, length: int | None = None) -> str:
        """Store a payload and return its generated blob id.

        Args:
            content: Bytes, a binary file object, or an async iterable of chunks.
                Consumed in chunks, never read whole.
            length: Expected number of bytes; a mismatch fails the write.

        Returns:
            The new blob id

        Raises:
            InvalidArgumentError: If the payload length does not match
            UnavailableError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def get_url(self, blob_id: str) -> str:
        """Return a fetchable locator for a blob.

        Raises:
            NotFoundError: If the blob does not exist
        """
        ...

    @abstractmethod
    async def remove(self, blob_id: str) -> None:
        """Delete a blob. Removing a missing blob is not an error."""
        ...

    @abstractmethod
    async def exists(self, blob_id: str) -> bool:
        """Check if a blob exists."""
        ...

    async def ping(self) -> bool:
        """Lightweight round-trip against the backend."""
        return True

    async def close(self) -> None:
        """Release client resources."""
        return None

    @staticmethod
    def check_length(blob_id: str, expected: int | None, actual: int) -> None:
        if expected is not None and expected != actual:
            raise InvalidArgumentError(
                f"Blob '{blob_id}' received {actual} bytes, expected {expected}"
            )
