"""In-process blob storage for tests and single-node development."""

from __future__ import annotations

import logging

from pushstore.errors import NotFoundError
from pushstore.storage.base import BlobStorage
from pushstore.storage.streams import BlobContent, iter_chunks

logger = logging.getLogger(__name__)


class MemoryBlobStorage(BlobStorage):
    """Keeps blobs in a dict. Locators are `memory://{blob_id}`."""

    storage_type = "memory"

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def add(self, content: BlobContent, length: int | None = None) -> str:
        blob_id = self.new_blob_id()
        buffer = bytearray()
        async for chunk in iter_chunks(content):
            buffer.extend(chunk)
        self.check_length(blob_id, length, len(buffer))
        self._blobs[blob_id] = bytes(buffer)
        logger.debug(f"Stored blob {blob_id} in memory ({len(buffer)} bytes)")
        return blob_id

    async def get_url(self, blob_id: str) -> str:
        if blob_id not in self._blobs:
            raise NotFoundError.for_entity("Blob", blob_id)
        return f"memory://{blob_id}"

    async def remove(self, blob_id: str) -> None:
        self._blobs.pop(blob_id, None)

    async def exists(self, blob_id: str) -> bool:
        return blob_id in self._blobs

    async def read(self, blob_id: str) -> bytes:
        """Return stored bytes (test helper)."""
        try:
            return self._blobs[blob_id]
        except KeyError:
            raise NotFoundError.for_entity("Blob", blob_id) from None
