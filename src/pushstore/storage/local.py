"""Local filesystem blob storage.

Stores blobs in a sharded directory structure:
    {base_path}/{blob_id[:2]}/{blob_id}

Writes go to a temporary `.part` file that is renamed into place once the
payload is complete, so a blob is never visible half-written.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from pushstore.errors import NotFoundError, StorageError, UnavailableError
from pushstore.storage.base import BlobStorage
from pushstore.storage.streams import BlobContent, iter_chunks

logger = logging.getLogger(__name__)


class LocalBlobStorage(BlobStorage):
    """Local filesystem blob storage backend."""

    storage_type = "local"
    CHUNK_SIZE = 64 * 1024  # 64KB chunks for streaming

    def __init__(
        self,
        base_path: str | Path = "/var/lib/pushstore/blobs",
        base_url: str | None = None,
    ):
        """Initialize local blob storage.

        Args:
            base_path: Base directory for blob storage
            base_url: Public URL prefix serving `base_path`; file:// URIs when None
        """
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/") if base_url else None

    def _get_blob_path(self, blob_id: str) -> Path:
        """Shard on the first 2 chars of the id to keep directories small."""
        shard = blob_id[:2] if len(blob_id) >= 2 else "00"
        return self.base_path / shard / blob_id

    async def add(self, content: BlobContent, length: int | None = None) -> str:
        """Stream a payload into a new file."""
        blob_id = self.new_blob_id()
        blob_path = self._get_blob_path(blob_id)
        part_path = blob_path.with_suffix(".part")

        try:
            await aiofiles.os.makedirs(blob_path.parent, exist_ok=True)
            written = 0
            async with aiofiles.open(part_path, "wb") as f:
                async for chunk in iter_chunks(content, self.CHUNK_SIZE):
                    await f.write(chunk)
                    written += len(chunk)
            self.check_length(blob_id, length, written)
            await aiofiles.os.replace(part_path, blob_path)
        except StorageError:
            await self._discard(part_path)
            raise
        except OSError as exc:
            await self._discard(part_path)
            raise UnavailableError(f"Failed to write blob {blob_id}: {exc}") from exc

        logger.debug(f"Stored blob {blob_id} at {blob_path} ({written} bytes)")
        return blob_id

    async def get_url(self, blob_id: str) -> str:
        if not await self.exists(blob_id):
            raise NotFoundError.for_entity("Blob", blob_id)
        if self.base_url:
            shard = blob_id[:2] if len(blob_id) >= 2 else "00"
            return f"{self.base_url}/{shard}/{blob_id}"
        return self._get_blob_path(blob_id).resolve().as_uri()

    async def remove(self, blob_id: str) -> None:
        blob_path = self._get_blob_path(blob_id)
        if not await aiofiles.os.path.exists(blob_path):
            return

        try:
            await aiofiles.os.remove(blob_path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise UnavailableError(f"Failed to remove blob {blob_id}: {exc}") from exc
        logger.debug(f"Deleted blob at {blob_path}")

    async def exists(self, blob_id: str) -> bool:
        return bool(await aiofiles.os.path.exists(self._get_blob_path(blob_id)))

    async def ping(self) -> bool:
        try:
            await aiofiles.os.makedirs(self.base_path, exist_ok=True)
        except OSError:
            return False
        return True

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except OSError:
            pass  # Nothing was written yet
