"""Google Cloud Storage blob storage backend."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, cast

from pushstore.errors import NotFoundError, StorageError, UnavailableError
from pushstore.storage.base import BlobStorage
from pushstore.storage.streams import BlobContent, iter_chunks


class GcsBlobStorage(BlobStorage):
    """GCS blob storage implementation.

    Uses google-cloud-storage with asyncio.to_thread for non-blocking I/O.
    Uploads go through the resumable `blob.open("wb")` writer chunk by chunk.
    """

    storage_type = "gcs"

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        project: str | None = None,
        credentials_path: str | None = None,
        chunk_size: int = 8 * 1024 * 1024,  # 8MB chunks
        signed_url_expires: int | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/" if prefix else ""
        self.project = project
        self.credentials_path = credentials_path
        self.chunk_size = chunk_size
        self.signed_url_expires = signed_url_expires
        self._client: Any | None = None

    async def _get_client(self) -> Any:
        """Get or create GCS client."""
        if self._client is None:
            try:
                from google.cloud import storage
            except ImportError as exc:
                raise RuntimeError("google-cloud-storage is required for GCS blob storage") from exc

            if self.credentials_path:
                self._client = storage.Client.from_service_account_json(
                    self.credentials_path, project=self.project
                )
            else:
                self._client = storage.Client(project=self.project)
        return self._client

    async def _get_blob(self, blob_id: str) -> Any:
        client = await self._get_client()
        return client.bucket(self.bucket).blob(f"{self.prefix}{blob_id}")

    async def add(self, content: BlobContent, length: int | None = None) -> str:
        """Stream a payload into GCS."""
        from google.api_core.exceptions import GoogleAPIError

        blob_id = self.new_blob_id()
        blob = await self._get_blob(blob_id)

        try:
            writer = await asyncio.to_thread(blob.open, "wb")
            written = 0
            try:
                async for chunk in iter_chunks(content, self.chunk_size):
                    await asyncio.to_thread(writer.write, chunk)
                    written += len(chunk)
                self.check_length(blob_id, length, written)
            finally:
                await asyncio.to_thread(writer.close)
        except StorageError:
            await self.remove(blob_id)
            raise
        except (GoogleAPIError, OSError) as exc:
            raise UnavailableError(f"Failed to upload blob {blob_id}: {exc}") from exc

        return blob_id

    async def get_url(self, blob_id: str) -> str:
        from google.api_core.exceptions import GoogleAPIError

        blob = await self._get_blob(blob_id)
        try:
            if not await asyncio.to_thread(blob.exists):
                raise NotFoundError.for_entity("Blob", blob_id)
            if self.signed_url_expires:
                url = await asyncio.to_thread(
                    blob.generate_signed_url,
                    expiration=timedelta(seconds=self.signed_url_expires),
                )
                return cast(str, url)
        except (GoogleAPIError, OSError) as exc:
            raise UnavailableError(f"Failed to resolve blob {blob_id}: {exc}") from exc
        return cast(str, blob.public_url)

    async def remove(self, blob_id: str) -> None:
        from google.api_core.exceptions import GoogleAPIError, NotFound

        blob = await self._get_blob(blob_id)
        try:
            await asyncio.to_thread(blob.delete)
        except NotFound:
            return
        except (GoogleAPIError, OSError) as exc:
            raise UnavailableError(f"Failed to remove blob {blob_id}: {exc}") from exc

    async def exists(self, blob_id: str) -> bool:
        from google.api_core.exceptions import GoogleAPIError

        blob = await self._get_blob(blob_id)
        try:
            return cast(bool, await asyncio.to_thread(blob.exists))
        except (GoogleAPIError, OSError) as exc:
            raise UnavailableError(f"Failed to check blob {blob_id}: {exc}") from exc

    async def ping(self) -> bool:
        from google.api_core.exceptions import GoogleAPIError

        try:
            client = await self._get_client()
            return cast(bool, await asyncio.to_thread(client.bucket(self.bucket).exists))
        except (GoogleAPIError, OSError, RuntimeError):
            return False
