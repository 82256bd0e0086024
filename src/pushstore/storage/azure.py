"""Azure Blob Storage backend."""

from __future__ import annotations

import base64
from typing import Any, cast

from pushstore.errors import NotFoundError, StorageError, UnavailableError
from pushstore.storage.base import BlobStorage
from pushstore.storage.streams import BlobContent, iter_chunks


def _block_id(index: int) -> str:
    # Block ids must all have the same length within a blob
    return base64.b64encode(f"{index:08d}".encode("ascii")).decode("ascii")


class AzureBlobStorage(BlobStorage):
    """Azure Blob Storage implementation using azure-storage-blob aio client.

    Payloads are staged as blocks of `chunk_size` bytes and committed once
    complete, so a blob only becomes readable after the last block arrives.
    """

    storage_type = "azure"

    def __init__(
        self,
        container: str,
        prefix: str = "",
        connection_string: str | None = None,
        account_url: str | None = None,
        credential: str | None = None,
        chunk_size: int = 8 * 1024 * 1024,  # 8MB chunks
    ) -> None:
        self.container = container
        self.prefix = prefix.rstrip("/") + "/" if prefix else ""
        self.connection_string = connection_string
        self.account_url = account_url
        self.credential = credential
        self.chunk_size = chunk_size
        self._client: Any | None = None

    async def _get_client(self) -> Any:
        """Get or create BlobServiceClient."""
        if self._client is None:
            try:
                from azure.storage.blob.aio import BlobServiceClient
            except ImportError as exc:
                raise RuntimeError(
                    "azure-storage-blob is required for Azure blob storage"
                ) from exc

            if self.connection_string:
                self._client = BlobServiceClient.from_connection_string(
                    self.connection_string
                )
            elif self.account_url:
                self._client = BlobServiceClient(
                    account_url=self.account_url, credential=self.credential
                )
            else:
                raise ValueError(
                    "Azure storage requires AZURE_STORAGE_CONNECTION_STRING or AZURE_ACCOUNT_URL"
                )

        return self._client

    async def _get_blob_client(self, blob_id: str) -> Any:
        client = await self._get_client()
        return client.get_blob_client(container=self.container, blob=f"{self.prefix}{blob_id}")

    async def add(self, content: BlobContent, length: int | None = None) -> str:
        """Stage a payload block by block, then commit the block list."""
        from azure.core.exceptions import AzureError
        from azure.storage.blob import BlobBlock

        blob_id = self.new_blob_id()
        blob_client = await self._get_blob_client(blob_id)

        try:
            blocks: list[Any] = []
            written = 0
            async for chunk in iter_chunks(content, self.chunk_size):
                block_id = _block_id(len(blocks))
                await blob_client.stage_block(block_id=block_id, data=chunk)
                blocks.append(BlobBlock(block_id=block_id))
                written += len(chunk)
            # Uncommitted blocks are garbage-collected by the service
            self.check_length(blob_id, length, written)
            await blob_client.commit_block_list(blocks)
        except StorageError:
            raise
        except AzureError as exc:
            raise UnavailableError(f"Failed to upload blob {blob_id}: {exc}") from exc

        return blob_id

    async def get_url(self, blob_id: str) -> str:
        from azure.core.exceptions import AzureError

        blob_client = await self._get_blob_client(blob_id)
        try:
            found = await blob_client.exists()
        except AzureError as exc:
            raise UnavailableError(f"Failed to resolve blob {blob_id}: {exc}") from exc
        if not found:
            raise NotFoundError.for_entity("Blob", blob_id)
        return cast(str, blob_client.url)

    async def remove(self, blob_id: str) -> None:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        blob_client = await self._get_blob_client(blob_id)
        try:
            await blob_client.delete_blob()
        except ResourceNotFoundError:
            return
        except AzureError as exc:
            raise UnavailableError(f"Failed to remove blob {blob_id}: {exc}") from exc

    async def exists(self, blob_id: str) -> bool:
        from azure.core.exceptions import AzureError

        blob_client = await self._get_blob_client(blob_id)
        try:
            return cast(bool, await blob_client.exists())
        except AzureError as exc:
            raise UnavailableError(f"Failed to check blob {blob_id}: {exc}") from exc

    async def ping(self) -> bool:
        from azure.core.exceptions import AzureError

        try:
            client = await self._get_client()
            return cast(bool, await client.get_container_client(self.container).exists())
        except (AzureError, ValueError, RuntimeError):
            return False

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
